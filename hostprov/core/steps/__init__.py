"""
Step variants — idempotent Check + Apply units.

    from hostprov.core.steps import Step, StepContext, TemplateWriteStep
"""

from hostprov.core.steps.base import Step, StepContext, require_ok
from hostprov.core.steps.files import DirectoryStep, SecretFileStep, SecretRef, TemplateWriteStep
from hostprov.core.steps.packages import PackageInstallStep, PackageSpec, packages
from hostprov.core.steps.services import (
    CertificateIssueStep,
    CronScheduleStep,
    FirewallRuleStep,
    ServiceEnableStep,
)
from hostprov.core.steps.source import SourceCheckoutStep, VirtualenvStep
from hostprov.core.steps.users import DatabaseRoleStep, UserCreateStep

__all__ = [
    "CertificateIssueStep",
    "CronScheduleStep",
    "DatabaseRoleStep",
    "DirectoryStep",
    "FirewallRuleStep",
    "PackageInstallStep",
    "PackageSpec",
    "SecretFileStep",
    "SecretRef",
    "ServiceEnableStep",
    "SourceCheckoutStep",
    "Step",
    "StepContext",
    "TemplateWriteStep",
    "UserCreateStep",
    "VirtualenvStep",
    "packages",
    "require_ok",
]
