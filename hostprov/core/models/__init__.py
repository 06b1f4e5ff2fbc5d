"""
Domain models — pydantic types for the provisioning engine.

    from hostprov.core.models import ProvisionConfig, StepResult, CheckStatus
"""

from hostprov.core.models.config import (
    NO_DOMAIN,
    Edition,
    PasswordPolicy,
    ProvisionConfig,
)
from hostprov.core.models.result import (
    CheckStatus,
    FailurePolicy,
    StepResult,
    StepStatus,
)

__all__ = [
    "NO_DOMAIN",
    "CheckStatus",
    "Edition",
    "FailurePolicy",
    "PasswordPolicy",
    "ProvisionConfig",
    "StepResult",
    "StepStatus",
]
