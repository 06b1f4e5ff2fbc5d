"""
Package installation through a named package manager (apt, npm).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

from hostprov.adapters.base import PackageManager
from hostprov.core.errors import StepApplyError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step, StepContext, require_ok

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageSpec:
    """A package name with an optional pinned version."""

    name: str
    version: str | None = None

    @classmethod
    def parse(cls, text: str) -> PackageSpec:
        """Parse 'name' or 'name=version'."""
        name, sep, version = text.partition("=")
        return cls(name.strip(), version.strip() if sep and version.strip() else None)

    def __str__(self) -> str:
        return f"{self.name}={self.version}" if self.version else self.name


@dataclass(frozen=True, kw_only=True)
class PackageInstallStep(Step):
    """Install packages; upgrade to a pinned version, never downgrade."""

    kind: ClassVar[str] = "package"

    packages: tuple[PackageSpec, ...]
    manager: str = "apt"

    def check(self, ctx: StepContext) -> CheckStatus:
        pm = ctx.registry.packages(self.manager)
        for pkg in self.packages:
            installed = pm.installed_version(pkg.name)
            if installed is None:
                return CheckStatus.NOT_SATISFIED
            if pkg.version and pm.compare_versions(installed, pkg.version) != 0:
                return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        pm = ctx.registry.packages(self.manager)

        # Decide everything before mutating, so a refused downgrade
        # leaves the host untouched.
        actions: list[tuple[str, PackageSpec]] = []
        for pkg in self.packages:
            installed = pm.installed_version(pkg.name)
            if installed is None:
                actions.append(("install", pkg))
                continue
            if not pkg.version:
                continue
            order = pm.compare_versions(installed, pkg.version)
            if order < 0:
                actions.append(("upgrade", pkg))
            elif order > 0:
                raise StepApplyError(
                    f"{pkg.name} {installed} is newer than requested {pkg.version}; refusing to downgrade"
                )

        for action, pkg in actions:
            self._change(pm, action, pkg)

        installed = [str(p) for a, p in actions if a == "install"]
        upgraded = [str(p) for a, p in actions if a == "upgrade"]
        parts = []
        if installed:
            parts.append("installed " + ", ".join(installed))
        if upgraded:
            parts.append("upgraded " + ", ".join(upgraded))
        return "; ".join(parts) or "nothing to do"

    def _change(self, pm: PackageManager, action: str, pkg: PackageSpec) -> None:
        logger.info("%s: %s %s", self.manager, action, pkg)
        if action == "install":
            result = pm.install(pkg.name, pkg.version)
        else:
            result = pm.upgrade(pkg.name, pkg.version)
        require_ok(result, f"{self.manager} {action} {pkg}")


def packages(*names: str) -> tuple[PackageSpec, ...]:
    """Shorthand: ``packages("git", "nginx=1.24.0-1")``."""
    return tuple(PackageSpec.parse(n) for n in names)
