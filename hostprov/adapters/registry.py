"""
Adapter registry — the set of host collaborators a run uses.

Steps never construct adapters. They receive a StepContext whose
registry resolves the runner, filesystem, package managers, service
manager, certificate issuer, firewall and scheduler by name. Swapping
the registry (real host vs. mock) is how rehearsals and tests work.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

from hostprov.adapters.base import (
    Adapter,
    CertificateIssuer,
    CommandRunner,
    Firewall,
    PackageManager,
    Scheduler,
    ServiceManager,
)
from hostprov.adapters.shell.filesystem import HostFilesystem

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=Adapter)

# Role name → adapter name used when a step does not ask for a specific one
DEFAULT_ROLES: dict[str, str] = {
    "runner": "runner",
    "filesystem": "filesystem",
    "services": "systemd",
    "certificates": "certbot",
    "firewall": "ufw",
    "scheduler": "cron",
}


class AdapterNotFound(LookupError):
    """No adapter registered under the requested name."""


class AdapterRegistry:
    """Named adapters plus the role bindings steps resolve through."""

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._roles: dict[str, str] = dict(DEFAULT_ROLES)
        self._mock_mode = mock_mode

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def register(self, adapter: Adapter, role: str | None = None) -> None:
        """Register an adapter, optionally binding it to a role."""
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        if role:
            self._roles[role] = name
        logger.debug("Registered adapter: %s", name)

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    # ── Typed accessors ─────────────────────────────────────────

    @property
    def runner(self) -> CommandRunner:
        return self._role("runner", CommandRunner)

    @property
    def filesystem(self) -> HostFilesystem:
        return self._role("filesystem", HostFilesystem)

    @property
    def services(self) -> ServiceManager:
        return self._role("services", ServiceManager)

    @property
    def certificates(self) -> CertificateIssuer:
        return self._role("certificates", CertificateIssuer)

    @property
    def firewall(self) -> Firewall:
        return self._role("firewall", Firewall)

    @property
    def scheduler(self) -> Scheduler:
        return self._role("scheduler", Scheduler)

    def packages(self, manager: str) -> PackageManager:
        return self._typed(manager, PackageManager)

    def _role(self, role: str, kind: type[A]) -> A:
        return self._typed(self._roles.get(role, role), kind)

    def _typed(self, name: str, kind: type[A]) -> A:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise AdapterNotFound(f"No adapter registered for '{name}'")
        if not isinstance(adapter, kind):
            raise AdapterNotFound(
                f"Adapter '{name}' is a {type(adapter).__name__}, not a {kind.__name__}"
            )
        return adapter


def system_registry(root: str | Path = "/", default_timeout: float = 900.0) -> AdapterRegistry:
    """Registry bound to the real host tools."""
    from hostprov.adapters.shell.command import SubprocessRunner
    from hostprov.adapters.system.apt import AptPackageManager
    from hostprov.adapters.system.certbot import CertbotIssuer
    from hostprov.adapters.system.cron import CronDirectoryScheduler
    from hostprov.adapters.system.npm import NpmPackageManager
    from hostprov.adapters.system.systemd import SystemdServiceManager
    from hostprov.adapters.system.ufw import UfwFirewall

    runner = SubprocessRunner(default_timeout=default_timeout)
    fs = HostFilesystem(root=root)

    registry = AdapterRegistry()
    registry.register(runner)
    registry.register(fs)
    registry.register(AptPackageManager(runner))
    registry.register(NpmPackageManager(runner))
    registry.register(SystemdServiceManager(runner))
    registry.register(CertbotIssuer(runner))
    registry.register(UfwFirewall(runner))
    registry.register(CronDirectoryScheduler(fs))
    return registry


def mock_registry(root: str | Path) -> AdapterRegistry:
    """Registry of in-memory fakes over a scratch filesystem root."""
    from hostprov.adapters.mock import (
        FakeCertificateIssuer,
        FakeFirewall,
        FakePackageManager,
        FakeServiceManager,
        MockCommandRunner,
    )
    from hostprov.adapters.system.cron import CronDirectoryScheduler

    fs = HostFilesystem(root=root, manage_ownership=False)

    registry = AdapterRegistry(mock_mode=True)
    registry.register(MockCommandRunner())
    registry.register(fs)
    registry.register(FakePackageManager("apt"))
    registry.register(FakePackageManager("npm"))
    registry.register(FakeServiceManager(), role="services")
    registry.register(FakeCertificateIssuer(), role="certificates")
    registry.register(FakeFirewall(), role="firewall")
    registry.register(CronDirectoryScheduler(fs))
    return registry
