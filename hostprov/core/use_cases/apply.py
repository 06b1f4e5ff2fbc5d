"""
Apply use case — provision the host.

The full vertical slice: load config, build the plan, set up adapters,
check the host can be provisioned (real runs only),
run the engine, write the audit entry.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from hostprov.adapters.registry import AdapterRegistry, mock_registry, system_registry
from hostprov.core.engine.executor import Engine, EngineReport, write_audit_entry
from hostprov.core.engine.plan import Plan
from hostprov.core.models.config import ProvisionConfig
from hostprov.core.observability.logging_config import redact
from hostprov.core.persistence.audit import AuditWriter
from hostprov.core.steps.base import StepContext
from hostprov.core.use_cases.plan import prepare

logger = logging.getLogger(__name__)

# Distribution ID -> release codenames hostprov provisions
SUPPORTED_RELEASES: dict[str, tuple[str, ...]] = {
    "ubuntu": ("jammy", "noble"),
    "debian": ("bookworm", "trixie"),
}

# Adapters every run needs before its first step; the rest are installed by the plan
REQUIRED_ADAPTERS = ("runner", "filesystem", "apt", "systemd")


@dataclass
class ApplyResult:
    """Result of an apply run."""

    report: EngineReport | None = None
    plan: Plan | None = None
    config: ProvisionConfig | None = None
    root: str = "/"
    mock: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.errors:
            return 2
        return self.report.exit_code if self.report else 1

    def to_dict(self) -> dict:
        if self.errors:
            return {"ok": False, "errors": self.errors}
        result: dict = {"root": self.root, "mock": self.mock}
        if self.config:
            result["config"] = self.config.summary()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def build_registry(config: ProvisionConfig, mock: bool = False, root: str | None = None) -> tuple[AdapterRegistry, str]:
    """Adapters for a run, plus the filesystem root actually used.

    Mock runs default to a fresh scratch root so a rehearsal can never
    write to the real host.
    """
    if mock:
        root = root or tempfile.mkdtemp(prefix="hostprov-mock-")
        return mock_registry(root), root
    root = root or "/"
    return system_registry(root, default_timeout=config.step_timeout), root


def read_os_release(registry: AdapterRegistry) -> dict[str, str]:
    """Key/value pairs from the host's /etc/os-release (empty if missing)."""
    content = registry.filesystem.read_text("/etc/os-release") or ""
    release = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep and not key.startswith("#"):
            release[key.strip()] = value.strip().strip("\"'")
    return release


def preflight(registry: AdapterRegistry, euid: int | None = None) -> list[str]:
    """Reasons the host cannot be provisioned, checked before any change.

    Refuses a non-root user, an unsupported distribution or release, and
    missing core tools. Tools the plan installs itself (certbot, ufw)
    are only logged.
    """
    problems = []
    if euid is None:
        euid = os.geteuid()
    if euid != 0:
        problems.append("apply must run as root (try sudo)")

    release = read_os_release(registry)
    distro = release.get("ID", "")
    codename = release.get("VERSION_CODENAME", "")
    if codename not in SUPPORTED_RELEASES.get(distro, ()):
        supported = ", ".join(f"{d} {'/'.join(c)}" for d, c in SUPPORTED_RELEASES.items())
        detected = release.get("PRETTY_NAME") or "unknown"
        problems.append(f"unsupported operating system: {detected} (supported: {supported})")

    for name, status in registry.adapter_status().items():
        if status["available"]:
            continue
        if name in REQUIRED_ADAPTERS:
            problems.append(f"required tool unavailable: {name}")
        else:
            logger.warning("Adapter %s is not available yet; the plan should install it", name)
    return problems


def apply_config(
    config_path: Path | None = None,
    mock: bool = False,
    root: str | None = None,
    retries: int | None = None,
    audit_log: str | None = None,
    registry: AdapterRegistry | None = None,
    on_engine: Callable[[Engine], None] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ApplyResult:
    """Provision the host from configuration.

    Args:
        config_path: Optional explicit path to hostprov.yml.
        mock: Use in-memory adapters over a scratch root.
        root: Filesystem prefix for every host path.
        retries: Override the configured retry count.
        audit_log: Override the configured audit ledger path.
        registry: Pre-built adapters (tests).
        on_engine: Called with the engine before it runs (signal wiring).
        sleep: Retry back-off sleeper (tests).

    Returns:
        ApplyResult; ``exit_code`` is 0, 1 (failed/aborted) or 2 (invalid input).
    """
    prepared = prepare(config_path, overrides={"retries": retries, "audit_log": audit_log})
    result = ApplyResult(plan=prepared.plan, config=prepared.config, mock=mock)
    if prepared.errors:
        result.errors = prepared.errors
        return result

    config = prepared.config
    plan = prepared.plan
    assert config is not None and plan is not None
    redact(config.enterprise_token, config.admin_password)

    if registry is None:
        registry, result.root = build_registry(config, mock=mock, root=root)
    else:
        result.root = root or "/"
        result.mock = registry.mock_mode

    if not result.mock:
        problems = preflight(registry)
        if problems:
            result.errors = problems
            return result

    engine = Engine(
        plan,
        StepContext(config=config, registry=registry),
        retries=config.retries,
        retry_delay=config.retry_delay,
        step_timeout=config.step_timeout,
        sleep=sleep,
    )
    if on_engine is not None:
        on_engine(engine)

    result.report = engine.run()

    if config.audit_log:
        context = {"instance": config.instance_name, "mock": result.mock, "root": result.root}
        write_audit_entry(result.report, AuditWriter(config.audit_log), context)

    return result
