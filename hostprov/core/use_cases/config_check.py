"""
Config check use case — validate hostprov.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.core.config.loader import ConfigError, find_config_file, load_config
from hostprov.core.errors import ValidationError
from hostprov.core.models.config import PasswordPolicy, ProvisionConfig


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: ProvisionConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.valid else 2

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "summary": self.config.summary() if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate configuration and collect advisory warnings.

    Args:
        config_path: Optional explicit path to hostprov.yml.

    Returns:
        ConfigCheckResult with every error (not just the first).
    """
    result = ConfigCheckResult()
    result.config_path = config_path or find_config_file()

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    except ValidationError as e:
        result.errors.extend(e.errors)
        return result

    result.config = config
    result.warnings.extend(config_warnings(config))
    result.valid = True
    return result


def config_warnings(config: ProvisionConfig) -> list[str]:
    """Valid but questionable settings."""
    warnings = []
    if config.has_domain and not config.tls:
        warnings.append(f"domain '{config.domain}' is set but tls is disabled; traffic is unencrypted.")
    if not config.firewall:
        warnings.append("firewall is disabled; application ports may be reachable directly.")
    if not config.reverse_proxy:
        warnings.append(
            f"reverse_proxy is disabled; the application listens on port {config.http_port} directly."
        )
    if config.is_enterprise and not config.enterprise_token:
        warnings.append("enterprise edition without enterprise_token; cloning needs other git credentials.")
    if config.password_policy is PasswordPolicy.FIXED:
        warnings.append("admin_password is fixed; prefer HOSTPROV_ADMIN_PASSWORD over storing it in the file.")
    if not config.backups:
        warnings.append("backups are disabled.")
    return warnings
