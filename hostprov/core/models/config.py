"""
ProvisionConfig — the validated, immutable provisioning configuration.

Built once per run by ``hostprov.core.config.validation.validate_config``
from a flat key/value mapping. Field-level rules live here as pydantic
constraints; cross-field rules live in the validation module's rule
table. Every field has a default so a partially valid mapping can still
be evaluated against the cross-field rules.

Derived paths (home, config file, unit, backup script, ...) are
properties so they cannot drift from the fields they derive from.
"""

from __future__ import annotations

import os
import re
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field

# ── Sentinels ───────────────────────────────────────────────────

NO_DOMAIN = "none"
PLACEHOLDER_EMAILS = frozenset({"", "youremail@example.com", "admin@example.com"})

_FQDN = re.compile(
    r"^(?=.{1,253}$)(?!-)([A-Za-z0-9-]{1,63}(?<!-)\.)+[A-Za-z]{2,63}$"
)
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PG_SIZE = re.compile(r"^\d+(kB|MB|GB|TB)?$")
_CRON_FIELD = re.compile(r"^[\d*/,\-A-Za-z]+$")
_SIZE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3, "TB": 1024**4}


class Edition(str, Enum):
    COMMUNITY = "community"
    ENTERPRISE = "enterprise"


class PasswordPolicy(str, Enum):
    GENERATED = "generated"
    FIXED = "fixed"


# ── Field validators ────────────────────────────────────────────


def _lower(value: object) -> object:
    return value.lower() if isinstance(value, str) else value


def _check_domain(value: str) -> str:
    value = value.strip().lower()
    if value in (NO_DOMAIN, "_"):
        return NO_DOMAIN
    if not _FQDN.match(value):
        raise ValueError(f"'{value}' is not a fully qualified domain name (or 'none')")
    return value


def _check_email(value: str) -> str:
    value = value.strip()
    if value and not _EMAIL.match(value):
        raise ValueError(f"'{value}' is not a valid email address")
    return value


def _parse_size(value: object) -> object:
    """Accept byte counts as ints or suffixed strings ('2560MB', '2.5GB')."""
    if isinstance(value, str):
        m = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([KMGT]?B?)\s*", value.upper())
        if not m:
            raise ValueError(f"'{value}' is not a size (e.g. 2048MB)")
        unit = m.group(2)
        if unit and not unit.endswith("B"):
            unit += "B"
        return int(float(m.group(1)) * _SIZE_UNITS[unit])
    return value


def _check_pg_size(value: str) -> str:
    if not _PG_SIZE.match(value):
        raise ValueError(f"'{value}' is not a PostgreSQL size (e.g. 256MB)")
    return value


def _check_cron(value: str) -> str:
    fields = value.split()
    if len(fields) != 5 or not all(_CRON_FIELD.match(f) for f in fields):
        raise ValueError(f"'{value}' is not a 5-field cron schedule")
    return value


def _split_list(value: object) -> object:
    if isinstance(value, str):
        return [item for item in re.split(r"[\s,]+", value) if item]
    return value


Port = Annotated[int, Field(gt=0, le=65535)]
ByteCount = Annotated[int, BeforeValidator(_parse_size), Field(gt=0)]
PgSize = Annotated[str, AfterValidator(_check_pg_size)]


class ProvisionConfig(BaseModel):
    """Validated provisioning configuration (immutable)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ── Identity ─────────────────────────────────────────────────
    instance_name: Annotated[str, Field(pattern=r"^[A-Za-z0-9]+$", max_length=32)] = "odoo18"
    dedicated_user: bool = True
    default_user: Annotated[str, Field(pattern=r"^[a-z_][a-z0-9_-]*$")] = "odoo"

    # ── Network ──────────────────────────────────────────────────
    http_port: Port = 8069
    longpolling_port: Port = 8072

    # ── Application ──────────────────────────────────────────────
    edition: Annotated[Edition, BeforeValidator(_lower)] = Edition.COMMUNITY
    app_version: Annotated[str, Field(min_length=1)] = "18.0"
    app_repository: Annotated[str, Field(min_length=1)] = "https://github.com/odoo/odoo.git"
    enterprise_repository: Annotated[str, Field(min_length=1)] = "https://github.com/odoo/enterprise.git"
    enterprise_token: str = ""

    # ── Web / TLS ────────────────────────────────────────────────
    domain: Annotated[str, AfterValidator(_check_domain)] = NO_DOMAIN
    tls: bool = False
    admin_email: Annotated[str, AfterValidator(_check_email)] = ""

    # ── Credentials ──────────────────────────────────────────────
    password_policy: Annotated[PasswordPolicy, BeforeValidator(_lower)] = PasswordPolicy.GENERATED
    admin_password: str = ""

    # ── Resource limits ──────────────────────────────────────────
    workers: Annotated[int, Field(ge=0, le=64)] = 0
    max_cron_threads: Annotated[int, Field(ge=0)] = 2
    limit_memory_hard: ByteCount = 2560 * 1024 * 1024
    limit_memory_soft: ByteCount = 2048 * 1024 * 1024
    limit_time_cpu: Annotated[int, Field(gt=0)] = 600
    limit_time_real: Annotated[int, Field(gt=0)] = 1200
    app_log_level: Annotated[
        str,
        BeforeValidator(_lower),
        Field(pattern=r"^(debug|info|warn|warning|error|critical)$"),
    ] = "info"
    db_filter: str = ".*"

    # ── PostgreSQL tuning ────────────────────────────────────────
    db_max_connections: Annotated[int, Field(gt=0)] = 150
    db_shared_buffers: PgSize = "1GB"
    db_effective_cache_size: PgSize = "3GB"
    db_work_mem: PgSize = "32MB"
    db_maintenance_work_mem: PgSize = "256MB"
    postgresql_version: Annotated[str, Field(pattern=r"^\d+$")] = "16"

    # ── Feature toggles ──────────────────────────────────────────
    reverse_proxy: bool = True
    firewall: bool = True
    backups: bool = True
    ssh_hardening: bool = False
    install_wkhtmltopdf: bool = True

    # ── Paths ────────────────────────────────────────────────────
    base_dir: Annotated[str, Field(pattern=r"^/")] = "/opt"
    backup_dir_base: Annotated[str, Field(pattern=r"^/")] = "/var/backups"

    # ── Backups ──────────────────────────────────────────────────
    backup_schedule: Annotated[str, AfterValidator(_check_cron)] = "0 2 * * *"
    backup_days_to_keep: Annotated[int, Field(gt=0)] = 7

    # ── Packages / templates ─────────────────────────────────────
    extra_packages: Annotated[list[str], BeforeValidator(_split_list)] = Field(default_factory=list)
    templates: dict[str, str] = Field(default_factory=dict)

    # ── Engine ───────────────────────────────────────────────────
    retries: Annotated[int, Field(ge=0, le=10)] = 0
    retry_delay: Annotated[float, Field(ge=0)] = 5.0
    step_timeout: Annotated[float, Field(gt=0)] = 900.0
    audit_log: str | None = None

    # ── Derived values ───────────────────────────────────────────

    @property
    def system_user(self) -> str:
        return self.instance_name.lower() if self.dedicated_user else self.default_user

    @property
    def home_dir(self) -> str:
        return f"{self.base_dir.rstrip('/')}/{self.system_user}"

    @property
    def server_dir(self) -> str:
        return f"{self.home_dir}/server"

    @property
    def enterprise_dir(self) -> str:
        return f"{self.home_dir}/enterprise/addons"

    @property
    def addons_dir(self) -> str:
        return f"{self.home_dir}/custom/addons"

    @property
    def venv_dir(self) -> str:
        return f"{self.home_dir}/venv"

    @property
    def config_file(self) -> str:
        return f"/etc/{self.instance_name}.conf"

    @property
    def service_name(self) -> str:
        return f"{self.instance_name}.service"

    @property
    def unit_file(self) -> str:
        return f"/etc/systemd/system/{self.service_name}"

    @property
    def log_dir(self) -> str:
        return f"/var/log/{self.system_user}"

    @property
    def log_file(self) -> str:
        return f"{self.log_dir}/{self.instance_name}.log"

    @property
    def nginx_site(self) -> str:
        return f"/etc/nginx/sites-available/{self.instance_name}"

    @property
    def nginx_site_link(self) -> str:
        return f"/etc/nginx/sites-enabled/{self.instance_name}"

    @property
    def nginx_tls_site(self) -> str:
        return f"/etc/nginx/sites-available/{self.instance_name}-tls"

    @property
    def nginx_tls_site_link(self) -> str:
        return f"/etc/nginx/sites-enabled/{self.instance_name}-tls"

    @property
    def acme_webroot(self) -> str:
        """Directory nginx serves ACME HTTP-01 challenges from."""
        return "/var/www/letsencrypt"

    @property
    def certificate_dir(self) -> str:
        return f"/etc/letsencrypt/live/{self.domain}"

    @property
    def backup_dir(self) -> str:
        return f"{self.backup_dir_base.rstrip('/')}/{self.instance_name}"

    @property
    def backup_script(self) -> str:
        return f"/usr/local/bin/{self.instance_name}-backup.sh"

    @property
    def backup_log(self) -> str:
        return f"{self.log_dir}/{self.instance_name}-backup.log"

    @property
    def admin_password_file(self) -> str:
        return f"/root/.{self.instance_name}_admin_passwd"

    @property
    def postgresql_conf_dir(self) -> str:
        return f"/etc/postgresql/{self.postgresql_version}/main/conf.d"

    @property
    def has_domain(self) -> bool:
        return self.domain != NO_DOMAIN

    @property
    def is_enterprise(self) -> bool:
        return self.edition is Edition.ENTERPRISE

    @property
    def server_name(self) -> str:
        """nginx server_name: the domain, or the catch-all '_'."""
        return self.domain if self.has_domain else "_"

    @property
    def effective_workers(self) -> int:
        """Configured workers, or CPU*2+1 capped at 8 when set to 0."""
        if self.workers:
            return self.workers
        return min((os.cpu_count() or 1) * 2 + 1, 8)

    @property
    def addons_path(self) -> str:
        paths = [f"{self.server_dir}/addons"]
        if self.is_enterprise:
            paths.insert(0, self.enterprise_dir)
        paths.append(self.addons_dir)
        return ",".join(paths)

    @property
    def enterprise_clone_url(self) -> str:
        """Enterprise repository URL, with the token embedded when set."""
        url = self.enterprise_repository
        if self.enterprise_token and url.startswith("https://"):
            return f"https://{self.enterprise_token}@{url[len('https://'):]}"
        return url

    def summary(self) -> dict[str, object]:
        """Operator-facing summary (no secrets)."""
        return {
            "instance": self.instance_name,
            "edition": self.edition.value,
            "version": self.app_version,
            "system_user": self.system_user,
            "ports": [self.http_port, self.longpolling_port],
            "domain": self.domain,
            "tls": self.tls,
            "features": {
                "reverse_proxy": self.reverse_proxy,
                "firewall": self.firewall,
                "backups": self.backups,
                "ssh_hardening": self.ssh_hardening,
            },
        }
