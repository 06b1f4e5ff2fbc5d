"""
Step catalog — every step the engine knows, with activation predicates.

The catalog is declared in a fixed order; that order breaks ties in the
plan's topological sort, so identical configurations always yield
identical plans.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from hostprov.core.models.config import PasswordPolicy, ProvisionConfig
from hostprov.core.models.result import FailurePolicy
from hostprov.core.steps import (
    CertificateIssueStep,
    CronScheduleStep,
    DatabaseRoleStep,
    DirectoryStep,
    FirewallRuleStep,
    PackageInstallStep,
    SecretFileStep,
    SecretRef,
    ServiceEnableStep,
    SourceCheckoutStep,
    Step,
    TemplateWriteStep,
    UserCreateStep,
    VirtualenvStep,
    packages,
)

SYSTEM_PACKAGES = (
    "git",
    "python3",
    "python3-pip",
    "python3-venv",
    "python3-dev",
    "build-essential",
    "libxml2-dev",
    "libxslt1-dev",
    "libldap2-dev",
    "libsasl2-dev",
    "libpq-dev",
    "libjpeg-dev",
    "zlib1g-dev",
    "libffi-dev",
    "nodejs",
    "npm",
)

SSHD_DROP_IN = "/etc/ssh/sshd_config.d/90-hostprov.conf"


def _always(config: ProvisionConfig) -> bool:
    return True


@dataclass(frozen=True)
class CatalogEntry:
    """A step plus the predicate deciding whether it joins the plan."""

    step: Step
    when: Callable[[ProvisionConfig], bool] = _always

    @property
    def name(self) -> str:
        return self.step.name


def template_features(config: ProvisionConfig) -> dict[str, bool]:
    return {
        "reverse_proxy": config.reverse_proxy,
        "tls": config.tls,
        "enterprise": config.is_enterprise,
        "backups": config.backups,
    }


def template_placeholders(config: ProvisionConfig) -> dict[str, str | SecretRef]:
    """Values for ``__NAME__`` placeholders in the shipped templates."""
    return {
        "INSTANCE_NAME": config.instance_name,
        "SYSTEM_USER": config.system_user,
        "HOME_DIR": config.home_dir,
        "SERVER_DIR": config.server_dir,
        "VENV_DIR": config.venv_dir,
        "CONFIG_FILE": config.config_file,
        "ADDONS_PATH": config.addons_path,
        "HTTP_PORT": str(config.http_port),
        "LONGPOLLING_PORT": str(config.longpolling_port),
        "SERVER_NAME": config.server_name,
        "ACME_WEBROOT": config.acme_webroot,
        "CERT_DIR": config.certificate_dir,
        "LOG_FILE": config.log_file,
        "LOG_LEVEL": config.app_log_level,
        "WORKERS": str(config.effective_workers),
        "MAX_CRON_THREADS": str(config.max_cron_threads),
        "LIMIT_MEMORY_HARD": str(config.limit_memory_hard),
        "LIMIT_MEMORY_SOFT": str(config.limit_memory_soft),
        "LIMIT_TIME_CPU": str(config.limit_time_cpu),
        "LIMIT_TIME_REAL": str(config.limit_time_real),
        "DB_FILTER": config.db_filter,
        "DB_MAX_CONNECTIONS": str(config.db_max_connections),
        "DB_SHARED_BUFFERS": config.db_shared_buffers,
        "DB_EFFECTIVE_CACHE_SIZE": config.db_effective_cache_size,
        "DB_WORK_MEM": config.db_work_mem,
        "DB_MAINTENANCE_WORK_MEM": config.db_maintenance_work_mem,
        "BACKUP_DIR": config.backup_dir,
        "BACKUP_DAYS_TO_KEEP": str(config.backup_days_to_keep),
        "ADMIN_PASSWORD": SecretRef(config.admin_password_file),
    }


def _firewall_rules(config: ProvisionConfig) -> tuple[str, ...]:
    if config.reverse_proxy:
        return ("OpenSSH", "80/tcp", "443/tcp")
    return ("OpenSSH", f"{config.http_port}/tcp", f"{config.longpolling_port}/tcp")


def default_catalog(config: ProvisionConfig) -> list[CatalogEntry]:
    """The application-server catalog, parameterised by ``config``."""
    c = config
    user = c.system_user
    features = template_features(c)
    values = template_placeholders(c)

    def template(name: str, template_name: str, path: str, **kwargs) -> TemplateWriteStep:
        return TemplateWriteStep(
            name=name,
            template=template_name,
            path=path,
            features=features,
            placeholders=values,
            **kwargs,
        )

    return [
        # ── Base system ──────────────────────────────────────────
        CatalogEntry(PackageInstallStep(
            name="system-packages",
            packages=packages(*SYSTEM_PACKAGES, *c.extra_packages),
            description="Build and runtime OS packages",
        )),
        CatalogEntry(PackageInstallStep(
            name="postgresql",
            packages=packages("postgresql", "postgresql-client"),
            description="PostgreSQL server",
        )),
        CatalogEntry(ServiceEnableStep(
            name="postgresql-service",
            requires=("postgresql",),
            service="postgresql",
        )),
        CatalogEntry(template(
            "postgresql-tuning",
            "postgresql_tuning",
            f"{c.postgresql_conf_dir}/{c.instance_name}.conf",
            requires=("postgresql",),
            after=("postgresql-service",),
            restart_service="postgresql",
            policy=FailurePolicy.CONTINUE,
            description="PostgreSQL memory and connection tuning",
        )),
        CatalogEntry(PackageInstallStep(
            name="wkhtmltopdf",
            packages=packages("wkhtmltopdf"),
            policy=FailurePolicy.CONTINUE,
            description="PDF report rendering",
        ), when=lambda cfg: cfg.install_wkhtmltopdf),
        CatalogEntry(PackageInstallStep(
            name="node-tools",
            manager="npm",
            packages=packages("rtlcss"),
            requires=("system-packages",),
            policy=FailurePolicy.CONTINUE,
            description="Right-to-left stylesheet support",
        )),

        # ── Service account ──────────────────────────────────────
        CatalogEntry(UserCreateStep(
            name="system-user",
            user=user,
            home=c.home_dir,
            description="Service user and group",
        )),
        CatalogEntry(DatabaseRoleStep(
            name="database-role",
            requires=("postgresql-service", "system-user"),
            role=user,
        )),
        CatalogEntry(DirectoryStep(
            name="app-directories",
            requires=("system-user",),
            paths=(c.home_dir, c.addons_dir, c.log_dir),
            owner=user,
            mode=0o750,
        )),

        # ── Application ──────────────────────────────────────────
        CatalogEntry(SourceCheckoutStep(
            name="app-source",
            requires=("app-directories", "system-packages"),
            repository=c.app_repository,
            display_url=c.app_repository,
            branch=c.app_version,
            dest=c.server_dir,
            user=user,
            description="Application source checkout",
        )),
        CatalogEntry(SourceCheckoutStep(
            name="enterprise-source",
            requires=("app-directories", "system-packages"),
            repository=c.enterprise_clone_url,
            display_url=c.enterprise_repository,
            branch=c.app_version,
            dest=c.enterprise_dir,
            user=user,
            description="Enterprise addons checkout",
        ), when=lambda cfg: cfg.is_enterprise),
        CatalogEntry(VirtualenvStep(
            name="virtualenv",
            requires=("app-source",),
            after=("enterprise-source",),
            venv_dir=c.venv_dir,
            requirements=(f"{c.server_dir}/requirements.txt",),
            user=user,
        )),
        CatalogEntry(SecretFileStep(
            name="admin-password",
            path=c.admin_password_file,
            value=c.admin_password if c.password_policy is PasswordPolicy.FIXED else None,
            description="Master admin password",
        )),
        CatalogEntry(template(
            "app-config",
            "app_config",
            c.config_file,
            requires=("admin-password", "app-directories"),
            owner=user,
            mode=0o640,
            restart_service=c.service_name,
        )),
        CatalogEntry(template(
            "systemd-unit",
            "systemd_unit",
            c.unit_file,
            requires=("virtualenv", "app-config"),
            daemon_reload=True,
            restart_service=c.service_name,
        )),
        CatalogEntry(ServiceEnableStep(
            name="app-service",
            requires=("systemd-unit", "database-role"),
            service=c.service_name,
            daemon_reload=True,
        )),

        # ── Reverse proxy / TLS ──────────────────────────────────
        CatalogEntry(PackageInstallStep(
            name="nginx",
            packages=packages("nginx"),
        ), when=lambda cfg: cfg.reverse_proxy),
        CatalogEntry(template(
            "nginx-site",
            "nginx_site",
            c.nginx_site,
            requires=("nginx",),
            after=("app-service",),
            link_to=c.nginx_site_link,
            verify_command=("nginx", "-t"),
            reload_service="nginx",
        ), when=lambda cfg: cfg.reverse_proxy),
        CatalogEntry(ServiceEnableStep(
            name="nginx-service",
            requires=("nginx-site",),
            service="nginx",
        ), when=lambda cfg: cfg.reverse_proxy),
        CatalogEntry(PackageInstallStep(
            name="certbot",
            packages=packages("certbot", "python3-certbot-nginx"),
            requires=("nginx",),
        ), when=lambda cfg: cfg.tls),
        CatalogEntry(DirectoryStep(
            name="acme-webroot",
            requires=("nginx",),
            paths=(c.acme_webroot,),
            mode=0o755,
        ), when=lambda cfg: cfg.tls),
        CatalogEntry(CertificateIssueStep(
            name="certificate",
            requires=("certbot", "acme-webroot", "nginx-service"),
            domain=c.domain,
            email=c.admin_email,
            webroot=c.acme_webroot,
        ), when=lambda cfg: cfg.tls),
        CatalogEntry(template(
            "nginx-tls-site",
            "nginx_tls_site",
            c.nginx_tls_site,
            requires=("certificate",),
            link_to=c.nginx_tls_site_link,
            verify_command=("nginx", "-t"),
            reload_service="nginx",
        ), when=lambda cfg: cfg.tls),
        CatalogEntry(CronScheduleStep(
            name="certificate-renewal",
            requires=("certificate",),
            entry=f"{c.instance_name}-certbot-renew",
            schedule="0 3 * * *",
            command="certbot renew --quiet --post-hook 'systemctl reload nginx'",
        ), when=lambda cfg: cfg.tls),

        # ── Firewall ─────────────────────────────────────────────
        CatalogEntry(PackageInstallStep(
            name="ufw",
            packages=packages("ufw"),
        ), when=lambda cfg: cfg.firewall),
        CatalogEntry(FirewallRuleStep(
            name="firewall",
            requires=("ufw",),
            after=("app-service", "nginx-service"),
            rules=_firewall_rules(c),
        ), when=lambda cfg: cfg.firewall),

        # ── Backups ──────────────────────────────────────────────
        CatalogEntry(DirectoryStep(
            name="backup-directory",
            requires=("system-user",),
            paths=(c.backup_dir,),
            owner=user,
            mode=0o750,
        ), when=lambda cfg: cfg.backups),
        CatalogEntry(template(
            "backup-script",
            "backup_script",
            c.backup_script,
            requires=("backup-directory",),
            mode=0o750,
        ), when=lambda cfg: cfg.backups),
        CatalogEntry(CronScheduleStep(
            name="backup-schedule",
            requires=("backup-script",),
            entry=f"{c.instance_name}-backup",
            schedule=c.backup_schedule,
            command=f"{c.backup_script} >> {c.backup_log} 2>&1",
        ), when=lambda cfg: cfg.backups),

        # ── SSH hardening ────────────────────────────────────────
        CatalogEntry(template(
            "ssh-hardening",
            "sshd_hardening",
            SSHD_DROP_IN,
            after=("firewall",),
            verify_command=("sshd", "-t"),
            reload_service="ssh",
            policy=FailurePolicy.CONTINUE,
        ), when=lambda cfg: cfg.ssh_hardening),
    ]
