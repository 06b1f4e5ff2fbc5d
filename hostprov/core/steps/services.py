"""
Service, certificate, firewall and schedule steps.

These drive the ServiceManager, CertificateIssuer, Firewall and
Scheduler collaborators resolved from the registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

from hostprov.core.errors import StepApplyError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step, StepContext, require_ok

logger = logging.getLogger(__name__)

SSH_RULES = ("OpenSSH", "ssh", "22", "22/tcp")


@dataclass(frozen=True, kw_only=True)
class ServiceEnableStep(Step):
    """Enable (and start) a service; tolerant of "already enabled"."""

    kind: ClassVar[str] = "service"

    service: str
    start: bool = True
    daemon_reload: bool = False

    def check(self, ctx: StepContext) -> CheckStatus:
        services = ctx.registry.services
        if not services.is_enabled(self.service):
            return CheckStatus.NOT_SATISFIED
        if self.start and not services.is_active(self.service):
            return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        services = ctx.registry.services
        done = []

        if self.daemon_reload:
            require_ok(services.daemon_reload(), "daemon-reload")

        if not services.is_enabled(self.service):
            result = services.enable(self.service)
            if not result.ok and not services.is_enabled(self.service):
                require_ok(result, f"enable {self.service}")
            done.append("enabled")

        if self.start and not services.is_active(self.service):
            require_ok(services.start(self.service), f"start {self.service}")
            done.append("started")

        return f"{self.service} {' and '.join(done) or 'already running'}"


@dataclass(frozen=True, kw_only=True)
class CertificateIssueStep(Step):
    """TLS certificate for a domain, HTTP-01 challenge over ``webroot``.

    Only the certificate files are written; the HTTPS server block and
    the HTTP redirect are rendered by the nginx template steps.
    """

    kind: ClassVar[str] = "certificate"

    domain: str
    email: str
    webroot: str

    def check(self, ctx: StepContext) -> CheckStatus:
        if ctx.registry.certificates.has_certificate(self.domain):
            return CheckStatus.SATISFIED
        return CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        require_ok(
            ctx.registry.certificates.obtain(self.domain, self.email, self.webroot),
            f"certificate for {self.domain}",
        )
        return f"certificate issued for {self.domain}"


@dataclass(frozen=True, kw_only=True)
class FirewallRuleStep(Step):
    """Default policies, allow rules, then enable.

    SSH rules are always allowed before anything else, and before the
    firewall is enabled.
    """

    kind: ClassVar[str] = "firewall"

    rules: tuple[str, ...]
    defaults: tuple[tuple[str, str], ...] = (("incoming", "deny"), ("outgoing", "allow"))

    @property
    def ordered_rules(self) -> tuple[str, ...]:
        ssh = [r for r in self.rules if r in SSH_RULES]
        if not ssh:
            ssh = ["OpenSSH"]
        return tuple(ssh) + tuple(r for r in self.rules if r not in SSH_RULES)

    def check(self, ctx: StepContext) -> CheckStatus:
        fw = ctx.registry.firewall
        if not fw.is_active():
            return CheckStatus.NOT_SATISFIED
        current = set(fw.rules())
        if any(rule not in current for rule in self.ordered_rules):
            return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        fw = ctx.registry.firewall
        active = fw.is_active()

        if not active:
            for direction, policy in self.defaults:
                require_ok(fw.set_default(direction, policy), f"default {policy} {direction}")

        current = set(fw.rules()) if active else set()
        added = []
        for rule in self.ordered_rules:
            if rule in current:
                continue
            require_ok(fw.allow(rule), f"allow {rule}")
            added.append(rule)

        if not active:
            require_ok(fw.enable(), "enable firewall")

        detail = f"allowed {', '.join(added)}" if added else "rules present"
        return detail + ("; enabled" if not active else "")


@dataclass(frozen=True, kw_only=True)
class CronScheduleStep(Step):
    """A scheduled entry (``/etc/cron.d/<entry>``)."""

    kind: ClassVar[str] = "cron"

    entry: str
    schedule: str
    command: str
    user: str = "root"

    def check(self, ctx: StepContext) -> CheckStatus:
        scheduler = ctx.registry.scheduler
        wanted = scheduler.render_entry(self.schedule, self.user, self.command)
        if scheduler.entry(self.entry) == wanted:
            return CheckStatus.SATISFIED
        return CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        try:
            ctx.registry.scheduler.install(self.entry, self.schedule, self.user, self.command)
        except ValueError as e:
            raise StepApplyError(str(e)) from e
        return f"{self.entry}: {self.schedule}"
