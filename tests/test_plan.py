"""
Tests for plan construction — activation, ordering, dependency errors.
"""

from dataclasses import dataclass
from typing import ClassVar

import pytest

from hostprov.core.engine.catalog import CatalogEntry, default_catalog
from hostprov.core.engine.plan import build_plan, order_steps
from hostprov.core.errors import CyclicDependency, MissingDependency, PlanError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step


@dataclass(frozen=True, kw_only=True)
class NoopStep(Step):
    kind: ClassVar[str] = "noop"

    def check(self, ctx):
        return CheckStatus.SATISFIED

    def do_apply(self, ctx):
        return None


def _entries(*specs) -> list[CatalogEntry]:
    return [CatalogEntry(NoopStep(name=name, requires=tuple(requires))) for name, requires in specs]


# ── Ordering ─────────────────────────────────────────────────────


class TestOrdering:
    def test_prerequisites_come_first(self, config):
        plan = build_plan(config, _entries(("c", ["b"]), ("b", ["a"]), ("a", [])))
        assert plan.names == ["a", "b", "c"]

    def test_ties_follow_declaration_order(self, config):
        plan = build_plan(config, _entries(("z", []), ("m", []), ("a", [])))
        assert plan.names == ["z", "m", "a"]

    def test_after_hint_orders_when_present(self):
        steps = [NoopStep(name="web", after=("db",)), NoopStep(name="db")]
        assert [s.name for s in order_steps(steps)] == ["db", "web"]

    def test_after_hint_ignored_when_absent(self):
        steps = [NoopStep(name="web", after=("db",))]
        assert [s.name for s in order_steps(steps)] == ["web"]

    def test_same_config_same_plan(self, make_config):
        first = build_plan(make_config(edition="enterprise", backups=True))
        second = build_plan(make_config(edition="enterprise", backups=True))
        assert first.names == second.names

    def test_inactive_entries_reported(self, config):
        entries = _entries(("a", []))
        entries.append(CatalogEntry(NoopStep(name="off"), when=lambda cfg: False))
        plan = build_plan(config, entries)
        assert plan.names == ["a"]
        assert plan.inactive == ("off",)


# ── Errors ───────────────────────────────────────────────────────


class TestPlanErrors:
    def test_cycle_is_named(self, config):
        with pytest.raises(CyclicDependency) as exc_info:
            build_plan(config, _entries(("a", ["c"]), ("b", ["a"]), ("c", ["b"]), ("d", [])))
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        assert "Dependency cycle" in str(exc_info.value)

    def test_self_dependency(self, config):
        with pytest.raises(CyclicDependency):
            build_plan(config, _entries(("a", ["a"])))

    def test_missing_dependency(self, config):
        with pytest.raises(MissingDependency) as exc_info:
            build_plan(config, _entries(("a", ["ghost"])))
        assert exc_info.value.step == "a"
        assert exc_info.value.missing == "ghost"

    def test_required_step_inactive(self, config):
        entries = [
            CatalogEntry(NoopStep(name="proxy"), when=lambda cfg: False),
            CatalogEntry(NoopStep(name="cert", requires=("proxy",))),
        ]
        with pytest.raises(MissingDependency):
            build_plan(config, entries)

    def test_duplicate_names(self, config):
        with pytest.raises(PlanError, match="Duplicate"):
            build_plan(config, _entries(("a", []), ("a", [])))


# ── Default catalog ──────────────────────────────────────────────


class TestDefaultCatalog:
    def test_catalog_names_unique(self, config):
        names = [e.name for e in default_catalog(config)]
        assert len(names) == len(set(names))

    def test_community_without_proxy(self, make_config):
        config = make_config(
            edition="community",
            domain="none",
            tls=False,
            backups=True,
            reverse_proxy=False,
        )
        names = build_plan(config).names

        for expected in ("system-packages", "system-user", "app-config", "app-service", "backup-schedule"):
            assert expected in names
        for absent in ("nginx", "nginx-site", "nginx-service", "certbot", "certificate", "enterprise-source"):
            assert absent not in names

        order = names.index
        assert order("system-user") < order("app-directories") < order("app-source")
        assert order("app-source") < order("virtualenv") < order("systemd-unit") < order("app-service")
        assert order("admin-password") < order("app-config")
        assert order("backup-directory") < order("backup-script") < order("backup-schedule")

    def test_reverse_proxy_on_by_default(self, make_config):
        config = make_config(edition="community", domain="none", tls=False, backups=True)
        names = build_plan(config).names
        assert {"nginx", "nginx-site", "nginx-service"} <= set(names)
        assert "certificate" not in names

    def test_tls_adds_certificate_steps(self, make_config):
        config = make_config(tls=True, domain="erp.acme.io", admin_email="ops@acme.io")
        names = build_plan(config).names
        assert names.index("nginx-service") < names.index("certificate") < names.index("certificate-renewal")
        assert names.index("acme-webroot") < names.index("certificate") < names.index("nginx-tls-site")

    def test_enterprise_source_before_virtualenv(self, make_config):
        names = build_plan(make_config(edition="enterprise")).names
        assert names.index("enterprise-source") < names.index("virtualenv")

    def test_firewall_after_services(self, config):
        names = build_plan(config).names
        assert names.index("app-service") < names.index("firewall")
        assert names.index("nginx-service") < names.index("firewall")

    def test_ssh_hardening_after_firewall(self, make_config):
        names = build_plan(make_config(ssh_hardening=True)).names
        assert names.index("firewall") < names.index("ssh-hardening")

    def test_toggles_remove_steps(self, make_config):
        names = build_plan(make_config(firewall=False, backups=False, install_wkhtmltopdf=False)).names
        for absent in ("ufw", "firewall", "backup-directory", "backup-script", "backup-schedule", "wkhtmltopdf"):
            assert absent not in names

    def test_plan_to_dict(self, config):
        data = build_plan(config).to_dict()
        assert data["total"] == len(data["steps"])
        assert data["steps"][0]["name"] == "system-packages"
