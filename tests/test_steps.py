"""
Tests for the step variants against the mock host.
"""

from pathlib import Path

import pytest

from hostprov.core.errors import StepCheckError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps import (
    CertificateIssueStep,
    CronScheduleStep,
    DatabaseRoleStep,
    DirectoryStep,
    FirewallRuleStep,
    PackageInstallStep,
    PackageSpec,
    SecretFileStep,
    SecretRef,
    ServiceEnableStep,
    SourceCheckoutStep,
    StepContext,
    TemplateWriteStep,
    UserCreateStep,
    VirtualenvStep,
    packages,
)


# ── Packages ─────────────────────────────────────────────────────


class TestPackageSpec:
    def test_parse_pinned(self):
        spec = PackageSpec.parse("nginx=1.24.0-2")
        assert spec.name == "nginx"
        assert spec.version == "1.24.0-2"
        assert str(spec) == "nginx=1.24.0-2"

    def test_parse_unpinned(self):
        assert PackageSpec.parse("git").version is None


class TestPackageInstallStep:
    def test_installs_missing(self, ctx, registry):
        step = PackageInstallStep(name="pkgs", packages=packages("git", "curl"))
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED
        result = step.apply(ctx)
        assert result.applied
        assert registry.packages("apt").installed.keys() >= {"git", "curl"}
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_upgrades_older_pinned(self, ctx, registry):
        apt = registry.packages("apt")
        apt.installed["nginx"] = "1.22.0"
        step = PackageInstallStep(name="nginx", packages=packages("nginx=1.24.0"))

        assert step.check(ctx) is CheckStatus.NOT_SATISFIED
        result = step.apply(ctx)

        assert "upgraded nginx=1.24.0" in result.detail
        assert apt.installed["nginx"] == "1.24.0"

    def test_refuses_downgrade_before_any_change(self, ctx, registry):
        apt = registry.packages("apt")
        apt.installed["nginx"] = "1.26.0"
        step = PackageInstallStep(name="web", packages=packages("git", "nginx=1.24.0"))

        result = step.apply(ctx)

        assert result.failed
        assert "refusing to downgrade" in result.error
        assert apt.calls == []
        assert apt.installed["nginx"] == "1.26.0"

    def test_install_failure(self, ctx, registry):
        registry.packages("apt").fail_next("install")
        result = PackageInstallStep(name="pkgs", packages=packages("git")).apply(ctx)
        assert result.failed
        assert result.error_kind == "apply"
        assert "apt install git" in result.error

    def test_npm_manager(self, ctx, registry):
        step = PackageInstallStep(name="node", packages=packages("rtlcss"), manager="npm")
        step.apply(ctx)
        assert "rtlcss" in registry.packages("npm").installed
        assert "rtlcss" not in registry.packages("apt").installed


# ── Users and roles ──────────────────────────────────────────────


class TestUserCreateStep:
    def test_creates_group_then_user(self, ctx, registry):
        runner = registry.runner
        step = UserCreateStep(name="user", user="erp", home="/opt/erp")

        assert step.check(ctx) is CheckStatus.NOT_SATISFIED
        result = step.apply(ctx)

        assert result.applied
        assert runner.calls_matching("groupadd")[0].argv == ["groupadd", "--system", "erp"]
        useradd = runner.calls_matching("useradd")[0].argv
        assert useradd[-1] == "erp"
        assert "--home-dir" in useradd and "/opt/erp" in useradd
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_existing_user_untouched(self, ctx, registry):
        registry.runner.users.add("erp")
        registry.runner.groups.add("erp")
        step = UserCreateStep(name="user", user="erp", home="/opt/erp")
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_lookup_failure_is_inconclusive(self, ctx, registry):
        registry.runner.set_failure(("getent",), stderr="nss down", exit_code=1)
        step = UserCreateStep(name="user", user="erp", home="/opt/erp")
        with pytest.raises(StepCheckError):
            step.check(ctx)
        status, detail = step.evaluate(ctx)
        assert status is CheckStatus.UNKNOWN
        assert "nss down" in detail


class TestDatabaseRoleStep:
    def test_created_as_postgres(self, ctx, registry):
        step = DatabaseRoleStep(name="role", role="erp")
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED

        step.apply(ctx)

        call = registry.runner.calls_matching("createuser")[0]
        assert call.argv == ["createuser", "--superuser", "erp"]
        assert call.user == "postgres"
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_server_down_is_unknown(self, ctx, registry):
        registry.runner.set_failure(("psql",), stderr="could not connect to server")
        status, _ = DatabaseRoleStep(name="role", role="erp").evaluate(ctx)
        assert status is CheckStatus.UNKNOWN

    def test_invalid_role_name(self, ctx):
        result = DatabaseRoleStep(name="role", role="erp'; drop").apply(ctx)
        assert result.failed


# ── Files ────────────────────────────────────────────────────────


class TestDirectoryStep:
    def test_creates_with_mode(self, ctx, host_root: Path):
        step = DirectoryStep(name="dirs", paths=("/opt/erp/logs", "/opt/erp/data"), mode=0o750)
        step.apply(ctx)
        assert (host_root / "opt/erp/logs").is_dir()
        assert ((host_root / "opt/erp/data").stat().st_mode & 0o777) == 0o750
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_wrong_mode_not_satisfied(self, ctx, host_root: Path):
        (host_root / "srv").mkdir(mode=0o755)
        (host_root / "srv").chmod(0o755)
        assert DirectoryStep(name="d", paths=("/srv",), mode=0o700).check(ctx) is CheckStatus.NOT_SATISFIED


class TestSecretFileStep:
    def test_generated_once(self, ctx, host_root: Path):
        step = SecretFileStep(name="pw", path="/etc/erp/admin.pass")
        step.apply(ctx)
        first = (host_root / "etc/erp/admin.pass").read_text()

        step.apply(ctx)

        assert (host_root / "etc/erp/admin.pass").read_text() == first
        assert len(first.strip()) >= 24
        assert ((host_root / "etc/erp/admin.pass").stat().st_mode & 0o777) == 0o600
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_loose_permissions_tightened(self, ctx, host_root: Path):
        target = host_root / "etc/erp/admin.pass"
        target.parent.mkdir(parents=True)
        target.write_text("keep-me\n")
        target.chmod(0o644)
        step = SecretFileStep(name="pw", path="/etc/erp/admin.pass")

        assert step.check(ctx) is CheckStatus.NOT_SATISFIED
        step.apply(ctx)

        assert target.read_text() == "keep-me\n"
        assert (target.stat().st_mode & 0o777) == 0o600

    def test_fixed_value_rewritten(self, ctx, host_root: Path):
        target = host_root / "etc/erp/admin.pass"
        target.parent.mkdir(parents=True)
        target.write_text("old\n")
        step = SecretFileStep(name="pw", path="/etc/erp/admin.pass", value="s3cret")
        step.apply(ctx)
        assert target.read_text() == "s3cret\n"

    def test_value_not_in_repr(self):
        assert "s3cret" not in repr(SecretFileStep(name="pw", path="/p", value="s3cret"))


class TestTemplateWriteStep:
    @pytest.fixture
    def site_ctx(self, tmp_path: Path, make_config, registry) -> StepContext:
        tpl = tmp_path / "site.tmpl"
        tpl.write_text("server_name __SERVER_NAME__;\n# __IF_FEATURE_tls__\nlisten 443 ssl;\n# __ENDIF__\n")
        config = make_config(templates={"nginx_site": str(tpl)})
        return StepContext(config=config, registry=registry, timeout=30.0)

    def _step(self, **kwargs) -> TemplateWriteStep:
        defaults = dict(
            name="site",
            template="nginx_site",
            path="/etc/nginx/sites-available/erp",
            placeholders={"SERVER_NAME": "erp.acme.io"},
            features={"tls": False},
        )
        defaults.update(kwargs)
        return TemplateWriteStep(**defaults)

    def test_writes_rendered_content(self, site_ctx, host_root: Path):
        step = self._step()
        result = step.apply(site_ctx)
        assert result.detail == "updated /etc/nginx/sites-available/erp"
        assert (host_root / "etc/nginx/sites-available/erp").read_text() == "server_name erp.acme.io;\n"
        assert step.check(site_ctx) is CheckStatus.SATISFIED
        assert step.apply(site_ctx).detail == "unchanged /etc/nginx/sites-available/erp"

    def test_feature_change_not_satisfied(self, site_ctx):
        self._step().apply(site_ctx)
        assert self._step(features={"tls": True}).check(site_ctx) is CheckStatus.NOT_SATISFIED

    def test_symlink_maintained(self, site_ctx, host_root: Path):
        step = self._step(link_to="/etc/nginx/sites-enabled/erp")
        step.apply(site_ctx)
        link = host_root / "etc/nginx/sites-enabled/erp"
        assert link.is_symlink()
        assert str(link.readlink()) == "/etc/nginx/sites-available/erp"
        assert step.check(site_ctx) is CheckStatus.SATISFIED

    def test_failed_verification_restores_previous(self, site_ctx, registry, host_root: Path):
        target = host_root / "etc/nginx/sites-available/erp"
        self._step(placeholders={"SERVER_NAME": "old.acme.io"}).apply(site_ctx)
        registry.runner.set_failure(("nginx", "-t"), stderr="nginx: [emerg] unexpected '}'")

        result = self._step(verify_command=("nginx", "-t"), reload_service="nginx").apply(site_ctx)

        assert result.failed
        assert "emerg" in result.stderr_tail
        assert target.read_text() == "server_name old.acme.io;\n"
        assert ("reload", "nginx") not in registry.services.calls

    def test_failed_verification_removes_new_file(self, site_ctx, registry, host_root: Path):
        registry.runner.set_failure(("nginx", "-t"))
        step = self._step(verify_command=("nginx", "-t"), link_to="/etc/nginx/sites-enabled/erp")

        assert step.apply(site_ctx).failed
        assert not (host_root / "etc/nginx/sites-available/erp").exists()
        assert not (host_root / "etc/nginx/sites-enabled/erp").is_symlink()

    def test_failed_verification_keeps_existing_link(self, site_ctx, registry, host_root: Path):
        link = host_root / "etc/nginx/sites-enabled/erp"
        link.parent.mkdir(parents=True)
        link.symlink_to("/etc/nginx/sites-available/erp")
        registry.runner.set_failure(("nginx", "-t"))
        step = self._step(verify_command=("nginx", "-t"), link_to="/etc/nginx/sites-enabled/erp")

        assert step.apply(site_ctx).failed

        assert not (host_root / "etc/nginx/sites-available/erp").exists()
        assert link.is_symlink()
        assert str(link.readlink()) == "/etc/nginx/sites-available/erp"

    def test_failed_verification_repoints_previous_link(self, site_ctx, registry, host_root: Path):
        link = host_root / "etc/nginx/sites-enabled/erp"
        link.parent.mkdir(parents=True)
        link.symlink_to("/etc/nginx/sites-available/default")
        registry.runner.set_failure(("nginx", "-t"))

        self._step(verify_command=("nginx", "-t"), link_to="/etc/nginx/sites-enabled/erp").apply(site_ctx)

        assert str(link.readlink()) == "/etc/nginx/sites-available/default"

    def test_reload_after_change_only(self, site_ctx, registry):
        step = self._step(reload_service="nginx")
        step.apply(site_ctx)
        step.apply(site_ctx)
        assert registry.services.calls.count(("reload", "nginx")) == 1

    def test_restart_only_when_running(self, site_ctx, registry):
        self._step(restart_service="erp").apply(site_ctx)
        assert ("restart", "erp") not in registry.services.calls

        registry.services.active.add("erp")
        self._step(placeholders={"SERVER_NAME": "new.acme.io"}, restart_service="erp").apply(site_ctx)
        assert ("restart", "erp") in registry.services.calls

    def test_daemon_reload_before_restart(self, site_ctx, registry):
        services = registry.services
        services.active.add("erp.service")
        step = self._step(daemon_reload=True, restart_service="erp.service")

        step.apply(site_ctx)
        step.apply(site_ctx)

        assert services.calls == [("daemon-reload", ""), ("restart", "erp.service")]

    def test_secret_placeholder(self, tmp_path: Path, make_config, registry, host_root: Path):
        tpl = tmp_path / "conf.tmpl"
        tpl.write_text("admin_passwd = __ADMIN_PASSWORD__\n")
        ctx = StepContext(config=make_config(templates={"app_config": str(tpl)}), registry=registry)
        step = TemplateWriteStep(
            name="conf",
            template="app_config",
            path="/etc/erp.conf",
            placeholders={"ADMIN_PASSWORD": SecretRef("/etc/erp/admin.pass")},
        )

        assert step.evaluate(ctx)[0] is CheckStatus.UNKNOWN
        assert step.apply(ctx).failed

        SecretFileStep(name="pw", path="/etc/erp/admin.pass", value="s3cret").apply(ctx)
        step.apply(ctx)
        assert (host_root / "etc/erp.conf").read_text() == "admin_passwd = s3cret\n"


# ── Services, certificates, firewall, schedules ──────────────────


class TestServiceEnableStep:
    def test_enable_and_start(self, ctx, registry):
        step = ServiceEnableStep(name="svc", service="erp", daemon_reload=True)
        result = step.apply(ctx)
        assert result.detail == "erp enabled and started"
        assert registry.services.calls[0] == ("daemon-reload", "")
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_already_enabled_only_started(self, ctx, registry):
        services = registry.services
        services.enabled.add("erp")
        result = ServiceEnableStep(name="svc", service="erp").apply(ctx)
        assert result.detail == "erp started"
        assert ("enable", "erp") not in services.calls

    def test_start_failure(self, ctx, registry):
        registry.services.fail_next("start")
        result = ServiceEnableStep(name="svc", service="erp").apply(ctx)
        assert result.failed
        assert "start erp" in result.error


class TestCertificateIssueStep:
    def _step(self) -> CertificateIssueStep:
        return CertificateIssueStep(
            name="cert", domain="erp.acme.io", email="ops@acme.io", webroot="/var/www/letsencrypt"
        )

    def test_issued_once(self, ctx, registry):
        step = self._step()
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED

        result = step.apply(ctx)

        assert result.detail == "certificate issued for erp.acme.io"
        assert registry.certificates.requests == [("erp.acme.io", "ops@acme.io", "/var/www/letsencrypt")]
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_existing_certificate_satisfied(self, ctx, registry):
        registry.certificates.certificates["erp.acme.io"] = "ops@acme.io"
        assert self._step().check(ctx) is CheckStatus.SATISFIED

    def test_rate_limited(self, ctx, registry):
        registry.certificates.fail_next("obtain", stderr="too many certificates already issued")

        result = self._step().apply(ctx)

        assert result.failed
        assert "certificate for erp.acme.io" in result.error
        assert "too many certificates" in result.stderr_tail
        assert self._step().check(ctx) is CheckStatus.NOT_SATISFIED


class TestFirewallRuleStep:
    def test_ssh_first(self):
        step = FirewallRuleStep(name="fw", rules=("Nginx Full", "22/tcp"))
        assert step.ordered_rules == ("22/tcp", "Nginx Full")

    def test_ssh_added_when_missing(self):
        step = FirewallRuleStep(name="fw", rules=("8069/tcp",))
        assert step.ordered_rules == ("OpenSSH", "8069/tcp")

    def test_enable_after_rules(self, ctx, registry):
        fw = registry.firewall
        step = FirewallRuleStep(name="fw", rules=("Nginx Full",))

        step.apply(ctx)

        assert fw.allowed == ["OpenSSH", "Nginx Full"]
        assert fw.defaults == {"incoming": "deny", "outgoing": "allow"}
        assert fw.active
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_not_enabled_when_rule_fails(self, ctx, registry):
        fw = registry.firewall
        fw.fail_next("allow")
        assert FirewallRuleStep(name="fw", rules=("Nginx Full",)).apply(ctx).failed
        assert not fw.active

    def test_adds_missing_rule_to_active_firewall(self, ctx, registry):
        fw = registry.firewall
        fw.active = True
        fw.allowed = ["OpenSSH"]
        result = FirewallRuleStep(name="fw", rules=("8069/tcp",)).apply(ctx)
        assert result.detail == "allowed 8069/tcp"
        assert fw.defaults == {}


class TestCronScheduleStep:
    def test_entry_written(self, ctx, host_root: Path):
        step = CronScheduleStep(name="backup", entry="erp-backup", schedule="0 2 * * *", command="/usr/local/bin/erp-backup.sh")
        step.apply(ctx)
        content = (host_root / "etc/cron.d/erp-backup").read_text()
        assert content == "0 2 * * * root /usr/local/bin/erp-backup.sh\n"
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_changed_schedule_not_satisfied(self, ctx):
        CronScheduleStep(name="b", entry="erp-backup", schedule="0 2 * * *", command="x").apply(ctx)
        step = CronScheduleStep(name="b", entry="erp-backup", schedule="0 4 * * *", command="x")
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED

    def test_invalid_entry_name(self, ctx):
        result = CronScheduleStep(name="b", entry="erp.backup", schedule="0 2 * * *", command="x").apply(ctx)
        assert result.failed
        assert "Invalid cron entry name" in result.error


# ── Source and virtualenv ────────────────────────────────────────


class TestSourceCheckoutStep:
    def _step(self, branch="18.0"):
        return SourceCheckoutStep(
            name="src",
            repository="https://token@github.com/acme/app.git",
            branch=branch,
            dest="/opt/erp/src",
            user="erp",
            display_url="github.com/acme/app",
        )

    def test_clone_as_user(self, ctx, registry):
        step = self._step()
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED
        result = step.apply(ctx)

        clone = registry.runner.calls_matching("git", "clone")[0]
        assert clone.user == "erp"
        assert clone.argv[-2:] == ["https://token@github.com/acme/app.git", "/opt/erp/src"]
        assert "token" not in result.detail
        assert step.check(ctx) is CheckStatus.SATISFIED

    def test_other_branch_refused(self, ctx, registry):
        registry.runner.checkouts["/opt/erp/src"] = "17.0"
        result = self._step().apply(ctx)
        assert result.failed
        assert "not switching" in result.error
        assert registry.runner.calls_matching("git", "clone") == []

    def test_repository_not_in_repr(self):
        assert "token" not in repr(self._step())


class TestVirtualenvStep:
    def test_installs_and_marks(self, ctx, registry, host_root: Path):
        req = host_root / "opt/erp/src/requirements.txt"
        req.parent.mkdir(parents=True)
        req.write_text("lxml\n")
        step = VirtualenvStep(
            name="venv", venv_dir="/opt/erp/venv", requirements=("/opt/erp/src/requirements.txt",), user="erp"
        )

        step.apply(ctx)

        assert registry.runner.calls_matching("python3", "-m", "venv")
        assert registry.runner.calls_matching("/opt/erp/venv/bin/pip", "install", "-r")
        assert step.check(ctx) is CheckStatus.SATISFIED

        req.write_text("lxml\nPyPDF2\n")
        assert step.check(ctx) is CheckStatus.NOT_SATISFIED

    def test_pip_failure(self, ctx, registry):
        registry.runner.set_failure(("/opt/erp/venv/bin/pip",), stderr="No matching distribution")
        result = VirtualenvStep(name="venv", venv_dir="/opt/erp/venv", packages=("nope",)).apply(ctx)
        assert result.failed
        assert "No matching distribution" in result.stderr_tail
