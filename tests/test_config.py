"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest

from hostprov.core.config.loader import (
    ConfigError,
    env_overrides,
    find_config_file,
    load_config,
    load_settings,
)
from hostprov.core.config.validation import validate_config
from hostprov.core.errors import ValidationError
from hostprov.core.models import NO_DOMAIN, Edition, PasswordPolicy


def _errors(raw: dict) -> list[str]:
    with pytest.raises(ValidationError) as exc_info:
        validate_config(raw)
    return exc_info.value.errors


# ── Field validation ─────────────────────────────────────────────


class TestDefaults:
    def test_empty_mapping_is_valid(self):
        config = validate_config({})
        assert config.instance_name == "odoo18"
        assert config.edition is Edition.COMMUNITY
        assert config.domain == NO_DOMAIN
        assert config.tls is False
        assert config.retries == 0
        assert config.retry_delay == 5.0
        assert config.step_timeout == 900.0

    def test_config_is_immutable(self):
        config = validate_config({})
        with pytest.raises(Exception):
            config.http_port = 9000  # type: ignore[misc]

    def test_derived_paths(self):
        config = validate_config({"instance_name": "erp", "base_dir": "/srv"})
        assert config.system_user == "erp"
        assert config.home_dir == "/srv/erp"
        assert config.config_file == "/etc/erp.conf"
        assert config.unit_file == "/etc/systemd/system/erp.service"
        assert config.backup_script == "/usr/local/bin/erp-backup.sh"

    def test_shared_user_when_not_dedicated(self):
        config = validate_config({"dedicated_user": False, "default_user": "app"})
        assert config.system_user == "app"


class TestFieldRules:
    def test_port_out_of_range(self):
        errors = _errors({"http_port": 70000})
        assert any(e.startswith("http_port:") for e in errors)

    def test_unknown_key(self):
        assert "colour: unknown setting" in _errors({"colour": "blue"})

    def test_bad_edition(self):
        assert any(e.startswith("edition:") for e in _errors({"edition": "premium"}))

    def test_edition_case_insensitive(self):
        assert validate_config({"edition": "Enterprise"}).is_enterprise

    def test_domain_normalised(self):
        assert validate_config({"domain": "ERP.Example.com"}).domain == "erp.example.com"
        assert validate_config({"domain": "_"}).domain == NO_DOMAIN

    def test_domain_must_be_fqdn(self):
        assert any(e.startswith("domain:") for e in _errors({"domain": "localhost"}))

    def test_memory_sizes_accept_suffixes(self):
        config = validate_config({"limit_memory_hard": "3GB", "limit_memory_soft": "2560MB"})
        assert config.limit_memory_hard == 3 * 1024**3
        assert config.limit_memory_soft == 2560 * 1024**2

    def test_single_letter_size_unit(self):
        assert validate_config({"limit_memory_hard": "4G"}).limit_memory_hard == 4 * 1024**3

    def test_backup_schedule_needs_five_fields(self):
        assert any(e.startswith("backup_schedule:") for e in _errors({"backup_schedule": "0 2 * *"}))

    def test_extra_packages_from_string(self):
        config = validate_config({"extra_packages": "htop, vim  curl"})
        assert config.extra_packages == ["htop", "vim", "curl"]


# ── Cross-field rules ────────────────────────────────────────────


class TestCrossFieldRules:
    def test_tls_without_domain(self):
        errors = _errors({"tls": True, "admin_email": "ops@acme.io"})
        assert any(e.startswith("domain:") and "TLS" in e for e in errors)

    def test_tls_with_placeholder_email(self):
        errors = _errors({"tls": True, "domain": "erp.acme.io", "admin_email": "youremail@example.com"})
        assert any(e.startswith("admin_email:") for e in errors)

    def test_tls_requires_reverse_proxy(self):
        errors = _errors({
            "tls": True,
            "domain": "erp.acme.io",
            "admin_email": "ops@acme.io",
            "reverse_proxy": False,
        })
        assert any(e.startswith("reverse_proxy:") for e in errors)

    def test_tls_valid(self):
        config = validate_config({"tls": True, "domain": "erp.acme.io", "admin_email": "ops@acme.io"})
        assert config.tls and config.has_domain

    def test_ports_must_differ(self):
        errors = _errors({"http_port": 8069, "longpolling_port": 8069})
        assert any(e.startswith("longpolling_port:") for e in errors)

    def test_fixed_password_required(self):
        errors = _errors({"password_policy": "fixed"})
        assert any(e.startswith("admin_password:") for e in errors)
        config = validate_config({"password_policy": "fixed", "admin_password": "s3cret"})
        assert config.password_policy is PasswordPolicy.FIXED

    def test_soft_limit_above_hard(self):
        errors = _errors({"limit_memory_soft": "4GB", "limit_memory_hard": "2GB"})
        assert any(e.startswith("limit_memory_soft:") for e in errors)

    def test_unknown_template_name(self, tmp_path: Path):
        tpl = tmp_path / "x.tmpl"
        tpl.write_text("x")
        errors = _errors({"templates": {"mystery": str(tpl)}})
        assert any(e.startswith("templates:") for e in errors)

    def test_all_errors_reported_together(self):
        errors = _errors({
            "http_port": 0,
            "edition": "premium",
            "tls": True,
            "colour": "blue",
        })
        fields = {e.split(":", 1)[0] for e in errors}
        assert {"http_port", "edition", "colour", "domain", "admin_email"} <= fields

    def test_rule_over_failed_field_not_reported(self):
        # domain fails field validation; the TLS/domain rule stays silent
        errors = _errors({"tls": True, "domain": "not a domain", "admin_email": "ops@acme.io"})
        domain_errors = [e for e in errors if e.startswith("domain:")]
        assert len(domain_errors) == 1
        assert "TLS" not in domain_errors[0]


# ── Loader ───────────────────────────────────────────────────────


class TestLoader:
    def test_find_config_walks_up(self, tmp_path: Path):
        (tmp_path / "hostprov.yml").write_text("instance_name: erp\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == tmp_path / "hostprov.yml"

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_no_file_uses_environment(self):
        settings = load_settings(environ={"HOSTPROV_INSTANCE_NAME": "erp"})
        assert settings == {"instance_name": "erp"}

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "hostprov.yml"
        path.write_text("instance_name: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "hostprov.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_environment_overrides_file(self, write_config):
        path = write_config({"http_port": 8069, "backups": True})
        config = load_config(path, environ={"HOSTPROV_HTTP_PORT": "9069", "HOSTPROV_BACKUPS": "false"})
        assert config.http_port == 9069
        assert config.backups is False

    def test_env_overrides_ignores_unrelated(self):
        assert env_overrides({"HOSTPROV_NOPE": "1", "PATH": "/bin"}) == {}

    def test_cli_overrides_win(self, write_config):
        path = write_config({"retries": 1})
        config = load_config(path, environ={"HOSTPROV_RETRIES": "2"}, overrides={"retries": 3, "audit_log": None})
        assert config.retries == 3
        assert config.audit_log is None

    def test_template_paths_relative_to_file(self, tmp_path: Path, write_config):
        (tmp_path / "custom.tmpl").write_text("[Unit]\n")
        path = write_config({"templates": {"systemd_unit": "custom.tmpl"}})
        config = load_config(path, environ={})
        assert config.templates["systemd_unit"] == str((tmp_path / "custom.tmpl").resolve())
