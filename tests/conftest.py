"""
Shared test fixtures and configuration.
"""

import os
from pathlib import Path

import pytest
import yaml

from hostprov.adapters.registry import mock_registry
from hostprov.core.config.validation import validate_config
from hostprov.core.steps.base import StepContext


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """No stray HOSTPROV_* variables or hostprov.yml from the caller."""
    for key in list(os.environ):
        if key.startswith("HOSTPROV_"):
            monkeypatch.delenv(key)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    """Scratch directory standing in for the host's /."""
    root = tmp_path / "host"
    root.mkdir()
    return root


@pytest.fixture
def registry(host_root: Path):
    return mock_registry(host_root)


@pytest.fixture
def make_config():
    """Build a validated config; firewall and reverse proxy on by default."""

    def _make(**settings):
        return validate_config(settings)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def ctx(config, registry) -> StepContext:
    return StepContext(config=config, registry=registry, timeout=30.0)


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a hostprov.yml and return its path."""

    def _write(settings: dict, name: str = "hostprov.yml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(settings))
        return path

    return _write
