"""
systemd service manager adapter.
"""

from __future__ import annotations

import shutil

from hostprov.adapters.base import CommandResult, CommandRunner, ServiceManager


class SystemdServiceManager(ServiceManager):
    """Services managed through ``systemctl``."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def is_enabled(self, service: str) -> bool:
        result = self._runner.run("systemctl", ["is-enabled", service])
        return result.ok and result.stdout.strip() in ("enabled", "enabled-runtime", "alias")

    def is_active(self, service: str) -> bool:
        return self._runner.run("systemctl", ["is-active", "--quiet", service]).ok

    def enable(self, service: str) -> CommandResult:
        return self._runner.run("systemctl", ["enable", service])

    def start(self, service: str) -> CommandResult:
        return self._runner.run("systemctl", ["start", service])

    def restart(self, service: str) -> CommandResult:
        return self._runner.run("systemctl", ["restart", service])

    def reload(self, service: str) -> CommandResult:
        return self._runner.run("systemctl", ["reload-or-restart", service])

    def daemon_reload(self) -> CommandResult:
        return self._runner.run("systemctl", ["daemon-reload"])
