"""
ufw (Uncomplicated Firewall) adapter.
"""

from __future__ import annotations

import re
import shutil

from hostprov.adapters.base import CommandResult, CommandRunner, Firewall

# "OpenSSH                    ALLOW       Anywhere"
_RULE_LINE = re.compile(r"^(?P<rule>.+?)\s{2,}ALLOW(?: IN)?\s+Anywhere(?! \(v6\))")


class UfwFirewall(Firewall):
    """Rules managed with ``ufw``."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "ufw"

    def is_available(self) -> bool:
        return shutil.which("ufw") is not None

    def is_active(self) -> bool:
        result = self._runner.run("ufw", ["status"])
        return result.ok and "Status: active" in result.stdout

    def rules(self) -> list[str]:
        result = self._runner.run("ufw", ["status"])
        if not result.ok:
            return []
        found: list[str] = []
        for line in result.stdout.splitlines():
            m = _RULE_LINE.match(line.strip())
            if m and m.group("rule") not in found:
                found.append(m.group("rule"))
        return found

    def allow(self, rule: str) -> CommandResult:
        return self._runner.run("ufw", ["allow", rule])

    def set_default(self, direction: str, policy: str) -> CommandResult:
        return self._runner.run("ufw", ["default", policy, direction])

    def enable(self) -> CommandResult:
        return self._runner.run("ufw", ["--force", "enable"])
