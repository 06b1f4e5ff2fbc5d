"""
Mock adapters — in-memory host doubles for tests and ``--mock`` runs.

The fakes keep just enough state (installed packages, enabled services,
users, database roles, git checkouts, firewall rules) for checks to
observe what applies did, so a second run against the same fakes is
all skips. Failures can be scripted per operation.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from hostprov.adapters.base import (
    CertificateIssuer,
    CommandResult,
    CommandRunner,
    Firewall,
    PackageManager,
    ServiceManager,
)


@dataclass
class MockCall:
    """One command received by the MockCommandRunner."""

    argv: list[str]
    user: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    @property
    def line(self) -> str:
        return shlex.join(self.argv)


@dataclass
class _Scripted:
    prefix: tuple[str, ...]
    result: CommandResult
    remaining: int | None  # None = forever


class _FailureScript:
    """Per-operation failure budget shared by the fakes."""

    def __init__(self) -> None:
        self._pending: dict[str, list] = {}

    def add(self, op: str, times: int, stderr: str) -> None:
        self._pending[op] = [times, stderr]

    def take(self, op: str) -> str | None:
        entry = self._pending.get(op)
        if not entry or entry[0] <= 0:
            return None
        entry[0] -= 1
        return entry[1]


def _ok(command: list[str], stdout: str = "") -> CommandResult:
    return CommandResult(command=command, stdout=stdout)


def _failed(command: list[str], stderr: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(command=command, exit_code=exit_code, stderr=stderr)


class MockCommandRunner(CommandRunner):
    """Recording runner that simulates users, roles and git checkouts.

    Scripted responses (``set_response`` / ``set_failure``) match on an
    argv prefix and take precedence over the simulation. Unknown commands
    succeed with empty output.
    """

    def __init__(self, available: bool = True):
        super().__init__()
        self._available = available
        self._scripted: list[_Scripted] = []
        self.call_log: list[MockCall] = []
        self.users: set[str] = set()
        self.groups: set[str] = set()
        self.db_roles: set[str] = set()
        self.checkouts: dict[str, str] = {}

    def is_available(self) -> bool:
        return self._available

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    def calls_matching(self, *prefix: str) -> list[MockCall]:
        return [c for c in self.call_log if tuple(c.argv[: len(prefix)]) == prefix]

    def set_response(
        self,
        prefix: Sequence[str],
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        timed_out: bool = False,
        times: int | None = None,
    ) -> None:
        """Answer commands starting with ``prefix`` with a fixed result."""
        result = CommandResult(
            command=list(prefix),
            exit_code=-1 if timed_out else exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )
        self._scripted.insert(0, _Scripted(tuple(prefix), result, times))

    def set_failure(
        self,
        prefix: Sequence[str],
        stderr: str = "Mock failure",
        exit_code: int = 1,
        times: int | None = None,
    ) -> None:
        self.set_response(prefix, stderr=stderr, exit_code=exit_code, times=times)

    def reset(self) -> None:
        self._scripted.clear()
        self.call_log.clear()

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        argv = [command, *args]
        self.call_log.append(MockCall(argv, self.current_user, dict(env or {}), cwd))

        for scripted in self._scripted:
            if tuple(argv[: len(scripted.prefix)]) != scripted.prefix:
                continue
            if scripted.remaining is not None:
                if scripted.remaining <= 0:
                    continue
                scripted.remaining -= 1
            return scripted.result.model_copy(update={"command": argv, "user": self.current_user})

        result = self._simulate(argv)
        result.user = self.current_user
        return result

    def _simulate(self, argv: list[str]) -> CommandResult:
        tool = argv[0]
        if tool == "getent" and len(argv) == 3:
            pool = self.users if argv[1] == "passwd" else self.groups
            return _ok(argv, f"{argv[2]}:x\n") if argv[2] in pool else _failed(argv, "", 2)
        if tool == "groupadd":
            self.groups.add(argv[-1])
            return _ok(argv)
        if tool == "useradd":
            self.users.add(argv[-1])
            return _ok(argv)
        if tool == "psql":
            query = argv[-1]
            for role in self.db_roles:
                if f"rolname='{role}'" in query:
                    return _ok(argv, "1\n")
            return _ok(argv)
        if tool == "createuser":
            self.db_roles.add(argv[-1])
            return _ok(argv)
        if tool == "git":
            return self._simulate_git(argv)
        return _ok(argv)

    def _simulate_git(self, argv: list[str]) -> CommandResult:
        if "clone" in argv:
            dest = argv[-1]
            branch = argv[argv.index("--branch") + 1] if "--branch" in argv else "master"
            self.checkouts[dest] = branch
            return _ok(argv)
        if "-C" in argv and "rev-parse" in argv:
            dest = argv[argv.index("-C") + 1]
            if dest not in self.checkouts:
                return _failed(argv, f"fatal: cannot change to '{dest}'", 128)
            return _ok(argv, self.checkouts[dest] + "\n")
        return _ok(argv)


class FakePackageManager(PackageManager):
    """In-memory package database."""

    def __init__(self, adapter_name: str = "apt", installed: Mapping[str, str] | None = None):
        self._name = adapter_name
        self.installed: dict[str, str] = dict(installed or {})
        self.calls: list[tuple[str, str, str | None]] = []
        self._failures = _FailureScript()

    @property
    def name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return True

    def fail_next(self, op: str, times: int = 1, stderr: str = "E: mock mirror timeout") -> None:
        """Make the next ``times`` calls of ``op`` ('install'/'upgrade') fail."""
        self._failures.add(op, times, stderr)

    def installed_version(self, package: str) -> str | None:
        return self.installed.get(package)

    def install(self, package: str, version: str | None = None) -> CommandResult:
        return self._change("install", package, version)

    def upgrade(self, package: str, version: str | None = None) -> CommandResult:
        return self._change("upgrade", package, version)

    def _change(self, op: str, package: str, version: str | None) -> CommandResult:
        self.calls.append((op, package, version))
        argv = [self._name, op, package]
        stderr = self._failures.take(op)
        if stderr is not None:
            return _failed(argv, stderr, 100)
        self.installed[package] = version or self.installed.get(package) or "1.0"
        return _ok(argv)


class FakeServiceManager(ServiceManager):
    """In-memory service states."""

    def __init__(self) -> None:
        self.enabled: set[str] = set()
        self.active: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._failures = _FailureScript()

    @property
    def name(self) -> str:
        return "mock-services"

    def is_available(self) -> bool:
        return True

    def fail_next(self, op: str, times: int = 1, stderr: str = "Job failed") -> None:
        self._failures.add(op, times, stderr)

    def is_enabled(self, service: str) -> bool:
        return service in self.enabled

    def is_active(self, service: str) -> bool:
        return service in self.active

    def enable(self, service: str) -> CommandResult:
        return self._do("enable", service, self.enabled)

    def start(self, service: str) -> CommandResult:
        return self._do("start", service, self.active)

    def restart(self, service: str) -> CommandResult:
        return self._do("restart", service, self.active)

    def reload(self, service: str) -> CommandResult:
        return self._do("reload", service, self.active)

    def daemon_reload(self) -> CommandResult:
        return self._do("daemon-reload", "", None)

    def _do(self, op: str, service: str, target: set[str] | None) -> CommandResult:
        self.calls.append((op, service))
        argv = ["systemctl", op, service] if service else ["systemctl", op]
        stderr = self._failures.take(op)
        if stderr is not None:
            return _failed(argv, stderr)
        if target is not None:
            target.add(service)
        return _ok(argv)


class FakeCertificateIssuer(CertificateIssuer):
    """In-memory certificate store."""

    def __init__(self) -> None:
        self.certificates: dict[str, str] = {}
        self.requests: list[tuple[str, str, str]] = []
        self.renewals = 0
        self._failures = _FailureScript()

    @property
    def name(self) -> str:
        return "mock-certificates"

    def is_available(self) -> bool:
        return True

    def fail_next(self, op: str = "obtain", times: int = 1, stderr: str = "too many requests") -> None:
        self._failures.add(op, times, stderr)

    def has_certificate(self, domain: str) -> bool:
        return domain in self.certificates

    def obtain(self, domain: str, email: str, webroot: str) -> CommandResult:
        argv = ["certbot", "certonly", "--webroot", "-w", webroot, "-d", domain]
        self.requests.append((domain, email, webroot))
        stderr = self._failures.take("obtain")
        if stderr is not None:
            return _failed(argv, stderr)
        self.certificates[domain] = email
        return _ok(argv)

    def renew(self) -> CommandResult:
        self.renewals += 1
        return _ok(["certbot", "renew"])


class FakeFirewall(Firewall):
    """In-memory firewall."""

    def __init__(self) -> None:
        self.active = False
        self.allowed: list[str] = []
        self.defaults: dict[str, str] = {}
        self._failures = _FailureScript()

    @property
    def name(self) -> str:
        return "mock-firewall"

    def is_available(self) -> bool:
        return True

    def fail_next(self, op: str, times: int = 1, stderr: str = "ERROR: problem running ufw") -> None:
        self._failures.add(op, times, stderr)

    def is_active(self) -> bool:
        return self.active

    def rules(self) -> list[str]:
        return list(self.allowed)

    def allow(self, rule: str) -> CommandResult:
        stderr = self._failures.take("allow")
        if stderr is not None:
            return _failed(["ufw", "allow", rule], stderr)
        if rule not in self.allowed:
            self.allowed.append(rule)
        return _ok(["ufw", "allow", rule])

    def set_default(self, direction: str, policy: str) -> CommandResult:
        self.defaults[direction] = policy
        return _ok(["ufw", "default", policy, direction])

    def enable(self) -> CommandResult:
        stderr = self._failures.take("enable")
        if stderr is not None:
            return _failed(["ufw", "enable"], stderr)
        self.active = True
        return _ok(["ufw", "--force", "enable"])
