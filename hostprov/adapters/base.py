"""
Adapter base — the contracts between steps and the host.

Steps never call apt, systemctl, certbot or ufw directly. They talk to
the abstract collaborators defined here; concrete implementations live
in ``hostprov.adapters.system`` and test doubles in ``hostprov.adapters.mock``.

Adapters report failures in their return values (CommandResult).
They do not raise for a non-zero exit or a timeout.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Outcome of one external process."""

    command: list[str]
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0
    user: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def stderr_tail(self, lines: int = 10) -> str:
        """Last few lines of stderr (stdout if stderr is empty)."""
        text = (self.stderr or self.stdout).strip()
        return "\n".join(text.splitlines()[-lines:])


class Adapter(ABC):
    """Anything registered in the AdapterRegistry."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g. 'runner', 'apt', 'systemd')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists on this host. Never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class CommandRunner(Adapter):
    """Executes external processes.

    ``as_user`` scopes privilege: every ``run`` inside the ``with`` block
    executes as that system user, and the previous identity is restored
    on exit whether or not the block raised.
    """

    def __init__(self, default_timeout: float = 900.0):
        self.default_timeout = default_timeout
        self._user_stack: list[str] = []

    @property
    def name(self) -> str:
        return "runner"

    @property
    def current_user(self) -> str | None:
        return self._user_stack[-1] if self._user_stack else None

    @contextmanager
    def as_user(self, user: str) -> Iterator[CommandRunner]:
        self._user_stack.append(user)
        try:
            yield self
        finally:
            self._user_stack.pop()

    @abstractmethod
    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run ``command`` with ``args`` and capture its output."""


class PackageManager(Adapter):
    """Install and query packages of one ecosystem (apt, npm, ...)."""

    @abstractmethod
    def installed_version(self, package: str) -> str | None:
        """Installed version, or None when the package is absent."""

    @abstractmethod
    def install(self, package: str, version: str | None = None) -> CommandResult:
        """Install ``package`` (pinned to ``version`` when given)."""

    @abstractmethod
    def upgrade(self, package: str, version: str | None = None) -> CommandResult:
        """Upgrade an installed package to ``version`` (or the latest)."""

    def compare_versions(self, left: str, right: str) -> int:
        """Return -1, 0 or 1 as ``left`` is older, equal or newer than ``right``."""
        lp, rp = _version_key(left), _version_key(right)
        return (lp > rp) - (lp < rp)


class ServiceManager(Adapter):
    """Enable, start and query system services."""

    @abstractmethod
    def is_enabled(self, service: str) -> bool: ...

    @abstractmethod
    def is_active(self, service: str) -> bool: ...

    @abstractmethod
    def enable(self, service: str) -> CommandResult: ...

    @abstractmethod
    def start(self, service: str) -> CommandResult: ...

    @abstractmethod
    def restart(self, service: str) -> CommandResult: ...

    @abstractmethod
    def reload(self, service: str) -> CommandResult: ...

    @abstractmethod
    def daemon_reload(self) -> CommandResult: ...


class CertificateIssuer(Adapter):
    """Obtain and renew TLS certificates."""

    @abstractmethod
    def has_certificate(self, domain: str) -> bool: ...

    @abstractmethod
    def obtain(self, domain: str, email: str, webroot: str) -> CommandResult:
        """Issue a certificate via HTTP-01 challenges served from ``webroot``."""

    @abstractmethod
    def renew(self) -> CommandResult: ...


class Firewall(Adapter):
    """Host firewall rules."""

    @abstractmethod
    def is_active(self) -> bool: ...

    @abstractmethod
    def rules(self) -> list[str]:
        """Currently allowed rules (e.g. 'OpenSSH', '8069/tcp')."""

    @abstractmethod
    def allow(self, rule: str) -> CommandResult: ...

    @abstractmethod
    def set_default(self, direction: str, policy: str) -> CommandResult: ...

    @abstractmethod
    def enable(self) -> CommandResult: ...


class Scheduler(Adapter):
    """Scheduled tasks (cron-equivalent entries)."""

    @abstractmethod
    def entry(self, name: str) -> str | None:
        """Current entry text for ``name``, or None."""

    @abstractmethod
    def install(self, name: str, schedule: str, user: str, command: str) -> None:
        """Install or replace the entry ``name``."""

    @staticmethod
    def render_entry(schedule: str, user: str, command: str) -> str:
        return f"{schedule} {user} {command}\n"


def _version_key(version: str) -> tuple:
    """Loose ordering key: numeric runs compare as numbers."""
    parts: list[tuple[int, int | str]] = []
    for chunk in version.replace("-", ".").replace("+", ".").replace("~", ".").split("."):
        if chunk.isdigit():
            parts.append((1, int(chunk)))
        elif chunk:
            parts.append((0, chunk))
    return tuple(parts)
