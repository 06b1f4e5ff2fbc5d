"""
Subprocess runner — the single place where host commands are executed.

Steps reach the host through this runner, directly or via the package,
service and firewall adapters built on it.
"""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import signal
import subprocess
import time
from collections.abc import Mapping, Sequence

from hostprov.adapters.base import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

# Characters kept per stream (tail)
_MAX_CAPTURE = 8000


class SubprocessRunner(CommandRunner):
    """Run commands as child processes in their own session.

    A terminal Ctrl-C reaches only hostprov, which stops between steps;
    a command is never interrupted halfway. On timeout the whole
    process group is killed.

    Inside ``as_user(user)`` commands are prefixed with
    ``sudo -n -H -u USER --`` unless the process already runs as USER.
    ``-n``: a missing sudo rule fails instead of prompting.
    """

    def __init__(self, default_timeout: float = 900.0):
        super().__init__(default_timeout=default_timeout)
        self._login = _current_login()

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

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
        user = self.current_user
        if user and user != self._login:
            argv = ["sudo", "-n", "-H", "-u", user, "--", *argv]

        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        limit = timeout if timeout is not None else self.default_timeout
        logger.debug("Executing: %s (user=%s, cwd=%s)", " ".join(argv), user or self._login, cwd)
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=full_env,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as e:
            # Missing binary, bad cwd: report like a failed command.
            return CommandResult(
                command=argv,
                exit_code=127,
                stderr=str(e),
                duration_ms=_elapsed_ms(start),
                user=user,
            )

        with proc:
            try:
                stdout, stderr = proc.communicate(input_text, timeout=limit)
            except subprocess.TimeoutExpired:
                _kill_group(proc)
                stdout, _ = proc.communicate()
                return CommandResult(
                    command=argv,
                    exit_code=-1,
                    stdout=_decode(stdout)[-_MAX_CAPTURE:],
                    stderr=f"Command timed out after {limit:g}s",
                    timed_out=True,
                    duration_ms=_elapsed_ms(start),
                    user=user,
                )

        result = CommandResult(
            command=argv,
            exit_code=proc.returncode,
            stdout=(stdout or "")[-_MAX_CAPTURE:],
            stderr=(stderr or "")[-_MAX_CAPTURE:],
            duration_ms=_elapsed_ms(start),
            user=user,
        )
        if not result.ok:
            logger.debug("Command exited %d: %s", result.exit_code, result.stderr_tail(3))
        return result


def _current_login() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


def _kill_group(proc: subprocess.Popen) -> None:
    """SIGKILL the command and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
