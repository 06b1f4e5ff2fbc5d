"""
cron.d scheduler adapter — one file per entry under /etc/cron.d.
"""

from __future__ import annotations

import re

from hostprov.adapters.base import Scheduler
from hostprov.adapters.shell.filesystem import HostFilesystem

CRON_DIR = "/etc/cron.d"

# cron ignores files whose names contain anything but these
_VALID_NAME = re.compile(r"^[A-Za-z0-9_-]+$")


class CronDirectoryScheduler(Scheduler):
    """Entries written atomically to ``/etc/cron.d/<name>`` (mode 0644)."""

    def __init__(self, fs: HostFilesystem):
        self._fs = fs

    @property
    def name(self) -> str:
        return "cron"

    def is_available(self) -> bool:
        return self._fs.is_dir(CRON_DIR)

    def entry(self, name: str) -> str | None:
        return self._fs.read_text(self._entry_path(name))

    def install(self, name: str, schedule: str, user: str, command: str) -> None:
        self._fs.write_atomic(
            self._entry_path(name),
            self.render_entry(schedule, user, command),
            mode=0o644,
        )

    def _entry_path(self, name: str) -> str:
        if not _VALID_NAME.match(name):
            raise ValueError(f"Invalid cron entry name: {name!r}")
        return f"{CRON_DIR}/{name}"
