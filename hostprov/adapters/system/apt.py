"""
APT package manager adapter (dpkg-query / apt-get).
"""

from __future__ import annotations

import logging
import shutil

from hostprov.adapters.base import CommandResult, CommandRunner, PackageManager

logger = logging.getLogger(__name__)

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager(PackageManager):
    """Debian/Ubuntu packages.

    ``apt-get update`` runs once, lazily, before the first install or
    upgrade of the process.
    """

    def __init__(self, runner: CommandRunner):
        self._runner = runner
        self._index_refreshed = False

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None and shutil.which("dpkg-query") is not None

    def installed_version(self, package: str) -> str | None:
        result = self._runner.run(
            "dpkg-query", ["-W", "-f=${Status}\t${Version}", package]
        )
        if not result.ok:
            return None
        status, _, version = result.stdout.partition("\t")
        if not status.endswith("installed") or status.startswith("deinstall"):
            return None
        return version.strip() or None

    def install(self, package: str, version: str | None = None) -> CommandResult:
        self._refresh_index()
        spec = f"{package}={version}" if version else package
        return self._runner.run(
            "apt-get", ["install", "-y", "--no-install-recommends", spec], env=_APT_ENV
        )

    def upgrade(self, package: str, version: str | None = None) -> CommandResult:
        self._refresh_index()
        spec = f"{package}={version}" if version else package
        return self._runner.run(
            "apt-get", ["install", "-y", "--only-upgrade", spec], env=_APT_ENV
        )

    def compare_versions(self, left: str, right: str) -> int:
        if self._runner.run("dpkg", ["--compare-versions", left, "lt", right]).ok:
            return -1
        if self._runner.run("dpkg", ["--compare-versions", left, "eq", right]).ok:
            return 0
        return 1

    def _refresh_index(self) -> None:
        if self._index_refreshed:
            return
        result = self._runner.run("apt-get", ["update"], env=_APT_ENV)
        if result.ok:
            self._index_refreshed = True
        else:
            logger.warning("apt-get update failed: %s", result.stderr_tail(3))
