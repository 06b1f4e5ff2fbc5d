"""
npm global package adapter.
"""

from __future__ import annotations

import json
import logging
import shutil

from hostprov.adapters.base import CommandResult, CommandRunner, PackageManager

logger = logging.getLogger(__name__)


class NpmPackageManager(PackageManager):
    """Globally installed npm packages (``npm install -g``)."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "npm"

    def is_available(self) -> bool:
        return shutil.which("npm") is not None

    def installed_version(self, package: str) -> str | None:
        result = self._runner.run("npm", ["ls", "-g", "--depth=0", "--json", package])
        # npm ls exits 1 when the package is missing but still prints JSON
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.debug("Unparseable npm ls output for %s", package)
            return None
        info = data.get("dependencies", {}).get(package)
        if not info:
            return None
        return info.get("version")

    def install(self, package: str, version: str | None = None) -> CommandResult:
        spec = f"{package}@{version}" if version else package
        return self._runner.run("npm", ["install", "-g", spec])

    def upgrade(self, package: str, version: str | None = None) -> CommandResult:
        return self.install(package, version or "latest")
