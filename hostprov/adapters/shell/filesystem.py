"""
Host filesystem adapter — atomic file writes, directories, ownership.

All paths are host-absolute (``/etc/app.conf``) and resolved under
``root``. With the default root of ``/`` that is the real host; tests
and ``--mock`` rehearsals point ``root`` at a scratch directory.

Writes are atomic: content goes to a temp file in the target's
directory, is fsynced, then renamed over the target. A crash at any
point leaves either the previous file or the new one, never a partial.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import tempfile
from pathlib import Path

from hostprov.adapters.base import Adapter

logger = logging.getLogger(__name__)


class HostFilesystem(Adapter):
    """Filesystem operations rooted at ``root``.

    Args:
        root: Prefix applied to every host path.
        manage_ownership: Apply owner/group changes. Disabled for
            rehearsals, where the target users do not exist.
    """

    def __init__(self, root: str | Path = "/", manage_ownership: bool = True):
        self.root = Path(root)
        self.manage_ownership = manage_ownership

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return self.root.is_dir()

    def path(self, host_path: str | Path) -> Path:
        """Resolve a host-absolute path under the root."""
        relative = str(host_path).lstrip("/")
        return self.root / relative if relative else self.root

    # ── Queries ─────────────────────────────────────────────────

    def exists(self, host_path: str | Path) -> bool:
        return self.path(host_path).exists()

    def is_dir(self, host_path: str | Path) -> bool:
        return self.path(host_path).is_dir()

    def read_text(self, host_path: str | Path) -> str | None:
        """File content, or None if the file does not exist."""
        target = self.path(host_path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def mode(self, host_path: str | Path) -> int | None:
        target = self.path(host_path)
        if not target.exists():
            return None
        return target.stat().st_mode & 0o7777

    def owner(self, host_path: str | Path) -> tuple[str, str] | None:
        """(user, group) names owning the path, or None if absent."""
        target = self.path(host_path)
        if not target.exists():
            return None
        st = target.stat()
        return _user_name(st.st_uid), _group_name(st.st_gid)

    def symlink_target(self, host_path: str | Path) -> str | None:
        target = self.path(host_path)
        if not target.is_symlink():
            return None
        return os.readlink(target)

    # ── Mutations ───────────────────────────────────────────────

    def write_atomic(
        self,
        host_path: str | Path,
        content: str,
        mode: int | None = None,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        """Write ``content`` to the file atomically (temp + fsync + rename)."""
        target = self.path(host_path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
        )
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            if mode is not None:
                os.chmod(tmp, mode)
            elif target.exists():
                os.chmod(tmp, target.stat().st_mode & 0o7777)
            else:
                os.chmod(tmp, 0o644)
            if owner or group:
                self._chown(tmp, owner, group)
            os.replace(tmp, target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s (%d bytes)", target, len(content))

    def ensure_dir(
        self,
        host_path: str | Path,
        mode: int | None = None,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        target = self.path(host_path)
        target.mkdir(parents=True, exist_ok=True)
        if mode is not None:
            os.chmod(target, mode)
        if owner or group:
            self._chown(target, owner, group)

    def chown(self, host_path: str | Path, owner: str | None, group: str | None = None) -> None:
        self._chown(self.path(host_path), owner, group)

    def symlink(self, target: str | Path, link: str | Path) -> None:
        """Point ``link`` at host path ``target``, replacing any existing link."""
        link_path = self.path(link)
        link_path.parent.mkdir(parents=True, exist_ok=True)
        if link_path.is_symlink() or link_path.exists():
            link_path.unlink()
        link_path.symlink_to(str(target))

    def remove(self, host_path: str | Path) -> None:
        target = self.path(host_path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink(missing_ok=True)

    def _chown(self, target: Path, owner: str | None, group: str | None) -> None:
        if not self.manage_ownership:
            logger.debug("Ownership management disabled, not chowning %s", target)
            return
        shutil.chown(target, user=owner, group=group or owner)


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)
