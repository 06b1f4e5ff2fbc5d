"""
Tests for the host filesystem adapter.
"""

import os
from pathlib import Path

import pytest

from hostprov.adapters.shell.filesystem import HostFilesystem


@pytest.fixture
def fs(host_root: Path) -> HostFilesystem:
    return HostFilesystem(root=host_root, manage_ownership=False)


class TestPaths:
    def test_host_paths_resolved_under_root(self, fs, host_root: Path):
        assert fs.path("/etc/erp.conf") == host_root / "etc" / "erp.conf"
        assert fs.path("/") == host_root

    def test_queries_on_missing_path(self, fs):
        assert fs.read_text("/nope") is None
        assert fs.mode("/nope") is None
        assert fs.owner("/nope") is None
        assert fs.symlink_target("/nope") is None


class TestWriteAtomic:
    def test_creates_parents_and_mode(self, fs, host_root: Path):
        fs.write_atomic("/etc/erp/erp.conf", "[options]\n", mode=0o640)
        target = host_root / "etc/erp/erp.conf"
        assert target.read_text() == "[options]\n"
        assert fs.mode("/etc/erp/erp.conf") == 0o640

    def test_existing_mode_kept(self, fs, host_root: Path):
        fs.write_atomic("/usr/local/bin/backup.sh", "#!/bin/bash\n", mode=0o750)
        fs.write_atomic("/usr/local/bin/backup.sh", "#!/bin/bash\necho\n")
        assert fs.mode("/usr/local/bin/backup.sh") == 0o750

    def test_crash_leaves_previous_content(self, fs, host_root: Path, monkeypatch: pytest.MonkeyPatch):
        fs.write_atomic("/etc/erp.conf", "old\n")

        def crash(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(OSError, match="disk full"):
            fs.write_atomic("/etc/erp.conf", "new\n")

        assert (host_root / "etc/erp.conf").read_text() == "old\n"
        assert [p.name for p in (host_root / "etc").iterdir()] == ["erp.conf"]

    def test_ownership_skipped_when_disabled(self, fs):
        fs.write_atomic("/etc/erp.conf", "x\n", owner="no-such-user-here")
        assert fs.read_text("/etc/erp.conf") == "x\n"


class TestDirectoriesAndLinks:
    def test_ensure_dir_mode(self, fs):
        fs.ensure_dir("/opt/erp/logs", mode=0o750)
        assert fs.is_dir("/opt/erp/logs")
        assert fs.mode("/opt/erp/logs") == 0o750

    def test_symlink_replaced(self, fs):
        fs.symlink("/etc/nginx/sites-available/a", "/etc/nginx/sites-enabled/site")
        fs.symlink("/etc/nginx/sites-available/b", "/etc/nginx/sites-enabled/site")
        assert fs.symlink_target("/etc/nginx/sites-enabled/site") == "/etc/nginx/sites-available/b"

    def test_remove_file_and_tree(self, fs):
        fs.write_atomic("/tmp/x/file", "1")
        fs.remove("/tmp/x/file")
        assert not fs.exists("/tmp/x/file")
        fs.remove("/tmp/x")
        assert not fs.exists("/tmp/x")
        fs.remove("/tmp/never-there")
