"""
Audit ledger — append-only NDJSON record of provisioning runs.

One JSON line per ``apply`` run: when, which run id, how it ended and
which steps failed. The ledger is never rewritten; entries are only
appended.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """A single run summary."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    operation_type: str = ""       # apply

    # Outcome
    state: str = ""                # completed, aborted
    steps_total: int = 0
    steps_applied: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)

    # Instance summary, mock flag, ...
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Appends AuditEntry lines to ``path`` (created on first write)."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. I/O problems are logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s", entry.run_id)
        except OSError as e:
            logger.error("Failed to write audit entry to %s: %s", self._path, e)

    def read_all(self) -> list[AuditEntry]:
        """All readable entries, oldest first; corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]
