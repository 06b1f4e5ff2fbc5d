"""
Step outcome models — what a check reports and what an apply produced.

StepResult plays the role a Receipt plays for adapters: the engine
never lets a step exception escape; every failure is captured here.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CheckStatus(str, Enum):
    SATISFIED = "satisfied"
    NOT_SATISFIED = "not_satisfied"
    UNKNOWN = "unknown"


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    CONTINUE = "continue"


Outcome = Literal["applied", "skipped", "failed"]
ErrorKind = Literal["apply", "timeout", "unexpected"]


class StepResult(BaseModel):
    """Outcome of one step in one run."""

    step: str
    kind: str = ""
    outcome: Outcome = "applied"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    attempts: int = 0

    detail: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    stderr_tail: str = ""

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return self.outcome == "applied"

    @property
    def skipped(self) -> bool:
        return self.outcome == "skipped"

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"

    @classmethod
    def success(cls, step: str, detail: str = "", **kwargs: Any) -> StepResult:
        return cls(step=step, outcome="applied", detail=detail, **kwargs)

    @classmethod
    def skip(cls, step: str, reason: str = "already satisfied", **kwargs: Any) -> StepResult:
        return cls(step=step, outcome="skipped", detail=reason, **kwargs)

    @classmethod
    def failure(
        cls,
        step: str,
        error: str,
        error_kind: ErrorKind = "apply",
        stderr_tail: str = "",
        **kwargs: Any,
    ) -> StepResult:
        return cls(
            step=step,
            outcome="failed",
            error=error,
            error_kind=error_kind,
            stderr_tail=stderr_tail,
            **kwargs,
        )


class StepStatus(BaseModel):
    """Check-only view of a step, reported by ``status``."""

    step: str
    kind: str
    status: CheckStatus
    detail: str = ""
