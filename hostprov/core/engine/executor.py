"""
Engine executor — runs a Plan step by step.

Flow per step:
    check → satisfied? skip : apply → failed? retry (re-check first) → policy

States: pending → running → completed | aborted. Engines are single-use;
the Engine owns all runtime state, steps stay immutable. Step exceptions
never escape ``run``: everything ends up in a StepResult.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from hostprov.core.engine.plan import Plan
from hostprov.core.errors import EngineError
from hostprov.core.models.result import CheckStatus, FailurePolicy, StepResult, StepStatus
from hostprov.core.persistence.audit import AuditEntry, AuditWriter
from hostprov.core.steps.base import Step, StepContext

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class EngineReport:
    """Result of running a plan."""

    run_id: str = ""
    state: EngineState = EngineState.PENDING
    results: list[StepResult] = field(default_factory=list)
    not_run: list[str] = field(default_factory=list)
    cancelled: bool = False
    aborted_by: str | None = None
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def applied(self) -> int:
        return sum(1 for r in self.results if r.applied)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def ok(self) -> bool:
        return self.state is EngineState.COMPLETED and self.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "ok": self.ok,
            "total": self.total,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "aborted_by": self.aborted_by,
            "not_run": list(self.not_run),
            "duration_ms": self.duration_ms,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


class Engine:
    """Executes one Plan, once.

    Args:
        plan: The ordered steps.
        ctx: Shared run context (config, adapters).
        retries: Default retries per failed step (a step may override).
        retry_delay: Fixed seconds between attempts.
        step_timeout: Command budget handed to each step.
        sleep: Injectable for tests.
    """

    def __init__(
        self,
        plan: Plan,
        ctx: StepContext,
        retries: int = 0,
        retry_delay: float = 5.0,
        step_timeout: float | None = None,
        sleep: Callable[[float], None] | None = None,
        run_id: str | None = None,
    ):
        self.plan = plan
        self.ctx = ctx
        self.retries = retries
        self.retry_delay = retry_delay
        self.step_timeout = step_timeout
        self.run_id = run_id or generate_run_id()
        self._sleep = sleep or time.sleep
        self._cancel = threading.Event()
        self._state = EngineState.PENDING

    @property
    def state(self) -> EngineState:
        return self._state

    def cancel(self) -> None:
        """Request cancellation; honoured between steps and attempts."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> EngineReport:
        """Execute the plan.

        Raises:
            EngineError: If this engine already ran.
        """
        if self._state is not EngineState.PENDING:
            raise EngineError(f"Engine {self.run_id} already used (state: {self._state.value})")
        self._state = EngineState.RUNNING
        start = time.monotonic()

        report = EngineReport(run_id=self.run_id, state=self._state)
        logger.info("Run %s: %d step(s)", self.run_id, len(self.plan))

        steps = list(self.plan)
        for position, step in enumerate(steps):
            if self.cancelled:
                report.cancelled = True
                report.not_run = [s.name for s in steps[position:]]
                self._state = EngineState.ABORTED
                logger.warning("Run cancelled before '%s'", step.name)
                break

            result = self._run_step(step)
            report.results.append(result)
            self._log_result(result)

            if result.failed:
                if step.policy is FailurePolicy.FATAL:
                    report.aborted_by = step.name
                    report.not_run = [s.name for s in steps[position + 1:]]
                    self._state = EngineState.ABORTED
                    logger.error("Fatal step '%s' failed, aborting", step.name)
                    break
                logger.warning("Step '%s' failed, continuing", step.name)
        else:
            self._state = EngineState.COMPLETED

        report.cancelled = report.cancelled or self.cancelled
        report.state = self._state
        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Run %s %s: %d applied, %d skipped, %d failed",
            self.run_id, self._state.value, report.applied, report.skipped, report.failed,
        )
        return report

    # ── Per-step ────────────────────────────────────────────────

    def _run_step(self, step: Step) -> StepResult:
        self.ctx.timeout = self.step_timeout
        started_at = _now_iso()
        start = time.monotonic()
        max_attempts = 1 + (step.retries if step.retries is not None else self.retries)

        status, check_detail = self._check(step)
        if status is CheckStatus.SATISFIED:
            return StepResult.skip(
                step.name, kind=step.kind, started_at=started_at, duration_ms=_elapsed_ms(start),
            )

        attempt = 0
        result: StepResult | None = None
        while attempt < max_attempts:
            if attempt > 0:
                if self.cancelled:
                    logger.warning("Cancelled during retries of '%s'", step.name)
                    break
                logger.info("Retrying '%s' in %gs (attempt %d/%d)", step.name, self.retry_delay, attempt + 1, max_attempts)
                self._sleep(self.retry_delay)
                status, _ = self._check(step)
                if status is CheckStatus.SATISFIED:
                    result = StepResult.success(
                        step.name, "satisfied on re-check after failed attempt", kind=step.kind,
                    )
                    break

            attempt += 1
            result = self._apply(step)
            if not result.failed:
                break
            logger.debug("Attempt %d of '%s' failed: %s", attempt, step.name, result.error)

        assert result is not None
        if check_detail and result.failed:
            result.metadata["check"] = check_detail
        result.attempts = attempt
        result.started_at = started_at
        result.ended_at = _now_iso()
        result.duration_ms = _elapsed_ms(start)
        return result

    def _check(self, step: Step) -> tuple[CheckStatus, str]:
        try:
            return step.evaluate(self.ctx)
        except Exception as e:
            logger.warning("Check for '%s' raised %s: %s", step.name, type(e).__name__, e)
            return CheckStatus.UNKNOWN, f"{type(e).__name__}: {e}"

    def _apply(self, step: Step) -> StepResult:
        try:
            return step.apply(self.ctx)
        except Exception as e:
            logger.exception("Unexpected error in step '%s'", step.name)
            return StepResult.failure(step.name, f"{type(e).__name__}: {e}", error_kind="unexpected", kind=step.kind)

    @staticmethod
    def _log_result(result: StepResult) -> None:
        marker = "✓" if result.applied else "✗" if result.failed else "⊘"
        if result.failed:
            logger.error("%s %s → failed: %s", marker, result.step, result.error)
            if result.stderr_tail:
                logger.error("  stderr: %s", result.stderr_tail)
        else:
            logger.info("%s %s → %s %s", marker, result.step, result.outcome, result.detail)


def evaluate_plan(plan: Plan, ctx: StepContext) -> list[StepStatus]:
    """Run every check without applying anything."""
    statuses = []
    for step in plan:
        try:
            status, detail = step.evaluate(ctx)
        except Exception as e:
            status, detail = CheckStatus.UNKNOWN, f"{type(e).__name__}: {e}"
        statuses.append(StepStatus(step=step.name, kind=step.kind, status=status, detail=detail))
    return statuses


def write_audit_entry(report: EngineReport, audit_writer: AuditWriter, context: dict[str, Any] | None = None) -> None:
    """Append the run summary to the audit ledger."""
    entry = AuditEntry(
        run_id=report.run_id,
        operation_type="apply",
        state=report.state.value,
        steps_total=report.total,
        steps_applied=report.applied,
        steps_skipped=report.skipped,
        steps_failed=report.failed,
        duration_ms=report.duration_ms,
        errors=[f"{r.step}: {r.error}" for r in report.results if r.failed],
        context=context or {},
    )
    audit_writer.write(entry)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
