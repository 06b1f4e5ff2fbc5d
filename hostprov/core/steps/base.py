"""
Step base — the unit of work the engine executes.

A Step is an immutable value object: a unique name, its prerequisites,
a Check (is the target state already there?) and an Apply (make it so).
Runtime state (attempts, timings, outcomes) belongs to the engine.

Variants implement ``check`` and ``do_apply``. ``apply`` wraps
``do_apply`` and turns StepApplyError / StepTimeout / OSError into a
failed StepResult, so expected failures never escape a step.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from hostprov.adapters.base import CommandResult, CommandRunner
from hostprov.adapters.registry import AdapterRegistry
from hostprov.adapters.shell.filesystem import HostFilesystem
from hostprov.core.errors import StepApplyError, StepCheckError, StepTimeout
from hostprov.core.models.config import ProvisionConfig
from hostprov.core.models.result import CheckStatus, FailurePolicy, StepResult

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """Shared context for one run.

    ``timeout`` is the per-step command budget; the engine sets it before
    each step. ``values`` is a scratch mapping steps may use to hand data
    to later steps within the same run.
    """

    config: ProvisionConfig
    registry: AdapterRegistry
    timeout: float | None = None
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def runner(self) -> CommandRunner:
        return self.registry.runner

    @property
    def fs(self) -> HostFilesystem:
        return self.registry.filesystem

    def run(
        self,
        command: str,
        *args: str,
        user: str | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a command under the step timeout. Never raises."""
        runner = self.runner
        if user is None:
            return runner.run(command, args, env=env, cwd=cwd, timeout=self.timeout, input_text=input_text)
        with runner.as_user(user):
            return runner.run(command, args, env=env, cwd=cwd, timeout=self.timeout, input_text=input_text)

    def run_checked(self, command: str, *args: str, what: str = "", **kwargs: Any) -> CommandResult:
        """Run a command; raise StepApplyError/StepTimeout when it fails."""
        return require_ok(self.run(command, *args, **kwargs), what or command)


def require_ok(result: CommandResult, what: str) -> CommandResult:
    """Raise the matching step error for a failed CommandResult."""
    if result.timed_out:
        raise StepTimeout(f"{what} timed out", stderr=result.stderr_tail(), exit_code=result.exit_code)
    if not result.ok:
        raise StepApplyError(
            f"{what} failed (exit {result.exit_code})",
            stderr=result.stderr_tail(),
            exit_code=result.exit_code,
        )
    return result


@dataclass(frozen=True, kw_only=True)
class Step(ABC):
    """One idempotent unit of provisioning work."""

    kind: ClassVar[str] = "step"

    name: str
    requires: tuple[str, ...] = ()
    after: tuple[str, ...] = ()
    policy: FailurePolicy = FailurePolicy.FATAL
    retries: int | None = None
    description: str = ""

    @abstractmethod
    def check(self, ctx: StepContext) -> CheckStatus:
        """Whether the target state holds. Must not mutate the host.

        May raise StepCheckError when the state cannot be determined.
        """

    @abstractmethod
    def do_apply(self, ctx: StepContext) -> str | None:
        """Mutate the host toward the target state.

        Returns a short detail for the report. Raises StepApplyError
        (or StepTimeout) on failure.
        """

    def evaluate(self, ctx: StepContext) -> tuple[CheckStatus, str]:
        """Run the check, mapping StepCheckError to UNKNOWN."""
        try:
            return self.check(ctx), ""
        except StepCheckError as e:
            logger.warning("Check for '%s' inconclusive: %s", self.name, e)
            return CheckStatus.UNKNOWN, str(e)

    def apply(self, ctx: StepContext) -> StepResult:
        """Apply and capture the outcome as a StepResult."""
        start = time.monotonic()
        try:
            detail = self.do_apply(ctx) or ""
        except StepTimeout as e:
            return StepResult.failure(
                self.name,
                f"{e} (limit {ctx.timeout:g}s)" if ctx.timeout else str(e),
                error_kind="timeout",
                stderr_tail=e.stderr,
                kind=self.kind,
                duration_ms=_elapsed_ms(start),
            )
        except StepApplyError as e:
            return StepResult.failure(
                self.name,
                str(e),
                stderr_tail=e.stderr,
                kind=self.kind,
                duration_ms=_elapsed_ms(start),
            )
        except OSError as e:
            return StepResult.failure(
                self.name,
                f"{type(e).__name__}: {e}",
                kind=self.kind,
                duration_ms=_elapsed_ms(start),
            )
        return StepResult.success(self.name, detail, kind=self.kind, duration_ms=_elapsed_ms(start))

    def describe(self) -> dict[str, Any]:
        """Plan-report view of the step."""
        return {
            "name": self.name,
            "kind": self.kind,
            "requires": list(self.requires),
            "after": list(self.after),
            "policy": self.policy.value,
            "description": self.description,
        }


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
