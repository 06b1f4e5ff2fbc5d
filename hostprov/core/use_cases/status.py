"""
Status use case — evaluate every check in the plan, apply nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.adapters.registry import AdapterRegistry
from hostprov.core.engine.executor import evaluate_plan
from hostprov.core.models.config import ProvisionConfig
from hostprov.core.models.result import CheckStatus, StepStatus
from hostprov.core.steps.base import StepContext
from hostprov.core.use_cases.apply import build_registry
from hostprov.core.use_cases.plan import prepare


@dataclass
class StatusResult:
    """Per-step check status."""

    config: ProvisionConfig | None = None
    statuses: list[StepStatus] = field(default_factory=list)
    adapters: dict[str, dict] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def count(self, status: CheckStatus) -> int:
        return sum(1 for s in self.statuses if s.status is status)

    @property
    def converged(self) -> bool:
        return not self.errors and self.count(CheckStatus.SATISFIED) == len(self.statuses)

    @property
    def exit_code(self) -> int:
        return 2 if self.errors else 0

    def to_dict(self) -> dict:
        if self.errors:
            return {"ok": False, "errors": self.errors}
        return {
            "ok": True,
            "converged": self.converged,
            "satisfied": self.count(CheckStatus.SATISFIED),
            "not_satisfied": self.count(CheckStatus.NOT_SATISFIED),
            "unknown": self.count(CheckStatus.UNKNOWN),
            "steps": [s.model_dump(mode="json") for s in self.statuses],
            "adapters": self.adapters,
        }


def get_status(
    config_path: Path | None = None,
    mock: bool = False,
    root: str | None = None,
    registry: AdapterRegistry | None = None,
) -> StatusResult:
    """Report which steps are already satisfied on the host."""
    prepared = prepare(config_path)
    result = StatusResult(config=prepared.config)
    if prepared.errors:
        result.errors = prepared.errors
        return result

    assert prepared.config is not None and prepared.plan is not None
    if registry is None:
        registry, _ = build_registry(prepared.config, mock=mock, root=root)

    ctx = StepContext(config=prepared.config, registry=registry, timeout=prepared.config.step_timeout)
    result.statuses = evaluate_plan(prepared.plan, ctx)
    result.adapters = registry.adapter_status()
    return result
