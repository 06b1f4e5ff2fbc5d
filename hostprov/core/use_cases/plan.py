"""
Plan use case — build the ordered step list without touching the host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.core.config.loader import ConfigError, load_config
from hostprov.core.engine.plan import Plan, build_plan
from hostprov.core.errors import PlanError, ValidationError
from hostprov.core.models.config import ProvisionConfig


@dataclass
class PlanResult:
    """A plan, or the errors that prevented building one."""

    plan: Plan | None = None
    config: ProvisionConfig | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.plan is not None and not self.errors

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 2

    def to_dict(self) -> dict:
        if self.errors:
            return {"ok": False, "errors": self.errors}
        result: dict = {"ok": True}
        if self.config:
            result["config"] = self.config.summary()
        if self.plan:
            result["plan"] = self.plan.to_dict()
        return result


def prepare(
    config_path: Path | None = None,
    overrides: dict | None = None,
) -> PlanResult:
    """Load config and build the plan; errors are collected, not raised."""
    result = PlanResult()
    try:
        result.config = load_config(config_path, overrides=overrides)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    except ValidationError as e:
        result.errors.extend(e.errors)
        return result

    try:
        result.plan = build_plan(result.config)
    except PlanError as e:
        result.errors.append(str(e))
    return result


def show_plan(config_path: Path | None = None) -> PlanResult:
    """Dry run: the plan ``apply`` would execute."""
    return prepare(config_path)
