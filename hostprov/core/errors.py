"""
Error taxonomy for the provisioning engine.

Configuration and plan errors are raised at build time, before any host
mutation. Step errors are raised inside steps and captured by the engine
into StepResults; they never escape ``Engine.run``.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all hostprov errors."""


class ValidationError(ProvisionError):
    """Configuration failed validation.

    Carries every problem found, so an operator can fix the whole
    configuration in one pass.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class PlanError(ProvisionError):
    """The step catalog could not be turned into a valid Plan."""


class CyclicDependency(PlanError):
    """Step prerequisites form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__("Dependency cycle: " + " -> ".join(self.cycle))


class MissingDependency(PlanError):
    """A step requires a step that is unknown or not activated."""

    def __init__(self, step: str, missing: str):
        self.step = step
        self.missing = missing
        super().__init__(f"Step '{step}' requires '{missing}', which is not in the plan")


class StepCheckError(ProvisionError):
    """A check could not determine whether its target state holds."""


class StepApplyError(ProvisionError):
    """An apply failed (external command error, refused operation, ...)."""

    def __init__(self, message: str, stderr: str = "", exit_code: int | None = None):
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(message)


class StepTimeout(StepApplyError):
    """A command run by an apply exceeded its allotted time."""


class EngineError(ProvisionError):
    """The engine was used outside its lifecycle (e.g. reused)."""
