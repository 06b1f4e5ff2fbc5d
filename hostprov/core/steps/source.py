"""
Application source and Python runtime.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import ClassVar

from hostprov.core.errors import StepApplyError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step, StepContext

logger = logging.getLogger(__name__)

REQUIREMENTS_MARKER = ".hostprov-requirements.sha256"


@dataclass(frozen=True, kw_only=True)
class SourceCheckoutStep(Step):
    """Shallow clone of one branch, as the service user.

    An existing checkout on another branch is left alone and the step
    fails; switching branches under a running service is an operator call.
    """

    kind: ClassVar[str] = "source"

    repository: str = field(repr=False)
    branch: str
    dest: str
    user: str | None = None
    display_url: str = ""

    def _current_branch(self, ctx: StepContext) -> str | None:
        result = ctx.run("git", "-C", self.dest, "rev-parse", "--abbrev-ref", "HEAD", user=self.user)
        return result.stdout.strip() if result.ok else None

    def check(self, ctx: StepContext) -> CheckStatus:
        if self._current_branch(ctx) == self.branch:
            return CheckStatus.SATISFIED
        return CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        current = self._current_branch(ctx)
        if current == self.branch:
            return f"{self.dest} already on {self.branch}"
        if current is not None:
            raise StepApplyError(
                f"{self.dest} is a checkout of '{current}', expected '{self.branch}'; not switching"
            )
        shown = self.display_url or "repository"
        logger.info("Cloning %s (%s) into %s", shown, self.branch, self.dest)
        ctx.run_checked(
            "git", "clone", "--depth", "1", "--branch", self.branch, self.repository, self.dest,
            user=self.user,
            what=f"git clone {shown}",
        )
        return f"cloned {shown}@{self.branch} into {self.dest}"


@dataclass(frozen=True, kw_only=True)
class VirtualenvStep(Step):
    """Virtualenv with pip requirements installed.

    Satisfied when the marker file in the virtualenv holds the digest of
    the current requirements; a changed requirements file reinstalls.
    """

    kind: ClassVar[str] = "virtualenv"

    venv_dir: str
    requirements: tuple[str, ...] = ()
    packages: tuple[str, ...] = ()
    user: str | None = None
    python: str = "python3"

    @property
    def marker(self) -> str:
        return f"{self.venv_dir}/{REQUIREMENTS_MARKER}"

    def digest(self, ctx: StepContext) -> str:
        h = hashlib.sha256()
        for path in self.requirements:
            h.update(path.encode())
            h.update((ctx.fs.read_text(path) or "").encode())
        for pkg in self.packages:
            h.update(pkg.encode())
        return h.hexdigest()

    def check(self, ctx: StepContext) -> CheckStatus:
        current = ctx.fs.read_text(self.marker)
        if current is not None and current.strip() == self.digest(ctx):
            return CheckStatus.SATISFIED
        return CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        pip = f"{self.venv_dir}/bin/pip"
        if not ctx.fs.exists(f"{self.venv_dir}/bin/python"):
            ctx.run_checked(self.python, "-m", "venv", self.venv_dir, user=self.user, what="create virtualenv")
        ctx.run_checked(pip, "install", "--upgrade", "pip", "wheel", user=self.user, what="upgrade pip")
        for path in self.requirements:
            ctx.run_checked(pip, "install", "-r", path, user=self.user, what=f"pip install -r {path}")
        if self.packages:
            ctx.run_checked(pip, "install", *self.packages, user=self.user, what="pip install")
        ctx.fs.write_atomic(self.marker, self.digest(ctx) + "\n", owner=self.user)
        return f"{self.venv_dir} ({len(self.requirements)} requirement file(s))"
