"""
File steps: directories, secret files and rendered templates.

All writes go through ``HostFilesystem.write_atomic``; a file is either
its previous content or its new content, never a partial write.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import ClassVar

from hostprov.core.errors import StepApplyError, StepCheckError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step, StepContext, require_ok
from hostprov.core.templating import TemplateError, load_template, process_template

logger = logging.getLogger(__name__)


def _owner_matches(ctx: StepContext, path: str, owner: str | None, group: str | None) -> bool:
    if not owner or not ctx.fs.manage_ownership:
        return True
    current = ctx.fs.owner(path)
    return current is not None and current == (owner, group or owner)


@dataclass(frozen=True, kw_only=True)
class DirectoryStep(Step):
    """Directories with an owner and mode."""

    kind: ClassVar[str] = "directory"

    paths: tuple[str, ...]
    owner: str | None = None
    group: str | None = None
    mode: int | None = None

    def check(self, ctx: StepContext) -> CheckStatus:
        for path in self.paths:
            if not ctx.fs.is_dir(path):
                return CheckStatus.NOT_SATISFIED
            if self.mode is not None and ctx.fs.mode(path) != self.mode:
                return CheckStatus.NOT_SATISFIED
            if not _owner_matches(ctx, path, self.owner, self.group):
                return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        for path in self.paths:
            ctx.fs.ensure_dir(path, mode=self.mode, owner=self.owner, group=self.group)
        return ", ".join(self.paths)


@dataclass(frozen=True)
class SecretRef:
    """Template placeholder value read from a secret file at render time."""

    path: str

    def resolve(self, ctx: StepContext) -> str | None:
        content = ctx.fs.read_text(self.path)
        return content.strip() if content is not None else None


@dataclass(frozen=True, kw_only=True)
class SecretFileStep(Step):
    """A root-only secret file, generated once and never regenerated.

    With ``value`` set the file holds that fixed value instead, and a
    file with different content is rewritten.
    """

    kind: ClassVar[str] = "secret"

    path: str
    value: str | None = field(default=None, repr=False)
    length: int = 24
    mode: int = 0o600

    def check(self, ctx: StepContext) -> CheckStatus:
        current = ctx.fs.read_text(self.path)
        if current is None:
            return CheckStatus.NOT_SATISFIED
        if self.value is not None and current.strip() != self.value:
            return CheckStatus.NOT_SATISFIED
        if ctx.fs.mode(self.path) != self.mode:
            return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        current = ctx.fs.read_text(self.path)
        if current is not None and (self.value is None or current.strip() == self.value):
            ctx.fs.write_atomic(self.path, current, mode=self.mode)
            return f"fixed permissions on {self.path}"
        secret = self.value if self.value is not None else secrets.token_urlsafe(self.length)
        ctx.fs.write_atomic(self.path, secret + "\n", mode=self.mode)
        return f"wrote {self.path}"


@dataclass(frozen=True, kw_only=True)
class TemplateWriteStep(Step):
    """Render a template and write the whole file atomically.

    Options:
        link_to: Also maintain a symlink at this path pointing at ``path``.
        verify_command: Run after a change (``nginx -t``); on failure the
            previous content is restored and the step fails.
        daemon_reload: Reload the systemd manager configuration after a
            change, before any reload or restart.
        reload_service: Reload this service after a change.
        restart_service: Restart this service after a change, if running.
    """

    kind: ClassVar[str] = "template"

    template: str
    path: str
    features: Mapping[str, bool] = field(default_factory=dict)
    placeholders: Mapping[str, str | SecretRef] = field(default_factory=dict, repr=False)
    owner: str | None = None
    group: str | None = None
    mode: int = 0o644
    link_to: str | None = None
    verify_command: tuple[str, ...] = ()
    daemon_reload: bool = False
    reload_service: str | None = None
    restart_service: str | None = None

    def render(self, ctx: StepContext) -> str:
        """Rendered file content. Raises TemplateError on bad input."""
        text = load_template(self.template, ctx.config.templates)
        values: dict[str, str] = {}
        for key, value in self.placeholders.items():
            if isinstance(value, SecretRef):
                if f"__{key}__" not in text:
                    continue
                resolved = value.resolve(ctx)
                if resolved is None:
                    raise TemplateError(f"Secret for __{key}__ not found at {value.path}")
                values[key] = resolved
            else:
                values[key] = str(value)
        return process_template(text, self.features, values)

    def check(self, ctx: StepContext) -> CheckStatus:
        try:
            rendered = self.render(ctx)
        except TemplateError as e:
            raise StepCheckError(str(e)) from e
        if ctx.fs.read_text(self.path) != rendered:
            return CheckStatus.NOT_SATISFIED
        if ctx.fs.mode(self.path) != self.mode:
            return CheckStatus.NOT_SATISFIED
        if not _owner_matches(ctx, self.path, self.owner, self.group):
            return CheckStatus.NOT_SATISFIED
        if self.link_to and ctx.fs.symlink_target(self.link_to) != self.path:
            return CheckStatus.NOT_SATISFIED
        return CheckStatus.SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        try:
            rendered = self.render(ctx)
        except TemplateError as e:
            raise StepApplyError(str(e)) from e

        fs = ctx.fs
        previous = fs.read_text(self.path)
        changed = previous != rendered
        fs.write_atomic(self.path, rendered, mode=self.mode, owner=self.owner, group=self.group)

        previous_link = fs.symlink_target(self.link_to) if self.link_to else None
        if self.link_to and previous_link != self.path:
            fs.symlink(self.path, self.link_to)

        if changed and self.verify_command:
            result = ctx.run(*self.verify_command)
            if not result.ok:
                self._restore(ctx, previous, previous_link)
                require_ok(result, " ".join(self.verify_command))

        if changed:
            self._notify(ctx)
        return f"{'updated' if changed else 'unchanged'} {self.path}"

    def _restore(self, ctx: StepContext, previous: str | None, previous_link: str | None) -> None:
        logger.warning("Verification failed, restoring previous %s", self.path)
        if previous is None:
            ctx.fs.remove(self.path)
        else:
            ctx.fs.write_atomic(self.path, previous, mode=self.mode, owner=self.owner, group=self.group)
        # Put back whatever the link pointed at before this apply
        if not self.link_to or previous_link == self.path:
            return
        if previous_link is None:
            ctx.fs.remove(self.link_to)
        else:
            ctx.fs.symlink(previous_link, self.link_to)

    def _notify(self, ctx: StepContext) -> None:
        services = ctx.registry.services
        if self.daemon_reload:
            require_ok(services.daemon_reload(), "daemon-reload")
        if self.reload_service:
            require_ok(services.reload(self.reload_service), f"reload {self.reload_service}")
        if self.restart_service and services.is_active(self.restart_service):
            require_ok(services.restart(self.restart_service), f"restart {self.restart_service}")
