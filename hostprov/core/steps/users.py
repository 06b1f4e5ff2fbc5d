"""
System accounts: the service user/group and its PostgreSQL role.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar

from hostprov.core.errors import StepApplyError, StepCheckError
from hostprov.core.models.result import CheckStatus
from hostprov.core.steps.base import Step, StepContext

# getent exit status for "key not found"
_GETENT_MISSING = 2
_ROLE_NAME = re.compile(r"^[a-z_][a-z0-9_-]*$")


@dataclass(frozen=True, kw_only=True)
class UserCreateStep(Step):
    """System group + system user with a home directory."""

    kind: ClassVar[str] = "user"

    user: str
    home: str
    group: str | None = None
    shell: str = "/bin/bash"

    @property
    def group_name(self) -> str:
        return self.group or self.user

    def check(self, ctx: StepContext) -> CheckStatus:
        if self._exists(ctx, "group", self.group_name) and self._exists(ctx, "passwd", self.user):
            return CheckStatus.SATISFIED
        return CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        created = []
        if not self._exists(ctx, "group", self.group_name):
            ctx.run_checked("groupadd", "--system", self.group_name, what=f"groupadd {self.group_name}")
            created.append(f"group {self.group_name}")
        if not self._exists(ctx, "passwd", self.user):
            ctx.run_checked(
                "useradd",
                "--system",
                "--create-home",
                "--home-dir", self.home,
                "--shell", self.shell,
                "--gid", self.group_name,
                self.user,
                what=f"useradd {self.user}",
            )
            created.append(f"user {self.user} ({self.home})")
        return "created " + ", ".join(created) if created else "already present"

    @staticmethod
    def _exists(ctx: StepContext, database: str, key: str) -> bool:
        result = ctx.run("getent", database, key)
        if result.ok:
            return True
        if result.exit_code == _GETENT_MISSING and not result.timed_out:
            return False
        raise StepCheckError(f"getent {database} {key} failed: {result.stderr_tail(3)}")


@dataclass(frozen=True, kw_only=True)
class DatabaseRoleStep(Step):
    """PostgreSQL role for the service user, managed as ``postgres``."""

    kind: ClassVar[str] = "database_role"

    role: str
    superuser: bool = True
    admin_user: str = "postgres"

    def check(self, ctx: StepContext) -> CheckStatus:
        if not _ROLE_NAME.match(self.role):
            raise StepCheckError(f"Invalid role name: {self.role!r}")
        result = ctx.run(
            "psql", "-tAc", f"SELECT 1 FROM pg_roles WHERE rolname='{self.role}'",
            user=self.admin_user,
        )
        if not result.ok:
            # Server down or psql missing: the role may or may not exist
            raise StepCheckError(f"Cannot query roles: {result.stderr_tail(3)}")
        return CheckStatus.SATISFIED if result.stdout.strip() == "1" else CheckStatus.NOT_SATISFIED

    def do_apply(self, ctx: StepContext) -> str | None:
        if not _ROLE_NAME.match(self.role):
            raise StepApplyError(f"Invalid role name: {self.role!r}")
        flags = ["--superuser"] if self.superuser else ["--no-superuser", "--createdb"]
        ctx.run_checked("createuser", *flags, self.role, user=self.admin_user, what=f"createuser {self.role}")
        return f"created role {self.role}"
