"""
Configuration validation — raw settings in, ProvisionConfig out.

This is the only place cross-field invariants are enforced. Field
rules come from the pydantic model; cross-field rules are the RULES
table below. All problems are collected and raised together in one
ValidationError so an operator can fix the file in one pass.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hostprov.core.errors import ValidationError
from hostprov.core.models.config import (
    PLACEHOLDER_EMAILS,
    PasswordPolicy,
    ProvisionConfig,
)
from hostprov.core.templating import TEMPLATE_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rule:
    """A cross-field invariant.

    ``fields`` names the settings the rule reads; the rule is not
    evaluated when one of them already failed field validation.
    ``message`` is formatted with the candidate config as ``c``.
    """

    fields: tuple[str, ...]
    holds: Callable[[ProvisionConfig], bool]
    message: str


RULES: tuple[Rule, ...] = (
    Rule(
        ("tls", "domain"),
        lambda c: not c.tls or c.has_domain,
        "domain: TLS is enabled but domain is 'none'; set a fully qualified domain name",
    ),
    Rule(
        ("tls", "admin_email"),
        lambda c: not c.tls or c.admin_email.lower() not in PLACEHOLDER_EMAILS,
        "admin_email: TLS requires a real contact email for certificate registration"
        " (got '{c.admin_email}')",
    ),
    Rule(
        ("tls", "reverse_proxy"),
        lambda c: not c.tls or c.reverse_proxy,
        "reverse_proxy: TLS is terminated by the reverse proxy; enable reverse_proxy or disable tls",
    ),
    Rule(
        ("http_port", "longpolling_port"),
        lambda c: c.http_port != c.longpolling_port,
        "longpolling_port: must differ from http_port ({c.http_port})",
    ),
    Rule(
        ("password_policy", "admin_password"),
        lambda c: c.password_policy is not PasswordPolicy.FIXED or bool(c.admin_password),
        "admin_password: required when password_policy is 'fixed'",
    ),
    Rule(
        ("limit_memory_soft", "limit_memory_hard"),
        lambda c: c.limit_memory_soft <= c.limit_memory_hard,
        "limit_memory_soft: must not exceed limit_memory_hard ({c.limit_memory_hard})",
    ),
    Rule(
        ("limit_time_cpu", "limit_time_real"),
        lambda c: c.limit_time_cpu <= c.limit_time_real,
        "limit_time_cpu: must not exceed limit_time_real ({c.limit_time_real})",
    ),
    Rule(
        ("templates",),
        lambda c: set(c.templates) <= set(TEMPLATE_NAMES),
        "templates: unknown template name(s); known: " + ", ".join(TEMPLATE_NAMES),
    ),
    Rule(
        ("templates",),
        lambda c: all(Path(p).is_file() for p in c.templates.values()),
        "templates: template override file not found",
    ),
)


def validate_config(raw: Mapping[str, Any]) -> ProvisionConfig:
    """Validate raw settings.

    Args:
        raw: Flat key/value mapping (file + environment).

    Returns:
        The immutable ProvisionConfig.

    Raises:
        ValidationError: With every field and cross-field problem found.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError([f"configuration must be a mapping, got {type(raw).__name__}"])

    errors: list[str] = []
    failed: set[str] = set()
    candidate: ProvisionConfig | None = None

    try:
        candidate = ProvisionConfig.model_validate(dict(raw))
    except PydanticValidationError as e:
        for err in e.errors():
            field = str(err["loc"][0]) if err["loc"] else "config"
            failed.add(field)
            errors.append(_format_error(field, err))
        # Re-validate without the bad fields so cross-field rules can
        # still run over everything that was valid.
        partial = {k: v for k, v in raw.items() if k not in failed}
        try:
            candidate = ProvisionConfig.model_validate(partial)
        except PydanticValidationError:
            candidate = None

    if candidate is not None:
        for rule in RULES:
            if failed.intersection(rule.fields):
                continue
            if not rule.holds(candidate):
                errors.append(rule.message.format(c=candidate))

    if errors:
        logger.debug("Configuration invalid: %d error(s)", len(errors))
        raise ValidationError(errors)

    assert candidate is not None
    return candidate


def _format_error(field: str, err: Mapping[str, Any]) -> str:
    if err.get("type") == "extra_forbidden":
        return f"{field}: unknown setting"
    message = str(err.get("msg", "invalid value"))
    # "Value error, 'x' is not ..." → "'x' is not ..."
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{field}: {message}"
