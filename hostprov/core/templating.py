"""
Template engine for rendered host files.

Templates are plain config files (ini, systemd, nginx, bash) with two
mechanisms that survive syntax highlighting in the host format:

  1. Conditional blocks, written as comments:
        # __IF_FEATURE_tls__
        ... kept only when feature 'tls' is enabled ...
        # __ENDIF__
     and ``# __IF_NOT_FEATURE_xxx__`` for the inverse.
  2. Placeholders: ``__HTTP_PORT__`` → value from the placeholders dict.

Shipped templates live in ``hostprov/core/data/templates``; the
``templates`` setting maps a template name to an override file.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

TEMPLATES_DIR = Path(__file__).parent / "data" / "templates"

TEMPLATE_NAMES: tuple[str, ...] = (
    "app_config",
    "systemd_unit",
    "nginx_site",
    "nginx_tls_site",
    "backup_script",
    "sshd_hardening",
    "postgresql_tuning",
)

_IF_BLOCK = re.compile(r"#\s*__IF_FEATURE_(\w+?)__[ \t]*\n(.*?)#\s*__ENDIF__[ \t]*\n", re.DOTALL)
_IF_NOT_BLOCK = re.compile(
    r"#\s*__IF_NOT_FEATURE_(\w+?)__[ \t]*\n(.*?)#\s*__ENDIF__[ \t]*\n", re.DOTALL
)
_PLACEHOLDER = re.compile(r"__([A-Z][A-Z0-9_]*?)__")


class TemplateError(Exception):
    """A template is missing or references an unknown placeholder."""


def load_template(name: str, overrides: Mapping[str, str] | None = None) -> str:
    """Template text: the override file if configured, else the shipped one."""
    if overrides and name in overrides:
        path = Path(overrides[name])
    else:
        path = TEMPLATES_DIR / f"{name}.tmpl"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateError(f"Cannot read template '{name}' from {path}: {e}") from e


def process_template(
    content: str,
    features: Mapping[str, bool],
    placeholders: Mapping[str, str],
) -> str:
    """Resolve conditional blocks, then substitute placeholders.

    Unknown placeholders raise TemplateError rather than leaking
    ``__NAME__`` into a live config file.
    """
    content = _IF_NOT_BLOCK.sub(
        lambda m: "" if features.get(m.group(1), False) else m.group(2), content
    )
    content = _IF_BLOCK.sub(
        lambda m: m.group(2) if features.get(m.group(1), False) else "", content
    )

    def _substitute(m: re.Match) -> str:
        key = m.group(1)
        if key not in placeholders:
            raise TemplateError(f"Unknown placeholder __{key}__")
        return str(placeholders[key])

    content = _PLACEHOLDER.sub(_substitute, content)

    # Collapse blank runs left by removed blocks
    return re.sub(r"\n{3,}", "\n\n", content)
