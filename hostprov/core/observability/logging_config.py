"""
Logging configuration — one setup call for the CLI process.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
what ``setup_logging`` installs on the root logger.

Level precedence:
    --debug / --verbose / --quiet  >  HOSTPROV_LOG_LEVEL  >  WARNING

File output is opt-in through HOSTPROV_LOG_FILE, with its own level in
HOSTPROV_LOG_FILE_LEVEL (default: same as the console).
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable, Mapping

ENV_LEVEL = "HOSTPROV_LOG_LEVEL"
ENV_FILE = "HOSTPROV_LOG_FILE"
ENV_FILE_LEVEL = "HOSTPROV_LOG_FILE_LEVEL"

# ── Format strings ──────────────────────────────────────────────

_FMT_MINIMAL = "%(message)s"
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_SHORT = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("urllib3", "asyncio")

REDACTED = "***"


class SecretFilter(logging.Filter):
    """Masks known secret strings (tokens, passwords) in log output."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def add(self, secret: str) -> None:
        if secret and secret not in self._secrets:
            self._secrets.append(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self._secrets:
            masked = masked.replace(secret, REDACTED)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


_secret_filter = SecretFilter()


def redact(*secrets: str) -> None:
    """Register values that must never appear in log output."""
    for secret in secrets:
        _secret_filter.add(secret)


def resolve_level(
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Console level from CLI flags, falling back to HOSTPROV_LOG_LEVEL."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get(ENV_LEVEL, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name.
        log_file: Optional log file path (default: HOSTPROV_LOG_FILE).
        log_file_level: File level (default: HOSTPROV_LOG_FILE_LEVEL, else ``level``).
    """
    numeric_level = _parse_level(level)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_SHORT
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_SHORT
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    console.addFilter(_secret_filter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    effective_level = numeric_level

    log_file = log_file or os.environ.get(ENV_FILE)
    if log_file:
        file_level = _parse_level(log_file_level or os.environ.get(ENV_FILE_LEVEL) or level)
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_FILE))
        fh.addFilter(_secret_filter)
        root.addHandler(fh)

    root.setLevel(effective_level)

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric constant (WARNING when unknown)."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
