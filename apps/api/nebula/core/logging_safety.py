"""Logging helpers: hashed correlation fields, setup and best-effort side effects."""

from __future__ import annotations

from contextlib import contextmanager
import hashlib
import logging
from typing import Any, Iterator

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    """Return a deterministic non-reversible token for log correlation fields."""
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the package logger."""
    package_logger = logging.getLogger("nebula")
    package_logger.setLevel(level.upper())
    if package_logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    package_logger.addHandler(handler)


@contextmanager
def best_effort(logger: logging.Logger, event: str, **fields: Any) -> Iterator[None]:
    """Run an audit-style side effect without letting it fail the caller.

    Any exception is logged as a warning under ``event`` and swallowed.
    """
    try:
        yield
    except Exception as exc:
        rendered = " ".join(f"{key}={value}" for key, value in fields.items())
        logger.warning("%s.failed %s reason=%s", event, rendered, type(exc).__name__)
