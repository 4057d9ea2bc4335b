"""Central logging utilities for the IdP Gateway.

This module keeps logging configuration in one place and provides helpers
for module-scoped loggers.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): typed helper returning a logger under the package
   namespace.
3. redact_token(value): shortens bearer secrets (codes, tokens, session
   ids) before they reach a log record.

Raw credentials must never be logged. Always pass them through
``redact_token`` first.
"""

from __future__ import annotations

import logging
from typing import Final

from beartype import beartype

__all__: Final = [
    "configure_logging",
    "get_logger",
    "redact_token",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_REDACTED_PREFIX_LENGTH: Final = 8
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int = logging.INFO, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    Calling this function multiple times is safe; later calls only adjust
    the level of the package logger.
    """
    global _is_configured
    if _is_configured:
        logging.getLogger("idp_gateway").setLevel(level)
        return

    logging.basicConfig(level=level, format=fmt)
    logging.getLogger("idp_gateway").setLevel(level)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger."""
    logger = logging.getLogger(name or "idp_gateway")
    if level is not None:
        logger.setLevel(level)
    return logger


@beartype
def redact_token(value: str | None) -> str:
    """Return a log-safe prefix of a secret value."""
    if not value:
        return "<empty>"
    if len(value) <= _REDACTED_PREFIX_LENGTH:
        return "***"
    return f"{value[:_REDACTED_PREFIX_LENGTH]}..."
