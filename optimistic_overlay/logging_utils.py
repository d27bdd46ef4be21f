"""Logger configuration for the optimistic overlay package."""
from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional

from .version import __version__, is_dev_build

LOGGER_NAME = "optimistic_overlay"
LOG_TAG = LOGGER_NAME
LOG_LEVEL_ENV_VAR = "OPTIMISTIC_OVERLAY_LOG_LEVEL"
DEFAULT_LOG_LEVEL = logging.INFO

_LEVEL_NAME_MAP = {
    "CRITICAL": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
}

_DEV_LOG_LEVEL_OVERRIDE_EMITTED = False


def coerce_log_level(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        token = raw.strip().upper()
        if token.isdigit():
            return int(token)
        return _LEVEL_NAME_MAP.get(token)
    return None


def resolve_log_level(environ: Optional[Mapping[str, str]] = None) -> int:
    """Return the configured level, forcing DEBUG for dev builds."""

    env = os.environ if environ is None else environ
    level = coerce_log_level(env.get(LOG_LEVEL_ENV_VAR))
    if level is None or level == logging.NOTSET:
        level = DEFAULT_LOG_LEVEL
    if is_dev_build(__version__, environ=env) and level > logging.DEBUG:
        return logging.DEBUG
    return level


def configure_logger(
    level: Optional[int] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """Attach a single tagged handler to the package logger; safe to call repeatedly."""

    global _DEV_LOG_LEVEL_OVERRIDE_EMITTED

    logger = logging.getLogger(LOGGER_NAME)
    effective = level if level is not None else resolve_log_level(environ)
    logger.setLevel(effective)
    if not any(getattr(existing, "_optimistic_overlay_handler", False) for existing in logger.handlers):
        target = handler or logging.StreamHandler()
        target._optimistic_overlay_handler = True  # type: ignore[attr-defined]
        formatter = logging.Formatter(f"[%(asctime)s] [{LOG_TAG}] %(message)s", "%H:%M:%S")
        target.setFormatter(formatter)
        logger.addHandler(target)
    logger.propagate = False
    if level is None and effective == logging.DEBUG and not _DEV_LOG_LEVEL_OVERRIDE_EMITTED:
        env = os.environ if environ is None else environ
        if is_dev_build(__version__, environ=env):
            _DEV_LOG_LEVEL_OVERRIDE_EMITTED = True
            logger.info(
                "Running optimistic overlay dev build (%s); logging at DEBUG.",
                __version__,
            )
    return logger
