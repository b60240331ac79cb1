"""Central configuration for the quest progression engine.

All tunables live here with sensible defaults and can be overridden through
environment variables. Invalid values silently fall back to the default.
"""
from __future__ import annotations
import logging
import os

def _get_int_env(name: str, default: int, minval: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = int(raw)
        if minval is not None and v < minval:
            return default
        return v
    except ValueError:
        return default


def _get_float_env(name: str, default: float, minval: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = float(raw)
        if minval is not None and v < minval:
            return default
        return v
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    return val in {"1", "true", "yes", "on"}


# ---------------- Logging ----------------
DEFAULT_LOG_LEVEL: str = "WARNING"

ENV_LOG_LEVEL = "QE_LOG_LEVEL"

LOGGER_NAME = "questengine"


def get_log_level() -> int:
    """Return the numeric log level for the engine loggers.

    Order of precedence:
    1. QE_LOG_LEVEL environment variable (a standard level name)
    2. DEFAULT_LOG_LEVEL
    """
    raw = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        return logging.getLevelName(DEFAULT_LOG_LEVEL)
    return level


_logging_configured = False


def configure_logging(level: int | None = None) -> logging.Logger:
    """Attach a stream handler to the engine logger (only once)."""
    global _logging_configured
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level if level is not None else get_log_level())
    if not _logging_configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
        _logging_configured = True
    return logger


# ---------------- Validation ----------------
# When enabled the loader raises on authoring warnings instead of returning them
def get_strict_validation() -> bool:
    """Strict authoring validation. Var: QE_STRICT_VALIDATION (default False)."""
    return _get_bool_env("QE_STRICT_VALIDATION", False)


# ---------------- Quest manager policies ----------------
def get_allow_multiple_active() -> bool:
    """Allow several quests in progress at once. Var: QE_ALLOW_MULTIPLE_ACTIVE (default True)."""
    return _get_bool_env("QE_ALLOW_MULTIPLE_ACTIVE", True)


def get_allow_replay() -> bool:
    """Allow re-adding a completed quest. Var: QE_ALLOW_REPLAY (default False)."""
    return _get_bool_env("QE_ALLOW_REPLAY", False)


# ---------------- Tasks ----------------
# Seconds granted to a timed task that does not author its own limit
DEFAULT_TIME_LIMIT: float = _get_float_env("QE_DEFAULT_TIME_LIMIT", 120.0, minval=0.0)


# ---------------- Cascade ----------------
# Upper bound on jobs drained for a single external call (authored cycles)
MAX_CASCADE_STEPS: int = _get_int_env("QE_MAX_CASCADE_STEPS", 10000, minval=1)


__all__ = [
    # Logging
    "DEFAULT_LOG_LEVEL", "ENV_LOG_LEVEL", "LOGGER_NAME", "get_log_level", "configure_logging",
    # Validation / manager
    "get_strict_validation", "get_allow_multiple_active", "get_allow_replay",
    # Tasks / cascade
    "DEFAULT_TIME_LIMIT", "MAX_CASCADE_STEPS",
]
