from __future__ import annotations

import hashlib
import logging
import math
import os
import sys

LOGGER_NAME = "damage_estimator"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HANDLER_NAME = "damage_estimator.stdout"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Return the shared application logger, configuring it on first use.

    The level comes from ``level`` or the ``LOG_LEVEL`` env var (default INFO).
    Repeated calls reuse the stdout handler; handlers attached by others
    (test capture, hosting frameworks) are left alone.
    """
    logger = logging.getLogger(LOGGER_NAME)
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not any(h.get_name() == HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3, 1692.5 -> 1693)."""
    return int(math.floor(value + 0.5))


def as_float(value: object, parse_strings: bool = False) -> float | None:
    """Float for a JSON number, or None when there is none.

    Booleans and NaN are not numbers here. Integers too large for a float
    become +/-inf so callers treat them as out of range. Numeric strings
    are accepted only with ``parse_strings``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if isinstance(value, float):
        number = value
    elif parse_strings and isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def format_number(value: float) -> str:
    """Shortest exact text for a configured number (1500.0 -> "1500", 1499.995 -> "1499.995")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value)
