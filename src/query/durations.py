"""Relative duration strings such as ``15m``, ``6h`` or ``7d``."""

import logging
import re

logger = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r"^(\d+)([smhdw])$")

_MULTIPLIERS_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}

FALLBACK_DURATION = "1h"


def parse_duration_seconds(duration: str | None) -> int | None:
    """Seconds in a ``<n><s|m|h|d|w>`` duration, or None if it does not parse or is zero."""
    match = _DURATION_PATTERN.match(duration.strip()) if duration else None
    if not match:
        return None
    seconds = int(match.group(1)) * _MULTIPLIERS_SECONDS[match.group(2)]
    return seconds or None


def normalize_duration(duration: str | None, default: str = FALLBACK_DURATION) -> str:
    """Return the duration if it parses, otherwise the default (or ``1h`` if that is bad too)."""
    if duration and parse_duration_seconds(duration) is not None:
        return duration.strip()
    if parse_duration_seconds(default) is not None:
        return default
    logger.warning("Default time range %r is not a valid duration, using %s", default, FALLBACK_DURATION)
    return FALLBACK_DURATION
