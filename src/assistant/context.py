"""Conversation context helpers: merging, history, metric and time resolution."""

import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from src.assistant.models import ConversationContext, Entities, Turn
from src.assistant.patterns import IntentKind
from src.query.durations import FALLBACK_DURATION, normalize_duration, parse_duration_seconds
from src.query.models import TimeRange


def update_context(context: ConversationContext, **fields: Any) -> ConversationContext:
    """Shallow-merge the given fields into the context in place and return it.

    Raises:
        ValueError: If a field name is not part of the context.
    """
    unknown = set(fields) - set(ConversationContext.model_fields)
    if unknown:
        raise ValueError(f"Unknown context fields: {', '.join(sorted(unknown))}")
    for name, value in fields.items():
        setattr(context, name, value)
    return context


def record_turn(
    context: ConversationContext,
    message: str,
    intent: IntentKind,
    entities: Entities,
    result: dict[str, Any],
) -> Turn:
    """Append a handled message to the context history."""
    turn = Turn(message=message, intent=intent, entities=entities, result=result)
    context.history.append(turn)
    return turn


def resolve_metric(text: str, catalog_names: Sequence[str]) -> str | None:
    """First catalog name that contains the text or is contained in it (case-insensitive)."""
    needle = text.lower().strip()
    if not needle:
        return None
    for name in catalog_names:
        candidate = name.lower()
        if candidate and (candidate in needle or needle in candidate):
            return name
    return None


def resolve_time_range(
    duration: str | None,
    now: datetime | None = None,
    default: str = FALLBACK_DURATION,
) -> TimeRange:
    """Convert a relative duration into absolute epoch-millisecond bounds ending at now."""
    end = now or datetime.now(UTC)
    seconds = parse_duration_seconds(normalize_duration(duration, default)) or 3600
    to_ms = int(end.timestamp() * 1000)
    return TimeRange(from_=str(to_ms - seconds * 1000), to=str(to_ms))


def find_mentioned_metric(message: str, catalog_names: Sequence[str]) -> str | None:
    """First catalog name that appears in the message as a whole word."""
    for name in catalog_names:
        if name and re.search(rf"(?<!\w){re.escape(name)}(?!\w)", message, re.IGNORECASE):
            return name
    return None
