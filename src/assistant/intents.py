"""Pattern-based intent classification.

Walks ``INTENT_RULES`` top to bottom; the first rule whose first matching
pattern fires wins. When nothing fires, a recognised metric mention makes the
message a status check; anything else is a general query. Never raises.
"""

import logging
from collections.abc import Sequence

from src.assistant.entities import extract_metric, extract_possible_metric
from src.assistant.models import Intent
from src.assistant.patterns import (
    GENERAL_QUERY_CONFIDENCE,
    INTENT_RULES,
    METRIC_MENTION_CONFIDENCE,
    IntentKind,
    IntentRule,
)

logger = logging.getLogger(__name__)


def match_rule(message: str) -> IntentRule | None:
    """Return the first rule in the ladder that matches the message."""
    for rule in INTENT_RULES:
        if any(pattern.search(message) for pattern in rule.patterns):
            return rule
    return None


def mentions_metric(message: str, known_metrics: Sequence[str] = ()) -> bool:
    """True if the message names a metric by phrasing, common token or catalog name."""
    return extract_metric(message) is not None or extract_possible_metric(message, known_metrics) is not None


def classify(message: str, known_metrics: Sequence[str] = ()) -> Intent:
    """Classify a message into an intent using the ordered rule table."""
    rule = match_rule(message)
    if rule is not None:
        intent = Intent(type=rule.kind, handler=rule.kind, confidence=rule.confidence)
    elif mentions_metric(message, known_metrics):
        intent = Intent(
            type=IntentKind.STATUS_CHECK,
            handler=IntentKind.STATUS_CHECK,
            confidence=METRIC_MENTION_CONFIDENCE,
        )
    else:
        intent = Intent(
            type=IntentKind.GENERAL_QUERY,
            handler=IntentKind.GENERAL_QUERY,
            confidence=GENERAL_QUERY_CONFIDENCE,
        )

    logger.debug("Classified %r as %s (%.1f)", message[:80], intent.type, intent.confidence)
    return intent
