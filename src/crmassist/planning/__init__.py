"""Intent parsing: free text to a structured ``QueryIntent``."""

from crmassist.planning.intent import (
    DateRange,
    EntityType,
    IntentFilters,
    OperationType,
    QueryIntent,
    parse_intent,
)

__all__ = [
    "DateRange",
    "EntityType",
    "IntentFilters",
    "OperationType",
    "QueryIntent",
    "parse_intent",
]
