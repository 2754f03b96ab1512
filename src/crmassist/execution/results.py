"""Result envelope returned by the entity query executor."""

from typing import Any

from pydantic import BaseModel, Field

from crmassist.planning.intent import EntityType, QueryIntent

UNKNOWN_MESSAGE = (
    "I couldn't understand which CRM records you are asking about. "
    "Try asking about contacts, accounts, sub-accounts, follow-ups, activities, "
    "quotations, leads, or your performance metrics."
)

UNKNOWN_SUGGESTIONS = [
    "How many contacts do I have?",
    "Show my follow-ups",
    "List my sub-accounts",
    "Show activities this week",
    "What is my total pipeline value?",
]

DATASTORE_FAILURE_MESSAGE = (
    "I couldn't retrieve that information right now. Please try again in a moment."
)


class CRMQueryResult(BaseModel):
    """Outcome of one entity query.

    ``raw`` carries the full structured payload for the entity; ``rows`` is the
    flat record list the formatter and API consume. Both come from datastore
    reads only. ``formatted`` is the deterministic wording of the result.
    """

    success: bool
    entity: EntityType
    operation: str
    raw: dict[str, Any] = Field(default_factory=dict)
    formatted: str = ""
    count: int | None = None
    message: str | None = None
    rows: list[dict[str, Any]] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    descriptor: str | None = None


def unknown_result(intent: QueryIntent) -> CRMQueryResult:
    """Fixed result for questions that matched no entity."""
    return CRMQueryResult(
        success=False,
        entity=EntityType.UNKNOWN,
        operation=intent.operation.value,
        raw={"suggestions": list(UNKNOWN_SUGGESTIONS)},
        formatted=UNKNOWN_MESSAGE,
        count=0,
        message="unknown_entity",
    )


def failure_result(intent: QueryIntent) -> CRMQueryResult:
    """User-safe result for a datastore failure. Never carries driver text."""
    return CRMQueryResult(
        success=False,
        entity=intent.entity,
        operation=intent.operation.value,
        raw={},
        formatted=DATASTORE_FAILURE_MESSAGE,
        count=0,
        message="datastore_error",
    )
