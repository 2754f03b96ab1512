"""Deterministic intent parsing for CRM questions.

Turns raw question text into a ``QueryIntent`` (entity, operation, filters)
using the ordered pattern tables in ``crmassist.planning.patterns``. Parsing
is a pure function of the text and the reference time: no I/O, no model
calls, no randomness.

Resolution order:
1. Entity: phrase patterns, then whole-word entity nouns, then insight
   phrases (which imply sub-accounts); otherwise ``unknown``
2. Operation: first matching operation pattern, default ``list``
3. Filters: names, date range, status, prefix, insight; ``limit`` is always
   capped at ``MAX_RESULT_LIMIT``
"""

import logging
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crmassist.planning import patterns

logger = logging.getLogger(__name__)

MAX_RESULT_LIMIT = 50


class EntityType(str, Enum):
    """CRM concepts a question can target."""

    CONTACTS = "contacts"
    ACCOUNTS = "accounts"
    SUBACCOUNTS = "subaccounts"
    FOLLOWUPS = "followups"
    ACTIVITIES = "activities"
    QUOTATIONS = "quotations"
    LEADS = "leads"
    METRICS = "metrics"
    UNKNOWN = "unknown"


class OperationType(str, Enum):
    """Shape of the answer the question asks for."""

    COUNT = "count"
    LIST = "list"
    GET = "get"
    AGGREGATE = "aggregate"
    SEARCH = "search"


class DateRange(BaseModel):
    """Absolute date window resolved from relative phrasing."""

    model_config = ConfigDict(frozen=True)

    start: datetime | None = None
    end: datetime | None = None


class IntentFilters(BaseModel):
    """Filters extracted from the question text."""

    model_config = ConfigDict(frozen=True)

    subaccount_name: str | None = None
    account_name: str | None = None
    employee_name: str | None = None
    contact_name: str | None = None
    name_prefix: str | None = None
    date_range: DateRange | None = None
    status: str | None = None
    insight: str | None = Field(default=None, description="silent | slipping")
    limit: int = Field(default=MAX_RESULT_LIMIT, ge=1)

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, v: int) -> int:
        """Never allow more than MAX_RESULT_LIMIT rows."""
        return min(v, MAX_RESULT_LIMIT)


class QueryIntent(BaseModel):
    """Structured interpretation of one question. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    entity: EntityType
    operation: OperationType = OperationType.LIST
    filters: IntentFilters = Field(default_factory=IntentFilters)
    raw_query: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.entity == EntityType.UNKNOWN


def _is_stop_word(name: str) -> bool:
    lowered = name.lower().strip()
    if lowered in patterns.STOP_WORDS:
        return True
    first = lowered.split()[0] if lowered else ""
    return first in patterns.STOP_WORDS


def _first_capture(regexes: list, text: str, *, min_length: int = 3) -> str | None:
    """Return the first capture that is not a stop word."""
    for regex in regexes:
        for match in regex.finditer(text):
            name = match.group(1).strip().strip("\"'").rstrip("?.,")
            if len(name) >= min_length and not _is_stop_word(name):
                return name
    return None


def _detect_entity(normalized: str) -> EntityType:
    for entity, regexes in patterns.ENTITY_PATTERNS:
        if any(r.search(normalized) for r in regexes):
            return EntityType(entity)

    for entity, regex in patterns.ENTITY_KEYWORDS:
        if regex.search(normalized):
            return EntityType(entity)

    if patterns.OWNERSHIP_PATTERN.search(normalized) or _detect_insight(normalized):
        return EntityType.SUBACCOUNTS

    return EntityType.UNKNOWN


def _detect_operation(normalized: str) -> OperationType:
    for operation, regexes in patterns.OPERATION_PATTERNS:
        if any(r.search(normalized) for r in regexes):
            return OperationType(operation)
    return OperationType.LIST


def _detect_insight(normalized: str) -> str | None:
    for insight, regex in patterns.INSIGHT_PATTERNS:
        if regex.search(normalized):
            return insight
    return None


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def resolve_date_range(normalized: str, now: datetime) -> DateRange | None:
    """Convert relative date phrasing into an absolute window start.

    Args:
        normalized: Lower-cased question text
        now: Reference time (local server time)

    Returns:
        DateRange with ``start`` set, or None when no phrase matched
    """
    today = _start_of_day(now)

    if patterns.TODAY_PATTERN.search(normalized):
        return DateRange(start=today)
    if patterns.THIS_WEEK_PATTERN.search(normalized):
        return DateRange(start=today - timedelta(days=today.weekday()))
    if patterns.THIS_MONTH_PATTERN.search(normalized):
        return DateRange(start=today.replace(day=1))

    match = patterns.LAST_N_DAYS_PATTERN.search(normalized)
    if match:
        return DateRange(start=today - timedelta(days=int(match.group(1))))

    return None


def parse_intent(text: str, *, now: datetime | None = None) -> QueryIntent:
    """Parse a question into a QueryIntent.

    Args:
        text: Raw question text
        now: Reference time for relative dates (default: current local time)

    Returns:
        QueryIntent; ``entity`` is ``unknown`` when nothing matched
    """
    now = now or datetime.now()
    raw = text or ""
    stripped = raw.strip()
    normalized = stripped.lower()

    entity = _detect_entity(normalized)
    operation = _detect_operation(normalized)

    subaccount_name = None
    if not patterns.GENERAL_SCOPE_PATTERN.search(normalized):
        subaccount_name = _first_capture(patterns.SUBACCOUNT_NAME_PATTERNS, stripped)
    else:
        logger.debug("[intent] general-scope question, skipping name capture")

    prefix_match = patterns.NAME_PREFIX_PATTERN.search(stripped)
    name_prefix = prefix_match.group(1) if prefix_match else None

    status_match = patterns.STATUS_PATTERN.search(normalized)

    filters = IntentFilters(
        subaccount_name=subaccount_name,
        account_name=_first_capture(patterns.ACCOUNT_NAME_PATTERNS, stripped),
        employee_name=_first_capture(patterns.EMPLOYEE_NAME_PATTERNS, stripped, min_length=2),
        contact_name=_first_capture(patterns.CONTACT_NAME_PATTERNS, stripped, min_length=2),
        name_prefix=name_prefix,
        date_range=resolve_date_range(normalized, now),
        status=status_match.group(1) if status_match else None,
        insight=_detect_insight(normalized),
        limit=MAX_RESULT_LIMIT,
    )

    intent = QueryIntent(
        entity=entity,
        operation=operation,
        filters=filters,
        raw_query=raw,
    )
    logger.debug(
        "[intent] entity=%s operation=%s filters=%s",
        intent.entity.value,
        intent.operation.value,
        filters.model_dump(exclude_none=True),
    )
    return intent
