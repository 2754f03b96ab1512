"""Calendar-day bucketing of follow-ups."""

from datetime import date, datetime
from typing import Any

OVERDUE = "overdue"
DUE_TODAY = "due_today"
UPCOMING = "upcoming"


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def bucket_for(follow_up: Any, today: date) -> str | None:
    """Classify one follow-up date relative to ``today``.

    Time of day is ignored: a follow-up at 23:59 yesterday is overdue, one at
    00:01 today is due today.
    """
    day = _as_date(follow_up)
    if day is None:
        return None
    if day < today:
        return OVERDUE
    if day == today:
        return DUE_TODAY
    return UPCOMING


def bucket_followups(
    rows: list[dict[str, Any]],
    today: date,
    *,
    date_key: str = "follow_up_date",
) -> dict[str, list[dict[str, Any]]]:
    """Split rows into overdue / due_today / upcoming lists, keeping row order."""
    buckets: dict[str, list[dict[str, Any]]] = {OVERDUE: [], DUE_TODAY: [], UPCOMING: []}
    for row in rows:
        bucket = bucket_for(row.get(date_key), today)
        if bucket is not None:
            buckets[bucket].append(row)
    return buckets
