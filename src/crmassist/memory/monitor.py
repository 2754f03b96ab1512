"""In-process operation monitor for the ask pipeline.

Records one entry per pipeline step (intent parse, datastore query, model
response, cache lookup, error) in a bounded ring buffer and derives latency
percentiles, error rate and cache hit rate from it. Nothing is persisted;
the window is the last ``max_records`` operations.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

logger = logging.getLogger(__name__)

INTENT = "intent"
QUERY = "query"
RESPONSE = "response"
ERROR = "error"
CACHE_HIT = "cache_hit"
CACHE_MISS = "cache_miss"

OPERATIONS = (INTENT, QUERY, RESPONSE, ERROR, CACHE_HIT, CACHE_MISS)


@dataclass
class OperationRecord:
    """One monitored step."""

    operation: str
    user_id: str
    timestamp: datetime
    success: bool = True
    duration_ms: float | None = None
    row_count: int | None = None
    confidence: float | None = None
    mode: str | None = None
    entity: str | None = None
    detail: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _percentile(sorted_values: list[float], fraction: float) -> float:
    if not sorted_values:
        return 0.0
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class OperationMonitor:
    """Thread-safe ring buffer of pipeline operations.

    Args:
        max_records: Operations kept; older ones are dropped first
        clock: Timestamp source, injectable for tests

    Usage:
        monitor = OperationMonitor()
        monitor.log_cache("Sales_Shweta", hit=False)
        monitor.performance_metrics()["p95_ms"]
    """

    def __init__(self, max_records: int = 1000, clock: Callable[[], datetime] | None = None):
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self.max_records = max_records
        self.clock = clock or datetime.now
        self._records: deque[OperationRecord] = deque(maxlen=max_records)
        self._lock = threading.RLock()

    def _add(self, record: OperationRecord) -> OperationRecord:
        with self._lock:
            self._records.append(record)
        logger.debug(
            "[monitor] %s user=%s success=%s ms=%s",
            record.operation, record.user_id, record.success, record.duration_ms,
        )
        return record

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def log_intent(
        self,
        user_id: str,
        question: str,
        entity: str,
        operation: str,
        confidence: float,
        duration_ms: float | None = None,
    ) -> OperationRecord:
        return self._add(OperationRecord(
            operation=INTENT,
            user_id=user_id,
            timestamp=self.clock(),
            duration_ms=duration_ms,
            confidence=confidence,
            entity=entity,
            detail=question[:200],
            metadata={"operation": operation},
        ))

    def log_query(
        self,
        user_id: str,
        entity: str,
        descriptor: str | None,
        duration_ms: float,
        row_count: int,
        error: str | None = None,
    ) -> OperationRecord:
        return self._add(OperationRecord(
            operation=QUERY,
            user_id=user_id,
            timestamp=self.clock(),
            success=error is None,
            duration_ms=duration_ms,
            row_count=row_count,
            entity=entity,
            detail=error or descriptor,
        ))

    def log_response(
        self,
        user_id: str,
        mode: str,
        confidence: float,
        answer: str,
        duration_ms: float | None = None,
    ) -> OperationRecord:
        return self._add(OperationRecord(
            operation=RESPONSE,
            user_id=user_id,
            timestamp=self.clock(),
            duration_ms=duration_ms,
            confidence=confidence,
            mode=mode,
            metadata={"answer_length": len(answer or "")},
        ))

    def log_error(
        self,
        user_id: str,
        operation: str,
        error: Exception | str,
        duration_ms: float | None = None,
    ) -> OperationRecord:
        message = str(error) if isinstance(error, Exception) else error
        return self._add(OperationRecord(
            operation=ERROR,
            user_id=user_id,
            timestamp=self.clock(),
            success=False,
            duration_ms=duration_ms,
            detail=message[:500],
            metadata={
                "stage": operation,
                "type": type(error).__name__ if isinstance(error, Exception) else None,
            },
        ))

    def log_cache(self, user_id: str, hit: bool, duration_ms: float | None = None) -> OperationRecord:
        return self._add(OperationRecord(
            operation=CACHE_HIT if hit else CACHE_MISS,
            user_id=user_id,
            timestamp=self.clock(),
            duration_ms=duration_ms,
        ))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def records(
        self, operation: str | None = None, since: datetime | None = None
    ) -> list[OperationRecord]:
        """Recorded operations, oldest first, optionally filtered."""
        with self._lock:
            records = list(self._records)
        if operation is not None:
            records = [r for r in records if r.operation == operation]
        if since is not None:
            records = [r for r in records if r.timestamp >= since]
        return records

    def error_rate(self, since: datetime | None = None) -> float:
        """Percentage of recorded operations that failed."""
        records = self.records(since=since)
        if not records:
            return 0.0
        failed = sum(1 for r in records if not r.success)
        return round(failed / len(records) * 100, 2)

    def performance_metrics(self, since: datetime | None = None) -> dict[str, Any]:
        """Latency percentiles over timed operations."""
        timed = [r for r in self.records(since=since) if r.duration_ms is not None]
        durations = sorted(r.duration_ms for r in timed)
        failed = sum(1 for r in timed if not r.success)
        error_rate = round(failed / len(timed) * 100, 2) if timed else 0.0
        return {
            "total_operations": len(timed),
            "average_ms": _mean(durations),
            "p50_ms": round(_percentile(durations, 0.50), 2),
            "p95_ms": round(_percentile(durations, 0.95), 2),
            "p99_ms": round(_percentile(durations, 0.99), 2),
            "error_rate": error_rate,
            "success_rate": round(100 - error_rate, 2),
        }

    def summary(self, since: datetime | None = None) -> dict[str, Any]:
        """Operation counts, averages, cache hit rate and latency percentiles."""
        records = self.records(since=since)
        counts = Counter(r.operation for r in records)
        hits, misses = counts[CACHE_HIT], counts[CACHE_MISS]
        lookups = hits + misses

        def _durations(operation: str) -> list[float]:
            return [r.duration_ms for r in records if r.operation == operation and r.duration_ms is not None]

        confidences = [r.confidence for r in records if r.operation == INTENT and r.confidence is not None]
        return {
            "total_operations": len(records),
            "operations": {op: counts[op] for op in OPERATIONS},
            "average_intent_confidence": _mean(confidences),
            "average_query_ms": _mean(_durations(QUERY)),
            "average_response_ms": _mean(_durations(RESPONSE)),
            "rows_returned": sum(r.row_count or 0 for r in records if r.operation == QUERY),
            "cache_hit_rate": round(hits / lookups * 100, 2) if lookups else 0.0,
            "error_rate": self.error_rate(since),
            "performance": self.performance_metrics(since),
        }

    def recent_errors(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent errors, newest first."""
        errors = self.records(ERROR)[-limit:] if limit > 0 else []
        return [asdict(r) for r in reversed(errors)]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
