"""Render query rows as bounded, model-safe context.

``format_for_model`` is the only way result rows reach a language model.
Output size is bounded regardless of input size:

1. No rows: a fixed sentence quoting the question
2. More than 50 rows: count, per-column statistics for numeric columns, the
   first 10 rows, and a "more rows truncated" trailer
3. One row with aggregation-like keys: key/value lines
4. 2-10 rows: table plus key insights derived from the numbers shown
5. Anything else: fixed-width table, at most 50 rows

Header names are prettified for display only; row dicts are never mutated.
"""

import json
import math
from datetime import date, datetime
from typing import Any

from crmassist.planning.intent import QueryIntent

SUMMARY_THRESHOLD = 50
SAMPLE_SIZE = 10
INSIGHT_MAX_ROWS = 10
MAX_TABLE_ROWS = 50
MAX_COLUMN_WIDTH = 50
MAX_STRING_LENGTH = 50
NUMERIC_SAMPLE_RATIO = 0.7

CURRENCY_SYMBOL = "₹"
_MONEY_HINTS = ("price", "cost", "value", "amount", "revenue")
_AGGREGATION_TOKENS = {"count", "sum", "total", "average", "avg"}
_AGGREGATION_KEYS = {"min_value", "max_value"}


# ============================================================================
# Value rendering
# ============================================================================

def format_number(num: float, decimals: int | None = None) -> str:
    """Thousands-separated number; integers get no decimals by default."""
    if isinstance(num, float) and not math.isfinite(num):
        return str(num)
    if decimals is None:
        decimals = 0 if float(num).is_integer() else 2
    return f"{num:,.{decimals}f}"


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(amount):,.2f}"


def format_date(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def format_column_name(column: str) -> str:
    """snake_case -> Title Case, for headers only."""
    return " ".join(word[:1].upper() + word[1:].lower() for word in column.split("_"))


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    try:
        num = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def _parse_date_string(value: str) -> date | None:
    if len(value) < 10 or not value[:4].isdigit() or value[4] != "-":
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None


def format_value(value: Any, column: str = "") -> str:
    """Render one cell according to its type and column name."""
    if value is None:
        return "NULL"
    if isinstance(value, (datetime, date)):
        return format_date(value)
    if isinstance(value, str):
        parsed = _parse_date_string(value)
        if parsed is not None:
            return format_date(parsed)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)

    num = _as_number(value)
    if num is not None:
        if any(hint in column.lower() for hint in _MONEY_HINTS):
            return format_currency(num)
        if isinstance(value, (int, float)) or not isinstance(value, str):
            return format_number(num)

    text = str(value)
    if len(text) > MAX_STRING_LENGTH:
        return text[: MAX_STRING_LENGTH - 3] + "..."
    return text


# ============================================================================
# Shape detection
# ============================================================================

def _is_identifier(column: str) -> bool:
    lowered = column.lower()
    return lowered == "id" or lowered.endswith("_id")


def detect_numeric_columns(rows: list[dict[str, Any]]) -> list[str]:
    """Columns where at least 70% of the first 10 values parse as numbers.

    Identifier columns (``id``, ``*_id``) are never treated as measures.
    """
    if not rows:
        return []
    sample = rows[:SAMPLE_SIZE]
    numeric = []
    for column in rows[0]:
        if _is_identifier(column):
            continue
        hits = sum(1 for r in sample if _as_number(r.get(column)) is not None)
        if hits >= len(sample) * NUMERIC_SAMPLE_RATIO:
            numeric.append(column)
    return numeric


def is_aggregation_result(rows: list[dict[str, Any]]) -> bool:
    if len(rows) != 1:
        return False
    for key in rows[0]:
        lowered = key.lower()
        if lowered in _AGGREGATION_KEYS or set(lowered.split("_")) & _AGGREGATION_TOKENS:
            return True
    return False


# ============================================================================
# Layouts
# ============================================================================

def _pad(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 3] + "..."
    return text.ljust(width)


def format_table(rows: list[dict[str, Any]], *, max_rows: int = MAX_TABLE_ROWS) -> str:
    """Fixed-width box table. Cells wider than the column cap are cut."""
    if not rows:
        return ""
    columns = list(rows[0].keys())
    shown = rows[:max_rows]
    rendered = [[format_value(r.get(c), c) for c in columns] for r in shown]
    headers = [format_column_name(c) for c in columns]

    widths = []
    for i, header in enumerate(headers):
        longest = max([len(header)] + [len(cells[i]) for cells in rendered])
        widths.append(min(MAX_COLUMN_WIDTH, longest))

    def _line(left: str, mid: str, right: str) -> str:
        return left + mid.join("─" * (w + 2) for w in widths) + right

    lines = [
        _line("┌", "┬", "┐"),
        "│" + "│".join(f" {_pad(h, w)} " for h, w in zip(headers, widths)) + "│",
        _line("├", "┼", "┤"),
    ]
    for cells in rendered:
        lines.append("│" + "│".join(f" {_pad(v, w)} " for v, w in zip(cells, widths)) + "│")
    lines.append(_line("└", "┴", "┘"))

    table = "\n".join(lines) + "\n"
    if len(rows) > max_rows:
        table += f"\n(Showing {max_rows} of {len(rows)} rows)"
    return table


def _column_stats(rows: list[dict[str, Any]], column: str) -> str | None:
    values = [n for n in (_as_number(r.get(column)) for r in rows) if n is not None]
    if not values:
        return None
    total = sum(values)
    return (
        f"  - {column}: Total={format_number(total)}, "
        f"Average={format_number(total / len(values))}, "
        f"Min={format_number(min(values))}, Max={format_number(max(values))}"
    )


def _format_large(rows: list[dict[str, Any]], question: str, intent: QueryIntent | None) -> str:
    total = len(rows)
    sample = rows[:SAMPLE_SIZE]
    label = f"{intent.entity.value} records" if intent is not None and not intent.is_unknown else "results"
    text = (
        f'Found {format_number(total)} {label} for "{question}". '
        f"Showing summary and first {len(sample)} rows:\n\n"
    )

    stats = [s for s in (_column_stats(rows, c) for c in detect_numeric_columns(rows)) if s]
    if stats:
        text += "Summary Statistics:\n" + "\n".join(stats) + "\n\n"

    text += format_table(sample)
    remaining = total - len(sample)
    text += f"\n... and {format_number(remaining)} more {'row' if remaining == 1 else 'rows'} truncated"
    return text


def _format_aggregation(row: dict[str, Any], question: str) -> str:
    if len(row) == 1:
        key, value = next(iter(row.items()))
        return f'Query: "{question}"\nResult: {format_value(value, key)}'
    lines = [f'Query: "{question}"', "Results:"]
    for key, value in row.items():
        lines.append(f"  - {format_column_name(key)}: {format_value(value, key)}")
    return "\n".join(lines)


def generate_insights(rows: list[dict[str, Any]]) -> list[str]:
    """Range and spread per numeric column, computed from the rows given."""
    insights = []
    if len(rows) < 2:
        return insights
    for column in detect_numeric_columns(rows):
        values = [n for n in (_as_number(r.get(column)) for r in rows) if n is not None]
        if len(values) < 2:
            continue
        low, high = min(values), max(values)
        if low == high:
            continue
        sentence = (
            f"{format_column_name(column)} ranges from {format_value(low, column)} "
            f"to {format_value(high, column)}"
        )
        if low != 0:
            sentence += f" ({format_number((high - low) / abs(low) * 100, 1)}% difference)"
        insights.append(sentence)
    return insights


def format_for_model(
    rows: list[dict[str, Any]],
    question: str,
    intent: QueryIntent | None = None,
) -> str:
    """Convert result rows into bounded text context for a language model.

    Args:
        rows: Result rows (list of dicts, all with the same keys)
        question: The user's question, quoted in headers
        intent: Parsed intent, used to label large summaries

    Returns:
        Formatted context string
    """
    if not rows:
        return f'No results found for the query: "{question}". The database returned an empty result set.'

    if len(rows) > SUMMARY_THRESHOLD:
        return _format_large(rows, question, intent)

    if is_aggregation_result(rows):
        return _format_aggregation(rows[0], question)

    if 2 <= len(rows) <= INSIGHT_MAX_ROWS:
        text = f'Query: "{question}"\n\n' + format_table(rows)
        insights = generate_insights(rows)
        if insights:
            text += "\nKey Insights:\n" + "\n".join(f"  • {i}" for i in insights) + "\n"
        return text

    return format_table(rows)
