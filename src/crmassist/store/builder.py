"""Fluent, read-only query builder over DuckDB.

Entity handlers never write SQL by hand. They describe a read with a small
chainable surface and the builder renders it to a parameterised SELECT:

    rows = (
        store.table("contacts")
        .select("id", "name", "sub_account_id")
        .in_("sub_account_id", [1, 2, 3])
        .ilike("name", "%ram%")
        .order("created_at", desc=True)
        .limit(50)
        .execute()
    )

Guarantees:
- Identifiers (tables, columns) are validated against a strict pattern
- Every value is bound as a parameter, never interpolated
- Each execution uses its own cursor, so fan-out threads can share a store
- Driver errors surface as ``DatastoreError`` with the table name attached
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any

import duckdb

from crmassist.errors import DatastoreError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COMPARISONS = {
    "eq": "=",
    "neq": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "ilike": "ILIKE",
}


def _check_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise DatastoreError(f"Invalid identifier: {name!r}")
    return name


def _render_condition(column: str, op: str, value: Any) -> tuple[str, list[Any]]:
    column = _check_identifier(column)
    if op in _COMPARISONS:
        return f"{column} {_COMPARISONS[op]} ?", [value]
    if op == "in":
        values = list(value or [])
        if not values:
            return "FALSE", []
        placeholders = ", ".join("?" for _ in values)
        return f"{column} IN ({placeholders})", values
    if op == "is_null":
        return f"{column} IS NULL", []
    if op == "not_null":
        return f"{column} IS NOT NULL", []
    raise DatastoreError(f"Unsupported filter operator: {op}")


class TableQuery:
    """A single-table SELECT under construction."""

    def __init__(self, store: "CRMStore", table: str):
        self._store = store
        self.table = _check_identifier(table)
        self._columns: list[str] = []
        self._conditions: list[tuple[str, list[Any]]] = []
        self._order: list[str] = []
        self._limit: int | None = None

    def select(self, *columns: str) -> "TableQuery":
        self._columns.extend(_check_identifier(c) for c in columns)
        return self

    def _add(self, column: str, op: str, value: Any = None) -> "TableQuery":
        self._conditions.append(_render_condition(column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "eq", value)

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "neq", value)

    def gt(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "gt", value)

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "gte", value)

    def lt(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "lt", value)

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "lte", value)

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        return self._add(column, "ilike", pattern)

    def in_(self, column: str, values: list[Any]) -> "TableQuery":
        return self._add(column, "in", values)

    def is_null(self, column: str) -> "TableQuery":
        return self._add(column, "is_null")

    def not_null(self, column: str) -> "TableQuery":
        return self._add(column, "not_null")

    def or_(self, *conditions: tuple) -> "TableQuery":
        """OR together ``(column, op[, value])`` conditions as one filter."""
        parts: list[str] = []
        params: list[Any] = []
        for condition in conditions:
            column, op, *rest = condition
            sql, values = _render_condition(column, op, rest[0] if rest else None)
            parts.append(sql)
            params.extend(values)
        if parts:
            self._conditions.append(("(" + " OR ".join(parts) + ")", params))
        return self

    def order(self, column: str, *, desc: bool = False, nulls_first: bool | None = None) -> "TableQuery":
        clause = f"{_check_identifier(column)} {'DESC' if desc else 'ASC'}"
        if nulls_first is not None:
            clause += " NULLS FIRST" if nulls_first else " NULLS LAST"
        self._order.append(clause)
        return self

    def limit(self, n: int) -> "TableQuery":
        self._limit = max(0, int(n))
        return self

    def _where(self) -> tuple[str, list[Any]]:
        if not self._conditions:
            return "", []
        clauses = [sql for sql, _ in self._conditions]
        params = [p for _, values in self._conditions for p in values]
        return " WHERE " + " AND ".join(clauses), params

    def to_sql(self) -> tuple[str, list[Any]]:
        """Render the query as ``(sql, params)``."""
        columns = ", ".join(self._columns) if self._columns else "*"
        where, params = self._where()
        sql = f"SELECT {columns} FROM {self.table}{where}"
        if self._order:
            sql += " ORDER BY " + ", ".join(self._order)
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        return sql, params

    def execute(self) -> list[dict[str, Any]]:
        sql, params = self.to_sql()
        return self._store.fetch(sql, params, table=self.table)

    def count(self) -> int:
        where, params = self._where()
        rows = self._store.fetch(
            f"SELECT COUNT(*) AS count FROM {self.table}{where}", params, table=self.table
        )
        return int(rows[0]["count"]) if rows else 0

    def describe(self) -> str:
        """Human-readable descriptor of this read (no parameter values)."""
        sql, _ = self.to_sql()
        return sql


class CRMStore:
    """Read access to the CRM tables in a DuckDB database.

    Usage:
        store = CRMStore("./data/crm.duckdb")
        rows = store.table("accounts").eq("is_active", True).execute()
    """

    def __init__(
        self,
        db_path: Path | str = ":memory:",
        *,
        read_only: bool = False,
        connection: duckdb.DuckDBPyConnection | None = None,
    ):
        """Initialize the store.

        Args:
            db_path: DuckDB file path, or ``:memory:``
            read_only: Open the database file read-only
            connection: Existing connection to reuse instead of opening one
        """
        self.db_path = str(db_path)
        if connection is not None:
            self._conn = connection
        else:
            self._conn = duckdb.connect(self.db_path, read_only=read_only)
        self._lock = threading.Lock()
        self.reads = 0

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    def fetch(self, sql: str, params: list[Any] | None = None, *, table: str | None = None) -> list[dict[str, Any]]:
        """Run one SELECT on a fresh cursor and return rows as dicts.

        Raises:
            DatastoreError: If DuckDB rejects or fails the query
        """
        with self._lock:
            self.reads += 1
            cursor = self._conn.cursor()
        try:
            result = cursor.execute(sql, params or [])
            columns = [d[0] for d in result.description]
            rows = [dict(zip(columns, row)) for row in result.fetchall()]
        except duckdb.Error as e:
            logger.warning("[store] read failed on %s: %s", table or "?", e)
            raise DatastoreError(f"Read failed on {table or 'query'}", table=table, details={"error": str(e)}) from e
        finally:
            cursor.close()
        logger.debug("[store] %s -> %d rows", sql, len(rows))
        return rows

    def execute_script(self, sql: str) -> None:
        """Run DDL/DML statements (schema setup and seeding only)."""
        self._conn.execute(sql)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "CRMStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
