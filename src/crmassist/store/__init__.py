"""DuckDB-backed CRM store and fluent query builder."""

from crmassist.store.builder import CRMStore, TableQuery
from crmassist.store.schema import QUOTATION_TABLES, create_schema, seed_demo

__all__ = ["CRMStore", "TableQuery", "QUOTATION_TABLES", "create_schema", "seed_demo"]
