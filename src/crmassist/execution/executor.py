"""Entity query executor.

Runs a parsed ``QueryIntent`` against the CRM store for one caller. There is
one handler per entity; each builds its reads with the fluent builder and
returns a ``CRMQueryResult`` whose ``raw`` payload comes only from rows that
were actually read.

Access rules (applied before any name or date filter):
- employee: sub-accounts and leads by ``assigned_employee``; accounts through
  the employee's sub-accounts; contacts and follow-ups through their owning
  sub-account; activities by ``employee_id``; quotations by ``created_by``
- admin: unfiltered

Quotations and metrics fan out across the product-line tables concurrently.
A failing sub-query contributes zero rows; the call fails only when every
source fails. Single-table handlers fail as a whole.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from crmassist.config import EngineConfig
from crmassist.errors import DatastoreError
from crmassist.execution.followups import DUE_TODAY, OVERDUE, UPCOMING, bucket_followups
from crmassist.execution.results import CRMQueryResult, failure_result, unknown_result
from crmassist.explain.formatter import format_currency, format_number
from crmassist.planning.intent import EntityType, OperationType, QueryIntent
from crmassist.store.builder import CRMStore, TableQuery
from crmassist.store.schema import QUOTATION_TABLES

logger = logging.getLogger(__name__)

ROLES = ("admin", "employee")

# Tables each entity reads, for query previews.
ENTITY_TABLES: dict[EntityType, tuple[str, ...]] = {
    EntityType.CONTACTS: ("sub_accounts", "accounts", "contacts"),
    EntityType.ACCOUNTS: ("sub_accounts", "accounts"),
    EntityType.SUBACCOUNTS: ("sub_accounts", "accounts"),
    EntityType.FOLLOWUPS: ("sub_accounts", "accounts", "contacts"),
    EntityType.ACTIVITIES: ("activities", "sub_accounts", "accounts"),
    EntityType.QUOTATIONS: ("sub_accounts",) + QUOTATION_TABLES,
    EntityType.LEADS: ("leads",),
    EntityType.METRICS: ("sub_accounts", "activities") + QUOTATION_TABLES,
    EntityType.UNKNOWN: (),
}


def normalize_role(role: str) -> str:
    """Lower-case a role; anything unrecognised gets employee scope."""
    role = (role or "").lower()
    if role not in ROLES:
        logger.warning("[executor] unrecognised role %r, applying employee scope", role)
        return "employee"
    return role


def _like(value: str) -> str:
    return f"%{value}%"


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


@dataclass
class _Run:
    """Per-call bookkeeping: which tables were read and how."""

    store: CRMStore
    sources: list[str] = field(default_factory=list)
    descriptors: list[str] = field(default_factory=list)

    def fetch(self, query: TableQuery) -> list[dict[str, Any]]:
        self._record(query)
        return query.execute()

    def count(self, query: TableQuery) -> int:
        self._record(query)
        return query.count()

    def _record(self, query: TableQuery) -> None:
        if query.table not in self.sources:
            self.sources.append(query.table)
        self.descriptors.append(query.describe())


class QueryExecutor:
    """Execute parsed intents with row-level access control.

    Usage:
        executor = QueryExecutor(CRMStore("./data/crm.duckdb"))
        result = executor.execute(parse_intent("How many contacts do I have?"), "employee", "Sales_Shweta")
    """

    def __init__(
        self,
        store: CRMStore,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.clock = clock or datetime.now
        self._handlers = {
            EntityType.CONTACTS: self._query_contacts,
            EntityType.ACCOUNTS: self._query_accounts,
            EntityType.SUBACCOUNTS: self._query_subaccounts,
            EntityType.FOLLOWUPS: self._query_followups,
            EntityType.ACTIVITIES: self._query_activities,
            EntityType.QUOTATIONS: self._query_quotations,
            EntityType.LEADS: self._query_leads,
            EntityType.METRICS: self._query_metrics,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def execute(self, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        """Run the handler for ``intent.entity`` on behalf of the caller.

        Unknown entities return a fixed result without touching the store.
        Datastore errors are converted to a user-safe failure result.
        """
        if intent.is_unknown:
            logger.info("[executor] unknown entity, skipping datastore: %r", intent.raw_query[:100])
            return unknown_result(intent)

        role = normalize_role(role)
        run = _Run(self.store)
        logger.info(
            "[executor] %s/%s for %s (%s)",
            intent.entity.value, intent.operation.value, caller_id, role,
        )
        try:
            result = self._handlers[intent.entity](run, intent, role, caller_id)
        except DatastoreError as e:
            logger.warning("[executor] %s query failed: %s", intent.entity.value, e)
            return failure_result(intent)

        return result.model_copy(
            update={"sources": list(run.sources), "descriptor": "; ".join(run.descriptors) or None}
        )

    def describe(self, intent: QueryIntent, role: str) -> str:
        """Describe the reads an intent would perform, without performing them."""
        if intent.is_unknown:
            return "no query (question not understood)"
        role = normalize_role(role)
        tables = ", ".join(ENTITY_TABLES[intent.entity])
        parts = [f"{intent.entity.value}/{intent.operation.value} over {tables}"]
        if role == "employee":
            parts.append("scoped to caller")
        filters = intent.filters.model_dump(exclude_none=True, exclude={"limit"})
        if filters:
            parts.append("filters " + ", ".join(f"{k}={v}" for k, v in sorted(filters.items())))
        parts.append(f"limit {self._limit(intent)}")
        return "; ".join(parts)

    def user_stats(self, role: str, caller_id: str) -> dict[str, Any]:
        """Summary statistics used to ground coaching answers.

        Missing sources are skipped; this never raises.
        """
        role = normalize_role(role)
        run = _Run(self.store)
        since = self._today_start() - timedelta(days=self.config.stats_window_days)
        stats: dict[str, Any] = {}

        try:
            sub_accounts = run.fetch(self._scoped_sub_accounts(role, caller_id, "id", "engagement_score"))
            scores = [float(s["engagement_score"]) for s in sub_accounts if s["engagement_score"] is not None]
            stats["total_sub_accounts"] = len(sub_accounts)
            if scores:
                stats["average_engagement_score"] = round(sum(scores) / len(scores), 1)
        except DatastoreError as e:
            logger.warning("[executor] user stats: sub-accounts unavailable: %s", e)

        try:
            activities = self.store.table("activities")
            if role == "employee":
                activities = activities.eq("employee_id", caller_id)
            activities = activities.gte("created_at", since)
            stats[f"activities_last_{self.config.stats_window_days}_days"] = run.count(activities)
        except DatastoreError as e:
            logger.warning("[executor] user stats: activities unavailable: %s", e)

        def _quote_count(table: str) -> int:
            query = self.store.table(table)
            if role == "employee":
                query = query.eq("created_by", caller_id)
            return run.count(query.gte("created_at", since))

        counts, failed = self._fan_out(_quote_count, QUOTATION_TABLES)
        if len(failed) < len(QUOTATION_TABLES):
            stats[f"quotations_last_{self.config.stats_window_days}_days"] = sum(counts.values())

        return stats

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _limit(self, intent: QueryIntent) -> int:
        return max(1, min(intent.filters.limit, self.config.result_limit))

    def _today(self) -> date:
        return self.clock().date()

    def _today_start(self) -> datetime:
        return datetime.combine(self._today(), datetime.min.time())

    def _scoped_sub_accounts(self, role: str, caller_id: str, *columns: str) -> TableQuery:
        """Active sub-accounts visible to the caller. Access filter comes first."""
        query = self.store.table("sub_accounts").select(*columns)
        if role == "employee":
            query = query.eq("assigned_employee", caller_id)
        return query.eq("is_active", True)

    def _account_ids_matching(self, run: _Run, name: str) -> list[int]:
        rows = run.fetch(self.store.table("accounts").select("id").ilike("account_name", _like(name)))
        return [r["id"] for r in rows]

    def _account_names(self, run: _Run, account_ids: set) -> dict[int, str]:
        ids = [i for i in account_ids if i is not None]
        if not ids:
            return {}
        rows = run.fetch(self.store.table("accounts").select("id", "account_name").in_("id", ids))
        return {r["id"]: r["account_name"] for r in rows}

    def _sub_account_names(self, run: _Run, sub_ids: set) -> dict[int, str]:
        ids = [i for i in sub_ids if i is not None]
        if not ids:
            return {}
        rows = run.fetch(self.store.table("sub_accounts").select("id", "sub_account_name").in_("id", ids))
        return {r["id"]: r["sub_account_name"] for r in rows}

    def _name_scope(self, run: _Run, name: str) -> tuple[list[int], list[int]]:
        """Sub-account ids and account ids a free-text name refers to.

        A sub-account matches on its own name or through its parent account.
        """
        account_ids = self._account_ids_matching(run, name)
        matched = run.fetch(
            self.store.table("sub_accounts")
            .select("id")
            .or_(("sub_account_name", "ilike", _like(name)), ("account_id", "in", account_ids))
        )
        return [m["id"] for m in matched], account_ids

    def _resolve_sub_accounts(
        self, run: _Run, intent: QueryIntent, role: str, caller_id: str
    ) -> tuple[list[dict[str, Any]], bool]:
        """Sub-accounts in scope after name filters.

        Returns the rows and whether anything narrowed the set (caller scope or
        a name filter). A name matches the sub-account, its account or its
        assigned employee.
        """
        filters = intent.filters
        query = self._scoped_sub_accounts(
            role, caller_id, "id", "account_id", "sub_account_name", "assigned_employee"
        )
        narrowed = role == "employee"

        if filters.subaccount_name:
            account_ids = self._account_ids_matching(run, filters.subaccount_name)
            query = query.or_(
                ("sub_account_name", "ilike", _like(filters.subaccount_name)),
                ("assigned_employee", "ilike", _like(filters.subaccount_name)),
                ("account_id", "in", account_ids),
            )
            narrowed = True
        if filters.account_name:
            query = query.in_("account_id", self._account_ids_matching(run, filters.account_name))
            narrowed = True
        if filters.employee_name:
            query = query.ilike("assigned_employee", _like(filters.employee_name))
            narrowed = True

        return run.fetch(query), narrowed

    def _fan_out(self, fn: Callable[[str], Any], tables: tuple[str, ...]) -> tuple[dict[str, Any], list[str]]:
        """Run ``fn(table)`` concurrently; failed tables are reported, not raised."""
        results: dict[str, Any] = {}
        failed: list[str] = []
        workers = max(1, min(self.config.fanout_workers, len(tables)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {table: pool.submit(fn, table) for table in tables}
            for table, future in futures.items():
                try:
                    results[table] = future.result()
                except DatastoreError as e:
                    logger.warning("[executor] fan-out source %s failed: %s", table, e)
                    failed.append(table)
        return results, failed

    # ------------------------------------------------------------------
    # Entity handlers
    # ------------------------------------------------------------------

    def _query_contacts(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        sub_accounts, narrowed = self._resolve_sub_accounts(run, intent, role, caller_id)
        by_id = {s["id"]: s for s in sub_accounts}
        account_names = self._account_names(run, {s["account_id"] for s in sub_accounts})

        query = self.store.table("contacts").select(
            "id", "name", "designation", "phone", "email", "call_status",
            "follow_up_date", "sub_account_id", "created_at",
        )
        if narrowed:
            query = query.in_("sub_account_id", list(by_id))
        if filters.contact_name:
            query = query.ilike("name", _like(filters.contact_name))
        if filters.name_prefix:
            query = query.ilike("name", f"{filters.name_prefix}%")
        if filters.date_range and filters.date_range.start:
            query = query.gte("created_at", filters.date_range.start)

        total = run.count(query) if intent.operation == OperationType.COUNT else None
        rows = run.fetch(query.order("created_at", desc=True).limit(self._limit(intent)))

        if not narrowed:
            missing = {r["sub_account_id"] for r in rows if r["sub_account_id"] not in by_id}
            if missing:
                extra = run.fetch(
                    self.store.table("sub_accounts")
                    .select("id", "account_id", "sub_account_name", "assigned_employee")
                    .in_("id", [m for m in missing if m is not None])
                )
                by_id.update({s["id"]: s for s in extra})
                account_names.update(self._account_names(run, {s["account_id"] for s in extra}))

        contacts = []
        for r in rows:
            owner = by_id.get(r["sub_account_id"], {})
            contacts.append({
                "id": r["id"],
                "name": r["name"],
                "designation": r["designation"],
                "phone": r["phone"],
                "email": r["email"],
                "call_status": r["call_status"],
                "follow_up_date": r["follow_up_date"],
                "sub_account": owner.get("sub_account_name"),
                "account": account_names.get(owner.get("account_id")),
            })

        count = total if total is not None else len(contacts)
        scope = filters.subaccount_name or filters.account_name
        if count == 0:
            if scope:
                formatted = f'No contacts found for "{scope}".'
            elif filters.name_prefix:
                formatted = f'No contacts found starting with "{filters.name_prefix}".'
            elif role == "employee":
                formatted = "No contacts found in your assigned sub-accounts."
            else:
                formatted = "No contacts found matching your criteria."
        else:
            noun = _plural(count, "contact", "contacts")
            target = f' for "{scope}"' if scope else ""
            if filters.name_prefix:
                target += f' starting with "{filters.name_prefix}"'
            if intent.operation == OperationType.COUNT:
                formatted = f"You have {count} {noun}{target}."
            else:
                lines = [f"Found {count} {noun}{target}:"]
                for c in contacts:
                    where = " / ".join(x for x in (c["sub_account"], c["account"]) if x)
                    detail = f" ({c['designation']})" if c["designation"] else ""
                    lines.append(f"- {c['name']}{detail}" + (f" at {where}" if where else ""))
                formatted = "\n".join(lines)

        return CRMQueryResult(
            success=True,
            entity=EntityType.CONTACTS,
            operation=intent.operation.value,
            raw={"subaccount": scope, "contact_count": count, "contacts": contacts},
            formatted=formatted,
            count=count,
            rows=contacts,
        )

    def _query_followups(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        today = self._today()
        sub_accounts, narrowed = self._resolve_sub_accounts(run, intent, role, caller_id)
        by_id = {s["id"]: s for s in sub_accounts}

        query = (
            self.store.table("contacts")
            .select("id", "name", "phone", "follow_up_date", "call_status", "sub_account_id")
            .not_null("follow_up_date")
        )
        if narrowed:
            query = query.in_("sub_account_id", list(by_id))
        if filters.date_range and filters.date_range.start:
            # "due" phrasing: overdue plus today
            query = query.lte("follow_up_date", today)
        rows = run.fetch(query.order("follow_up_date").limit(self._limit(intent)))

        if not narrowed:
            by_id = {
                s["id"]: s
                for s in run.fetch(
                    self.store.table("sub_accounts")
                    .select("id", "account_id", "sub_account_name")
                    .in_("id", list({r["sub_account_id"] for r in rows if r["sub_account_id"] is not None}))
                )
            }
        account_names = self._account_names(run, {s["account_id"] for s in by_id.values()})

        followups = []
        for r in rows:
            owner = by_id.get(r["sub_account_id"], {})
            followups.append({
                "id": r["id"],
                "contact_name": r["name"],
                "phone": r["phone"],
                "follow_up_date": r["follow_up_date"],
                "call_status": r["call_status"],
                "sub_account": owner.get("sub_account_name"),
                "account": account_names.get(owner.get("account_id")),
            })

        buckets = bucket_followups(followups, today)
        count = len(followups)
        if count == 0:
            formatted = (
                "No follow-ups scheduled for your contacts."
                if role == "employee"
                else "No follow-ups scheduled in the system."
            )
        else:
            formatted = (
                f"Found {count} {_plural(count, 'follow-up', 'follow-ups')}: "
                f"{len(buckets[OVERDUE])} overdue, {len(buckets[DUE_TODAY])} due today, "
                f"{len(buckets[UPCOMING])} upcoming."
            )

        flat = [
            {**row, "bucket": name}
            for name in (OVERDUE, DUE_TODAY, UPCOMING)
            for row in buckets[name]
        ]
        return CRMQueryResult(
            success=True,
            entity=EntityType.FOLLOWUPS,
            operation=intent.operation.value,
            raw={"total_followups": count, **buckets},
            formatted=formatted,
            count=count,
            rows=flat,
        )

    def _query_activities(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        query = self.store.table("activities").select(
            "id", "activity_type", "description", "created_at", "employee_id", "account_id", "sub_account_id",
        )
        if role == "employee":
            query = query.eq("employee_id", caller_id)
        if filters.employee_name:
            query = query.ilike("employee_id", _like(filters.employee_name))
        if filters.subaccount_name:
            sub_ids, account_ids = self._name_scope(run, filters.subaccount_name)
            query = query.or_(
                ("sub_account_id", "in", sub_ids),
                ("account_id", "in", account_ids),
                ("employee_id", "ilike", _like(filters.subaccount_name)),
            )
        if filters.date_range and filters.date_range.start:
            query = query.gte("created_at", filters.date_range.start)

        total = run.count(query) if intent.operation == OperationType.COUNT else None
        rows = run.fetch(query.order("created_at", desc=True).limit(self._limit(intent)))

        sub_names = self._sub_account_names(run, {r["sub_account_id"] for r in rows})
        account_names = self._account_names(run, {r["account_id"] for r in rows})

        activities = [
            {
                "id": r["id"],
                "type": r["activity_type"],
                "description": r["description"],
                "created_at": r["created_at"],
                "employee": r["employee_id"],
                "account": account_names.get(r["account_id"]),
                "sub_account": sub_names.get(r["sub_account_id"]),
            }
            for r in rows
        ]
        breakdown = dict(Counter(a["type"] or "other" for a in activities))
        count = total if total is not None else len(activities)

        if count == 0:
            if filters.subaccount_name:
                formatted = f'No activities found for "{filters.subaccount_name}".'
            elif filters.date_range:
                formatted = "No activities found for the specified time period."
            elif role == "employee":
                formatted = "No activities found in your account."
            else:
                formatted = "No activities found in the system."
        elif intent.operation == OperationType.COUNT:
            formatted = f"You have {count} {_plural(count, 'activity', 'activities')}."
        else:
            summary = ", ".join(f"{k}: {v}" for k, v in breakdown.items())
            formatted = f"Found {count} {_plural(count, 'activity', 'activities')}. Breakdown: {summary}"

        return CRMQueryResult(
            success=True,
            entity=EntityType.ACTIVITIES,
            operation=intent.operation.value,
            raw={"total_activities": count, "breakdown": breakdown, "activities": activities},
            formatted=formatted,
            count=count,
            rows=activities,
        )

    def _quotation_query(
        self, table: str, intent: QueryIntent, role: str, caller_id: str, sub_ids: list[int] | None
    ) -> TableQuery:
        filters = intent.filters
        query = self.store.table(table).select(
            "id", "section", "customer_name", "final_total_cost", "status", "created_at", "created_by", "sub_account_id",
        )
        if role == "employee":
            query = query.eq("created_by", caller_id)
        if filters.employee_name:
            query = query.ilike("created_by", _like(filters.employee_name))
        if sub_ids is not None:
            query = query.or_(
                ("sub_account_id", "in", sub_ids),
                ("created_by", "ilike", _like(filters.subaccount_name)),
            )
        if filters.date_range and filters.date_range.start:
            query = query.gte("created_at", filters.date_range.start)
        if filters.status:
            query = query.ilike("status", filters.status)
        return query

    def _query_quotations(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        sub_ids = None
        if filters.subaccount_name:
            sub_ids, _ = self._name_scope(run, filters.subaccount_name)

        def _fetch(table: str) -> list[dict[str, Any]]:
            query = self._quotation_query(table, intent, role, caller_id, sub_ids)
            return run.fetch(query.order("created_at", desc=True).limit(self.config.fanout_limit))

        per_table, failed = self._fan_out(_fetch, QUOTATION_TABLES)
        if len(failed) == len(QUOTATION_TABLES):
            raise DatastoreError("All quotation sources failed", table="quotations")

        sub_names = self._sub_account_names(
            run, {q["sub_account_id"] for rows in per_table.values() for q in rows}
        )
        merged = []
        for table in QUOTATION_TABLES:
            for q in per_table.get(table, []):
                merged.append({
                    "id": q["id"],
                    "type": table.replace("quotes_", "").upper(),
                    "section": q["section"],
                    "customer_name": q["customer_name"],
                    "value": float(q["final_total_cost"] or 0),
                    "status": q["status"],
                    "created_at": q["created_at"],
                    "created_by": q["created_by"],
                    "sub_account": sub_names.get(q["sub_account_id"]),
                })
        merged.sort(key=lambda q: q["created_at"] or datetime.min, reverse=True)
        total_value = sum(q["value"] for q in merged)
        quotations = merged[: self._limit(intent)]
        status_breakdown = dict(Counter(q["status"] or "draft" for q in quotations))
        count = len(quotations)

        if count == 0:
            if filters.subaccount_name:
                formatted = f'No quotations found for "{filters.subaccount_name}".'
            elif role == "employee":
                formatted = "No quotations found in your account."
            else:
                formatted = "No quotations found in the system."
        else:
            target = f' for "{filters.subaccount_name}"' if filters.subaccount_name else ""
            noun = _plural(count, "quotation", "quotations")
            if intent.operation == OperationType.COUNT:
                formatted = f"You have {count} {noun}{target}."
            else:
                formatted = f"Found {count} {noun}{target} with total pipeline value of {format_currency(total_value)}."

        return CRMQueryResult(
            success=True,
            entity=EntityType.QUOTATIONS,
            operation=intent.operation.value,
            raw={
                "total_quotations": count,
                "total_pipeline_value": total_value,
                "status_breakdown": status_breakdown,
                "quotations": quotations,
                "failed_sources": failed,
            },
            formatted=formatted,
            count=count,
            rows=quotations,
        )

    def _query_leads(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        query = self.store.table("leads").select(
            "id", "lead_name", "contact_person", "phone", "email", "status", "lead_source",
            "assigned_employee", "created_at",
        )
        if role == "employee":
            query = query.eq("assigned_employee", caller_id)
        if filters.employee_name:
            query = query.ilike("assigned_employee", _like(filters.employee_name))
        if filters.subaccount_name:
            query = query.or_(
                ("lead_name", "ilike", _like(filters.subaccount_name)),
                ("assigned_employee", "ilike", _like(filters.subaccount_name)),
            )
        if filters.status:
            query = query.ilike("status", filters.status)
        if filters.date_range and filters.date_range.start:
            query = query.gte("created_at", filters.date_range.start)

        total = run.count(query) if intent.operation == OperationType.COUNT else None
        rows = run.fetch(query.order("created_at", desc=True).limit(self._limit(intent)))
        leads = [
            {
                "id": r["id"],
                "name": r["lead_name"],
                "contact_person": r["contact_person"],
                "phone": r["phone"],
                "email": r["email"],
                "status": r["status"],
                "source": r["lead_source"],
                "assigned_employee": r["assigned_employee"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]
        breakdown = dict(Counter(lead["status"] or "New" for lead in leads))
        count = total if total is not None else len(leads)

        if count == 0:
            formatted = "No leads found in your account." if role == "employee" else "No leads found in the system."
        elif intent.operation == OperationType.COUNT:
            formatted = f"You have {count} {_plural(count, 'lead', 'leads')}."
        else:
            summary = ", ".join(f"{k}: {v}" for k, v in breakdown.items())
            formatted = f"Found {count} {_plural(count, 'lead', 'leads')}. Status breakdown: {summary}"

        return CRMQueryResult(
            success=True,
            entity=EntityType.LEADS,
            operation=intent.operation.value,
            raw={"total_leads": count, "status_breakdown": breakdown, "leads": leads},
            formatted=formatted,
            count=count,
            rows=leads,
        )

    def _query_accounts(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        if filters.insight:
            return self._query_insight(run, intent, role, caller_id)

        query = self.store.table("accounts").select("id", "account_name", "state", "city", "created_at")
        visible = run.fetch(self._scoped_sub_accounts(role, caller_id, "id", "account_id"))
        if role == "employee":
            query = query.in_("id", list({s["account_id"] for s in visible}))
        query = query.eq("is_active", True)
        name = filters.account_name or filters.subaccount_name
        if name:
            query = query.ilike("account_name", _like(name))

        total = run.count(query) if intent.operation == OperationType.COUNT else None
        rows = run.fetch(query.order("account_name").limit(self._limit(intent)))
        per_account = Counter(s["account_id"] for s in visible)
        accounts = [
            {
                "id": r["id"],
                "account_name": r["account_name"],
                "state": r["state"],
                "city": r["city"],
                "sub_account_count": per_account.get(r["id"], 0),
            }
            for r in rows
        ]
        count = total if total is not None else len(accounts)

        if count == 0:
            formatted = f'No accounts found matching "{name}".' if name else "No accounts found."
        elif intent.operation == OperationType.COUNT:
            formatted = f"You have {count} {_plural(count, 'account', 'accounts')}."
        else:
            names = ", ".join(a["account_name"] for a in accounts)
            formatted = f"Found {count} {_plural(count, 'account', 'accounts')}: {names}"

        return CRMQueryResult(
            success=True,
            entity=EntityType.ACCOUNTS,
            operation=intent.operation.value,
            raw={"total_accounts": count, "accounts": accounts},
            formatted=formatted,
            count=count,
            rows=accounts,
        )

    def _query_subaccounts(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters
        if filters.insight:
            return self._query_insight(run, intent, role, caller_id)

        query = self._scoped_sub_accounts(
            role, caller_id, "id", "account_id", "sub_account_name", "assigned_employee",
            "engagement_score", "last_activity_at",
        )
        if filters.subaccount_name:
            query = query.or_(
                ("sub_account_name", "ilike", _like(filters.subaccount_name)),
                ("assigned_employee", "ilike", _like(filters.subaccount_name)),
                ("account_id", "in", self._account_ids_matching(run, filters.subaccount_name)),
            )
        if filters.account_name:
            query = query.in_("account_id", self._account_ids_matching(run, filters.account_name))
        if filters.employee_name:
            query = query.ilike("assigned_employee", _like(filters.employee_name))

        total = run.count(query) if intent.operation == OperationType.COUNT else None
        rows = run.fetch(query.order("sub_account_name").limit(self._limit(intent)))
        account_names = self._account_names(run, {r["account_id"] for r in rows})
        sub_accounts = [
            {
                "id": r["id"],
                "sub_account_name": r["sub_account_name"],
                "account": account_names.get(r["account_id"]),
                "assigned_employee": r["assigned_employee"],
                "engagement_score": r["engagement_score"],
                "last_activity_at": r["last_activity_at"],
            }
            for r in rows
        ]
        count = total if total is not None else len(sub_accounts)
        scope = filters.subaccount_name or filters.account_name

        if count == 0:
            formatted = f'No sub-accounts found for "{scope}".' if scope else "No sub-accounts found."
        else:
            noun = _plural(count, "sub-account", "sub-accounts")
            target = f' for "{scope}"' if scope else ""
            if intent.operation == OperationType.COUNT:
                formatted = f"You have {count} {noun}{target}."
            else:
                names = ", ".join(s["sub_account_name"] for s in sub_accounts)
                formatted = f"Found {count} {noun}{target}: {names}"

        return CRMQueryResult(
            success=True,
            entity=EntityType.SUBACCOUNTS,
            operation=intent.operation.value,
            raw={"total_sub_accounts": count, "sub_accounts": sub_accounts},
            formatted=formatted,
            count=count,
            rows=sub_accounts,
        )

    def _query_insight(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        """Silent sub-accounts (no recent activity) or slipping engagement."""
        filters = intent.filters
        query = self._scoped_sub_accounts(
            role, caller_id, "id", "account_id", "sub_account_name", "assigned_employee",
            "engagement_score", "last_activity_at",
        )
        if filters.insight == "silent":
            cutoff = self._today_start() - timedelta(days=self.config.silent_days)
            query = query.or_(("last_activity_at", "is_null"), ("last_activity_at", "lt", cutoff))
            query = query.order("last_activity_at", nulls_first=True)
            label = f"with no activity in the last {self.config.silent_days} days"
            detail = {"days": self.config.silent_days}
        else:
            query = query.lt("engagement_score", self.config.slipping_threshold)
            query = query.order("engagement_score")
            label = f"with engagement below {format_number(self.config.slipping_threshold)}"
            detail = {"threshold": self.config.slipping_threshold}

        rows = run.fetch(query.limit(self._limit(intent)))
        account_names = self._account_names(run, {r["account_id"] for r in rows})
        flagged = [
            {
                "id": r["id"],
                "sub_account_name": r["sub_account_name"],
                "account": account_names.get(r["account_id"]),
                "assigned_employee": r["assigned_employee"],
                "engagement_score": r["engagement_score"],
                "last_activity_at": r["last_activity_at"],
            }
            for r in rows
        ]
        count = len(flagged)
        if count == 0:
            formatted = f"No sub-accounts {label}."
        else:
            names = ", ".join(f["sub_account_name"] for f in flagged)
            formatted = f"Found {count} {_plural(count, 'sub-account', 'sub-accounts')} {label}: {names}"

        return CRMQueryResult(
            success=True,
            entity=intent.entity,
            operation=intent.operation.value,
            raw={"insight": filters.insight, **detail, "sub_accounts": flagged},
            formatted=formatted,
            count=count,
            rows=flagged,
        )

    def _query_metrics(self, run: _Run, intent: QueryIntent, role: str, caller_id: str) -> CRMQueryResult:
        filters = intent.filters

        def _fetch(source: str) -> list[dict[str, Any]]:
            if source == "sub_accounts":
                query = self._scoped_sub_accounts(role, caller_id, "engagement_score")
                if filters.subaccount_name:
                    query = query.ilike("sub_account_name", _like(filters.subaccount_name))
                return run.fetch(query)
            if source == "activities":
                query = self.store.table("activities").select("activity_type")
                if role == "employee":
                    query = query.eq("employee_id", caller_id)
                if filters.date_range and filters.date_range.start:
                    query = query.gte("created_at", filters.date_range.start)
                return run.fetch(query)
            query = self.store.table(source).select("final_total_cost")
            if role == "employee":
                query = query.eq("created_by", caller_id)
            if filters.date_range and filters.date_range.start:
                query = query.gte("created_at", filters.date_range.start)
            return run.fetch(query)

        sources = ("sub_accounts", "activities") + QUOTATION_TABLES
        fetched, failed = self._fan_out(_fetch, sources)
        if len(failed) == len(sources):
            raise DatastoreError("All metric sources failed", table="metrics")

        scores = [float(s["engagement_score"] or 0) for s in fetched.get("sub_accounts", [])]
        quotes = [q for table in QUOTATION_TABLES for q in fetched.get(table, [])]
        activities = fetched.get("activities", [])
        pipeline = sum(float(q["final_total_cost"] or 0) for q in quotes)

        summary = {
            "total_sub_accounts": len(scores),
            "average_engagement_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
            "max_engagement_score": max(scores) if scores else 0.0,
            "min_engagement_score": min(scores) if scores else 0.0,
            "total_activities": len(activities),
            "total_quotations": len(quotes),
            "total_pipeline_value": pipeline,
        }
        formatted = (
            f"Engagement Metrics: Average score: {summary['average_engagement_score']:.1f}, "
            f"Range: {format_number(summary['min_engagement_score'])} - {format_number(summary['max_engagement_score'])}, "
            f"Total sub-accounts: {len(scores)}. Activities: {len(activities)}. "
            f"Quotations: {len(quotes)} worth {format_currency(pipeline)}."
        )

        return CRMQueryResult(
            success=True,
            entity=EntityType.METRICS,
            operation=OperationType.AGGREGATE.value,
            raw={**summary, "failed_sources": failed},
            formatted=formatted,
            count=len(scores),
            rows=[summary],
        )
