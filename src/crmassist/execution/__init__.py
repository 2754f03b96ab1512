"""Execution module for running parsed intents against the CRM store."""

from crmassist.execution.executor import QueryExecutor
from crmassist.execution.followups import bucket_followups
from crmassist.execution.results import CRMQueryResult

__all__ = ["QueryExecutor", "CRMQueryResult", "bucket_followups"]
