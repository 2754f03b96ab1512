"""Exception types raised inside the engine.

None of these ever leave ``AskEngine.ask``; they are converted to
user-safe answers at the orchestrator boundary.
"""


class CRMAssistError(Exception):
    """Base exception for engine failures."""

    def __init__(self, message: str, component: str = "engine", details: dict | None = None):
        super().__init__(message)
        self.component = component
        self.details = details or {}


class DatastoreError(CRMAssistError):
    """Raised when a read against the CRM store fails."""

    def __init__(self, message: str, table: str | None = None, details: dict | None = None):
        super().__init__(message, component="datastore", details=details)
        self.table = table


class LLMUnavailableError(CRMAssistError):
    """Raised when the language-model backend cannot produce a response."""

    def __init__(self, message: str, role: str | None = None, details: dict | None = None):
        super().__init__(message, component="llm", details=details)
        self.role = role


class LLMTransientError(LLMUnavailableError):
    """Raised for model failures worth retrying: unreachable, timed out, 5xx."""
