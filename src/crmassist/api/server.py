"""FastAPI backend for the CRM assistant.

Wraps ``AskEngine`` in a small JSON API:

- POST /ask             answer a question (QUERY or COACH)
- POST /intent-preview  parsed intent, heuristic route and query descriptor
- GET  /health          store reachability, cache statistics, error rate and LLM configuration
- GET  /metrics         operation counts, latency percentiles and recent errors
- DELETE /sessions/{caller_id}  forget a caller's memory and cached answers
"""

import logging
import os
from pathlib import Path
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from crmassist import __version__
from crmassist.config import EngineConfig
from crmassist.errors import DatastoreError
from crmassist.llm.router import get_current_config
from crmassist.memory.conversation import ConversationTurn
from crmassist.orchestrator.engine import AskEngine, AskResponse
from crmassist.store.builder import CRMStore

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    """Request to ask a question."""
    question: str = Field(..., min_length=1, description="Natural language question")
    caller_id: str = Field(..., min_length=1, description="Identity of the asking user")
    role: Literal["admin", "employee"] = "employee"
    history: list[ConversationTurn] | None = None


class PreviewRequest(BaseModel):
    """Request to preview how a question would be handled."""
    question: str = Field(..., min_length=1)
    caller_id: str = "preview"
    role: Literal["admin", "employee"] = "employee"


def create_app(
    db_path: Path | str | None = None,
    engine: AskEngine | None = None,
    config: EngineConfig | None = None,
) -> FastAPI:
    """Build the API around an engine.

    Args:
        db_path: DuckDB file with the CRM tables (default: CRM_DB_PATH)
        engine: Pre-built engine; takes precedence over ``db_path``
        config: Engine configuration (default: from environment)
    """
    config = config or EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if engine is None:
        path = Path(db_path or config.db_path)
        if not path.exists():
            raise FileNotFoundError(f"Database not found at {path}. Run 'crmassist init-db' first.")
        engine = AskEngine(CRMStore(str(path), read_only=True), config=config)

    app = FastAPI(title="CRM Assistant API", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CRM_CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.engine = engine

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        store_ok = True
        try:
            engine.store.fetch("SELECT 1 AS ok")
        except DatastoreError:
            store_ok = False
        return {
            "status": "ok" if store_ok else "degraded",
            "store": store_ok,
            "cache": engine.cache.stats(),
            "error_rate": engine.monitor.error_rate(),
            "llm": get_current_config(),
            "version": __version__,
        }

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        """Operation monitor summary for the in-process window."""
        return {
            **engine.monitor.summary(),
            "recent_errors": engine.monitor.recent_errors(10),
        }

    @app.delete("/sessions/{caller_id}")
    def forget_session(caller_id: str) -> dict[str, Any]:
        """Drop the caller's conversation memory and cached answers."""
        return {"caller_id": caller_id, **engine.forget(caller_id)}

    @app.post("/ask", response_model=AskResponse)
    def ask_question(request: AskRequest) -> AskResponse:
        """Answer a natural language question about CRM data, or coach."""
        question = request.question.strip()
        if not question:
            raise HTTPException(status_code=400, detail="Question cannot be empty")
        logger.info("[api] /ask from %s (%s)", request.caller_id, request.role)
        return engine.ask(question, request.caller_id, request.role, request.history)

    @app.post("/intent-preview")
    def intent_preview(request: PreviewRequest) -> dict[str, Any]:
        """Show the parsed intent without reading data or calling a model."""
        question = request.question.strip()
        if not question:
            raise HTTPException(status_code=400, detail="Question cannot be empty")
        return engine.preview(question, request.caller_id, request.role)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_level="info")
