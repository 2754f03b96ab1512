"""CLI entrypoint for crmassist."""

import json
import logging
from pathlib import Path

import click
import duckdb

from crmassist import __version__
from crmassist.config import EngineConfig
from crmassist.execution.executor import QueryExecutor
from crmassist.explain.formatter import format_for_model
from crmassist.orchestrator.engine import AskEngine
from crmassist.orchestrator.routing import classify_with_heuristics
from crmassist.planning.intent import parse_intent
from crmassist.store.builder import CRMStore
from crmassist.store.schema import create_schema, seed_demo

DEFAULT_DB_PATH = EngineConfig().db_path


def _configure_logging(config: EngineConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(levelname)s %(name)s %(message)s",
    )


def _require_db(db_path: str) -> None:
    if not Path(db_path).exists():
        click.echo(f"❌ Database not found at {db_path}. Run 'crmassist init-db' first.", err=True)
        raise click.Abort()


@click.group()
@click.version_option(__version__)
def main():
    """crmassist - Natural-language CRM query and coaching engine."""
    pass


@main.command("init-db")
@click.option(
    "--db-path",
    default=DEFAULT_DB_PATH,
    envvar="CRM_DB_PATH",
    type=click.Path(),
    help=f"Path to DuckDB database file (default: {DEFAULT_DB_PATH})",
)
@click.option("--seed", is_flag=True, default=False, help="Also insert the demo dataset")
def init_db(db_path: str, seed: bool):
    """Create the CRM tables in a DuckDB file."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(db_path)
    try:
        create_schema(conn)
        click.echo(f"✅ Schema ready at {db_path}")
        if seed:
            counts = seed_demo(conn)
            click.echo("✅ Demo data: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    finally:
        conn.close()


@main.command("seed-demo")
@click.option(
    "--db-path",
    default=DEFAULT_DB_PATH,
    envvar="CRM_DB_PATH",
    type=click.Path(),
    help=f"Path to DuckDB database file (default: {DEFAULT_DB_PATH})",
)
def seed_demo_cmd(db_path: str):
    """Insert the demo dataset into an initialised database."""
    _require_db(db_path)
    conn = duckdb.connect(db_path)
    try:
        counts = seed_demo(conn)
    except duckdb.Error as e:
        click.echo(f"❌ Seeding failed: {e}", err=True)
        raise click.Abort()
    finally:
        conn.close()
    click.echo("✅ Demo data: " + ", ".join(f"{k}={v}" for k, v in counts.items()))


@main.command()
@click.argument("question")
@click.option("--caller", "caller_id", required=True, help="Caller identity (employee id)")
@click.option(
    "--role",
    type=click.Choice(["admin", "employee"]),
    default="employee",
    help="Caller role (default: employee)",
)
@click.option(
    "--db-path",
    default=DEFAULT_DB_PATH,
    envvar="CRM_DB_PATH",
    type=click.Path(),
    help=f"Path to DuckDB database file (default: {DEFAULT_DB_PATH})",
)
@click.option("--provider", default=None, help="LLM provider override (ollama, anthropic, openai)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full response as JSON")
def ask(question: str, caller_id: str, role: str, db_path: str, provider: str | None, as_json: bool):
    """Ask a question about CRM data, or ask for coaching."""
    overrides = {"llm_provider": provider} if provider else {}
    config = EngineConfig.from_env(db_path=db_path, **overrides)
    _configure_logging(config)
    _require_db(db_path)

    with CRMStore(db_path, read_only=True) as store:
        response = AskEngine(store, config=config).ask(question, caller_id, role)

    if as_json:
        click.echo(json.dumps(response.model_dump(mode="json"), indent=2))
        return

    click.echo(response.answer)
    click.echo("")
    click.echo(f"Mode: {response.mode}  Confidence: {response.confidence:.2f}")
    if response.sources:
        click.echo(f"Sources: {', '.join(response.sources)}")
    if response.sql_or_query_descriptor:
        click.echo(f"Query: {response.sql_or_query_descriptor}")


@main.command()
@click.argument("question")
@click.option("--caller", "caller_id", default="preview", help="Caller identity (default: preview)")
@click.option(
    "--role",
    type=click.Choice(["admin", "employee"]),
    default="employee",
    help="Caller role (default: employee)",
)
@click.option(
    "--db-path",
    default=DEFAULT_DB_PATH,
    envvar="CRM_DB_PATH",
    type=click.Path(),
    help=f"Path to DuckDB database file (default: {DEFAULT_DB_PATH})",
)
@click.option("--run", is_flag=True, default=False, help="Also run the query and show the model context")
def explain(question: str, caller_id: str, role: str, db_path: str, run: bool):
    """Show how a question is parsed and routed, without calling a model."""
    config = EngineConfig.from_env(db_path=db_path)
    intent = parse_intent(question)
    route = classify_with_heuristics(question, bias_magnitude=config.history_bias)

    click.echo("=" * 70)
    click.echo(f"Question: {question}")
    click.echo("=" * 70)
    click.echo(f"Route:     {route.mode} ({route.confidence:.2f}) - {route.reason}")
    click.echo(f"Entity:    {intent.entity.value}")
    click.echo(f"Operation: {intent.operation.value}")
    filters = intent.filters.model_dump(mode="json", exclude_none=True)
    click.echo(f"Filters:   {json.dumps(filters)}")

    if not run:
        return

    _require_db(db_path)
    with CRMStore(db_path, read_only=True) as store:
        executor = QueryExecutor(store, config)
        click.echo(f"Query:     {executor.describe(intent, role)}")
        result = executor.execute(intent, role, caller_id)

    click.echo("-" * 70)
    click.echo(result.formatted)
    if result.success and result.rows:
        click.echo("-" * 70)
        click.echo(format_for_model(result.rows, question, intent))


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
@click.option("--port", default=8000, type=int, help="Port (default: 8000)")
@click.option(
    "--db-path",
    default=DEFAULT_DB_PATH,
    envvar="CRM_DB_PATH",
    type=click.Path(),
    help=f"Path to DuckDB database file (default: {DEFAULT_DB_PATH})",
)
def serve(host: str, port: int, db_path: str):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from crmassist.api.server import create_app

    _require_db(db_path)
    uvicorn.run(create_app(db_path=db_path), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
