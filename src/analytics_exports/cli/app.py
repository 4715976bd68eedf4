"""Typer CLI root application with serve and worker commands."""

import asyncio

import typer

from analytics_exports.core.config import get_settings
from analytics_exports.core.logging import setup_logging

app = typer.Typer(name="analytics-exports", help="Asynchronous report export service CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server (with in-process export workers unless WORKER_ENABLED=false)."""
    import uvicorn

    uvicorn.run(
        "analytics_exports.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def worker(
    concurrency: int | None = typer.Option(None, "--concurrency", min=1, help="Number of concurrent workers"),
) -> None:
    """Run export workers in the foreground until interrupted."""
    asyncio.run(_worker(concurrency))


async def _worker(concurrency: int | None) -> None:
    from analytics_exports.core.background import ExportWorkerPool
    from analytics_exports.core.database import dispose_engine, get_session_factory, init_engine

    settings = get_settings()
    if concurrency is not None:
        settings.worker_concurrency = concurrency
    init_engine(settings.database_url, schema=settings.database_schema)
    pool = ExportWorkerPool.from_settings(get_session_factory(), settings)
    pool.start()
    typer.echo(f"Started {settings.worker_concurrency} export worker(s). Press Ctrl+C to stop.")
    try:
        await pool.wait()
    finally:
        await pool.stop()
        await dispose_engine()


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from analytics_exports.cli.db_cmd import db_app
    from analytics_exports.cli.reports_cmd import reports_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(reports_app, name="reports", help="Report export commands")


_register_subcommands()
