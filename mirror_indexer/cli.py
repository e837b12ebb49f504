"""
Command-line interface for mirror-indexer.

Provides commands to run the indexer, initialize the database,
trigger one-off walks and refreshes, and run diagnostic checks.

Usage:
    mirror-indexer run        # Run workers, schedulers and the API server
    mirror-indexer init-db    # Initialize database
    mirror-indexer run-once   # One latest walk per instance, then drain
    mirror-indexer refresh research 42 --page 2
    mirror-indexer health     # Check service health
"""

import asyncio
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import click

from mirror_indexer.config.settings import Settings, get_settings
from mirror_indexer.observability.logging import setup_logging
from mirror_indexer.observability.metrics import get_metrics


@asynccontextmanager
async def _runtime(settings: Settings) -> AsyncIterator[tuple]:
    """
    Open the shared HTTP client, database and search client, and build the registry.

    Yields:
        (registry, database, search client or None)
    """
    from mirror_indexer.indexer.registry import IndexerRegistry
    from mirror_indexer.ingestion.http_client import HTTPClient, RetryConfig
    from mirror_indexer.search.meili import MeilisearchClient
    from mirror_indexer.storage.database import Database
    from mirror_indexer.storage.repository import SubjectRepository

    http_client = HTTPClient(
        retry_config=RetryConfig(
            max_retries=settings.max_http_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        ),
        timeout=settings.http_timeout_seconds,
        user_agent=settings.user_agent,
    )
    db = Database.from_settings(settings)

    await http_client.open()
    try:
        await db.connect()
        try:
            search = None
            if settings.search_configured:
                search = MeilisearchClient(
                    settings.meili_url, http_client, api_key=settings.meili_api_key
                )

            registry = IndexerRegistry.from_settings(
                settings,
                http_client,
                SubjectRepository(db),
                search=search,
            )
            yield registry, db, search
        finally:
            await db.close()
    finally:
        await http_client.close()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Mirror Indexer - incremental mirroring of forums and issue trackers."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.option("--api/--no-api", default=True, help="Serve the refresh and health API")
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def run(api: bool, host: str | None, port: int | None, metrics: bool) -> None:
    """Run every source worker with its scheduler, plus the API server."""
    import uvicorn

    from mirror_indexer.api.app import create_app

    settings = get_settings()

    async def serve():
        if metrics:
            get_metrics().start_server()

        async with _runtime(settings) as (registry, db, _search):
            stop_event = asyncio.Event()
            server: uvicorn.Server | None = None

            def request_shutdown() -> None:
                stop_event.set()
                if server is not None:
                    server.should_exit = True

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, request_shutdown)

            await registry.start_all()
            try:
                if api:
                    config = uvicorn.Config(
                        create_app(registry=registry, database=db),
                        host=host or settings.api_host,
                        port=port or settings.api_port,
                        log_level=settings.log_level.lower(),
                    )
                    server = uvicorn.Server(config)
                    # Signals are handled above, not by uvicorn
                    server.install_signal_handlers = lambda: None
                    await server.serve()
                else:
                    await stop_event.wait()
            finally:
                await registry.stop_all()

    asyncio.run(serve())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from mirror_indexer.storage.database import Database
    from mirror_indexer.storage.repository import SubjectRepository

    async def run():
        async with Database.from_settings(get_settings()) as db:
            await SubjectRepository(db).create_tables()

        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command("run-once")
def run_once() -> None:
    """Walk the latest listing page(s) of every instance and process the results."""
    settings = get_settings()

    async def run():
        async with _runtime(settings) as (registry, _db, _search):
            summary = await registry.run_once()

        click.echo("\nRun Summary:")
        click.echo("-" * 40)
        for instance_id, result in summary.items():
            if "error" in result:
                click.echo(click.style(f"  ✗ {instance_id}: {result['error']}", fg="red"))
                continue
            outcomes = ", ".join(f"{k}={v}" for k, v in sorted(result["outcomes"].items()))
            click.echo(
                f"  {instance_id}: pages={result['pages']} queued={result['queued']} "
                f"{outcomes or 'nothing to do'}"
            )
        click.echo("-" * 40)

    asyncio.run(run())


@main.command()
@click.argument("instance_id")
@click.argument("subject_id", type=int)
@click.option("--page", default=1, type=click.IntRange(min=1), help="Detail page to start from")
def refresh(instance_id: str, subject_id: int, page: int) -> None:
    """Index one subject now, following its pages from --page onward."""
    from mirror_indexer.errors import UnknownInstance

    settings = get_settings()

    async def run():
        async with _runtime(settings) as (registry, _db, _search):
            try:
                worker = registry.get(instance_id)
            except UnknownInstance as e:
                click.echo(click.style(str(e), fg="red"))
                click.echo(f"Configured instances: {', '.join(registry.instance_ids)}")
                sys.exit(1)

            await worker.enqueue(subject_id, page)
            outcomes = await worker.run_pending()

        for outcome, count in sorted(outcomes.items()):
            click.echo(f"  {outcome}: {count}")

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of the database, the search index and every source."""
    import structlog
    logger = structlog.get_logger()

    settings = get_settings()

    async def check():
        results: dict[str, bool] = {}

        try:
            async with _runtime(settings) as (registry, db, search):
                results["postgres"] = await db.health_check()

                if search is not None:
                    results["meilisearch"] = await search.health_check()

                for instance_id, status in (await registry.health_check()).items():
                    results[f"source:{instance_id}"] = status["source_healthy"]
        except Exception as e:
            results["postgres"] = False
            logger.error("Health check failed", error=str(e))

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
