"""Command-line entry point.

Commands:
    run           Scrape targets, store samples and serve the query API.
    check-config  Validate a configuration file and list its targets.
    scrape-once   Scrape every target once and report health.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
import uvicorn

from scrapestack.adapters.frameworks.asgi import create_asgi_app
from scrapestack.adapters.storage import InMemorySeriesStore, SQLiteSeriesStore
from scrapestack.adapters.storage.sqlite_series import DEFAULT_FLUSH_THRESHOLD
from scrapestack.config import ScrapeConfig, load_config, parse_duration
from scrapestack.core.errors import ConfigError, StoreError
from scrapestack.core.models import RetentionPolicy, TargetHealth
from scrapestack.core.registry import TargetRegistry
from scrapestack.runtime.embedded import EmbeddedRuntime
from scrapestack.scheduler import ScrapeScheduler

app = typer.Typer(
    help="Pull metrics from HTTP targets, store them and serve queries.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        help="YAML scrape configuration (prometheus.yml layout)",
    ),
]
LogLevelOption = Annotated[
    str,
    typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR"),
]


def configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(
            f"unknown log level {level!r}", param_hint="--log-level"
        )
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_listen_address(listen: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts."""
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit() or not 0 < int(port) <= 65535:
        raise typer.BadParameter(
            f"expected host:port, got {listen!r}", param_hint="--listen"
        )
    return host or "0.0.0.0", int(port)


def _load(config_path: Path) -> tuple[ScrapeConfig, TargetRegistry]:
    try:
        config = load_config(config_path)
        registry = TargetRegistry.from_config(config)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2) from e
    return config, registry


async def _serve(
    config: ScrapeConfig,
    registry: TargetRegistry,
    storage_path: Path,
    flush_threshold: int,
    retention: RetentionPolicy,
    host: str,
    port: int,
    log_level: str,
) -> None:
    store = SQLiteSeriesStore(storage_path, flush_threshold=flush_threshold)
    await store.open()
    server = uvicorn.Server(
        uvicorn.Config(
            create_asgi_app(store, registry),
            host=host,
            port=port,
            log_level=log_level.lower(),
            lifespan="off",
        )
    )
    async with EmbeddedRuntime(config, store, registry, retention=retention):
        await server.serve()


@app.command("run")
def run_command(
    config: ConfigOption = Path("prometheus.yml"),
    storage_path: Annotated[
        Path,
        typer.Option("--storage-path", help="Directory owned by the series store"),
    ] = Path("data"),
    listen: Annotated[
        str, typer.Option("--listen", help="host:port for the query API")
    ] = "0.0.0.0:9090",
    flush_threshold: Annotated[
        int,
        typer.Option(
            "--flush-threshold",
            min=1,
            help="Buffered samples that trigger a write to disk",
        ),
    ] = DEFAULT_FLUSH_THRESHOLD,
    retention: Annotated[
        str | None,
        typer.Option(
            "--retention",
            help="Drop series with no samples newer than this (e.g. 15d)",
        ),
    ] = None,
    log_level: LogLevelOption = "INFO",
) -> None:
    """Scrape targets, store samples and serve the query API."""
    configure_logging(log_level)
    host, port = parse_listen_address(listen)
    scrape_config, registry = _load(config)
    try:
        policy = RetentionPolicy(
            max_age_seconds=parse_duration(retention, "--retention")
            if retention
            else None
        )
    except ConfigError as e:
        raise typer.BadParameter(str(e), param_hint="--retention") from e

    try:
        asyncio.run(
            _serve(
                scrape_config,
                registry,
                storage_path,
                flush_threshold,
                policy,
                host,
                port,
                log_level,
            )
        )
    except StoreError as e:
        typer.echo(f"Storage error: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("check-config")
def check_config_command(config: ConfigOption = Path("prometheus.yml")) -> None:
    """Validate a configuration file and list its jobs and targets."""
    scrape_config, registry = _load(config)
    typer.echo(
        f"Configuration OK: {len(scrape_config.jobs)} job(s), "
        f"{len(registry)} target(s)"
    )
    for job in scrape_config.jobs:
        typer.echo(
            f"  {job.job_name}: every {job.scrape_interval:g}s "
            f"(timeout {job.scrape_timeout:g}s)"
        )
        for target in registry.all():
            if target.job == job.job_name:
                typer.echo(f"    - {target.url}")


@app.command("scrape-once")
def scrape_once_command(
    config: ConfigOption = Path("prometheus.yml"),
    log_level: LogLevelOption = "WARNING",
) -> None:
    """Scrape every target once without storing, and report health."""
    configure_logging(log_level)
    scrape_config, registry = _load(config)

    async def _scrape() -> None:
        scheduler = ScrapeScheduler(scrape_config, registry, InMemorySeriesStore())
        try:
            await scheduler.scrape_all()
        finally:
            await scheduler.stop()

    asyncio.run(_scrape())
    any_down = False
    for target in registry.all():
        if target.health is TargetHealth.DOWN:
            any_down = True
            typer.echo(f"{target.job} {target.address} down: {target.last_error}")
        else:
            typer.echo(
                f"{target.job} {target.address} {target.health.value}: "
                f"{target.last_samples} sample(s) in {target.last_duration or 0:.3f}s"
            )
    if any_down:
        raise typer.Exit(1)


def main() -> None:
    app()
