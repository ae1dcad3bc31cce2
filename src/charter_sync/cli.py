# SPDX-License-Identifier: MIT
"""Command-line interface for the sync engine."""

import asyncio
import functools
import json
import sys
import traceback
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click
import yaml

from . import __version__
from .clients import AirtableRecordStore
from .config import AppConfig, MirrorConfig, RecordStoreConfig, get_config_manager
from .enums import DataSourceName, ResourceType
from .exceptions import TransportError
from .factory import create_sync_engine
from .logging_config import get_status_logger, setup_logging
from .models import HealthReport, SyncStatus


F = TypeVar("F", bound=Callable[..., Any])

SETTLE_POLL_SECONDS = 0.1


def handle_cli_errors(func: F) -> F:
    """Decorator to handle common CLI error patterns.

    Logs the error (with traceback when ``verbose`` is set) and exits with
    status code 1.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        status_logger = get_status_logger()
        verbose = kwargs.get("verbose", False)

        try:
            return func(*args, **kwargs)
        except Exception as e:
            if verbose:
                status_logger.error(f"Error in {func.__name__}: {e}")
                traceback.print_exc()
            else:
                status_logger.error(f"Error: {e}")
            sys.exit(1)

    return wrapper  # type: ignore


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit if requested."""
    if value:
        setup_logging()
        status_logger = get_status_logger()
        status_logger.info(f"Charter-Sync version {__version__}")
        ctx.exit(0)


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version information and exit",
)
def main() -> None:
    """Charter-Sync - Reliable sync of business plans and user profiles."""
    detail_logger, status_logger = setup_logging()
    detail_logger.debug("CLI initialized")


@main.command(name="show-config")
@handle_cli_errors
def show_config() -> None:
    """Show the complete current configuration."""
    print(get_config_manager().show_config())


@main.command(name="init-config")
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@handle_cli_errors
def init_config(output_path: Path, force: bool) -> None:
    """Write a default configuration file to OUTPUT_PATH."""
    status_logger = get_status_logger()
    if output_path.exists() and not force:
        status_logger.error(f"{output_path} already exists (use --force to overwrite)")
        sys.exit(1)

    get_config_manager().create_default_config(output_path)
    status_logger.info(f"Default configuration written to {output_path}")


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def health(verbose: bool) -> None:
    """Probe the network and the record store once and report data source health."""
    config = get_config_manager().load_config()
    report = asyncio.run(_async_health(config))

    if report.healthy:
        print("All data sources healthy")
        return

    print("Data source issues:")
    for issue in report.issues:
        print(f"  - {issue}")
    sys.exit(1)


async def _async_health(config: AppConfig) -> HealthReport:
    engine = create_sync_engine(config)
    registry = engine.registry
    online = await engine.network.check_connectivity()

    store = engine.writer.record_store
    if isinstance(store, AirtableRecordStore):
        table = engine.writer.tables[ResourceType.BUSINESS_PLAN.value]
        try:
            await store.check_connection(table)
        except TransportError as e:
            registry.update_status(DataSourceName.RECORD_STORE, False, str(e))
        else:
            registry.update_status(DataSourceName.RECORD_STORE, True)

    report = registry.health_check()
    if not online:
        report.issues.insert(0, "Network is offline")
        report.healthy = False
    return report


@main.command()
@click.argument("operations_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--format",
    "output_format",
    default="text",
    type=click.Choice(["text", "json"]),
    help="Output format",
)
@click.option(
    "--offline",
    is_flag=True,
    help="Skip the record store and mirror; keep changes in the local cache",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def push(
    operations_file: Path, output_format: str, offline: bool, verbose: bool
) -> None:
    """Queue the operations in OPERATIONS_FILE and sync until settled.

    OPERATIONS_FILE holds a YAML or JSON list of operations, each with
    ``type``, ``resource`` and ``payload``.
    """
    requests = _load_requests(operations_file)
    config = get_config_manager().load_config()
    if offline:
        config = config.model_copy(
            update={
                "record_store": RecordStoreConfig(tables=config.record_store.tables),
                "mirror": MirrorConfig(enabled=False),
            }
        )

    status = asyncio.run(_async_push(config, requests))

    if output_format == "json":
        print(json.dumps(status.model_dump(mode="json"), indent=2))
    else:
        print(_format_status(status))

    if status.errors:
        sys.exit(1)


def _load_requests(operations_file: Path) -> list[dict[str, Any]]:
    with open(operations_file, encoding="utf-8") as f:
        data = yaml.safe_load(f) or []

    if isinstance(data, dict):
        data = data.get("operations", [])
    if not isinstance(data, list):
        raise ValueError(f"{operations_file} must contain a list of operations")
    return data


async def _async_push(config: AppConfig, requests: list[dict[str, Any]]) -> SyncStatus:
    status_logger = get_status_logger()
    engine = create_sync_engine(config)
    await engine.start()
    try:
        for request in requests:
            engine.enqueue(request)
        status_logger.info(f"Queued {len(requests)} operations")

        while engine.get_status().pending_operations:
            await engine.force_sync()
            if engine.get_status().pending_operations:
                await asyncio.sleep(SETTLE_POLL_SECONDS)
    finally:
        await engine.stop()

    return engine.get_status()


def _format_status(status: SyncStatus) -> str:
    last_sync = status.last_sync_time.isoformat() if status.last_sync_time else "never"
    lines = [
        f"Online: {'yes' if status.is_online else 'no'}",
        f"Pending operations: {status.pending_operations}",
        f"Last sync: {last_sync}",
        f"Errors: {len(status.errors)}",
    ]
    lines.extend(f"  - {error}" for error in status.errors)
    return "\n".join(lines)


if __name__ == "__main__":
    main()
