from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
import typer

from donationstats.adapters.sheets.mirror import MirrorState
from donationstats.core.config import ConfigError, DonationConfig, load_config_from_env
from donationstats.infra.storage.json_store import PersistenceWriteError
from donationstats.infra.storage.pidfile import AlreadyRunningError
from donationstats.ingest.corrections import ADD, SET
from donationstats.ingest.totals import CorrectionError
from donationstats.services.runtime import DonationRuntime

# Load environment variables from .env
load_dotenv()

app = typer.Typer(
    help=(
        "donationstats: TON donation ingestion and per-country totals. "
        "Corrections made while serve runs are queued and applied by it."
    ),
    no_args_is_help=True,
)


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=level,
    )


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _load_config() -> DonationConfig:
    try:
        return load_config_from_env()
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1) from None


def _runtime(config: DonationConfig) -> DonationRuntime:
    return DonationRuntime.from_config(config)


def _correct(kind: str, country: str, value: float) -> None:
    """Apply a correction here, or queue it for a running serve process."""
    runtime = _runtime(_load_config())
    service = runtime.service
    try:
        if runtime.serve_lock.is_held():
            payload = service.queue_correction(kind, country, value).to_dict()
        elif kind == SET:
            payload = service.set_country(country, value).to_dict()
        else:
            payload = service.add_country(country, value).to_dict()
    except CorrectionError as e:
        typer.echo(f"Rejected: {e}", err=True)
        raise typer.Exit(2) from None
    except PersistenceWriteError as e:
        typer.echo(f"Could not queue correction: {e}", err=True)
        raise typer.Exit(1) from None
    _echo_json(payload)


@app.callback()
def main_callback() -> None:
    """Configure logging before any command runs."""
    config = _load_config()
    _configure_logging(config.log_level)


@app.command("serve")
def serve() -> None:
    """Poll TonAPI on a jittered interval until interrupted."""
    config = _load_config()
    runtime = _runtime(config)
    try:
        cycle = runtime.ingestion_cycle()
    except ConfigError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(1) from None

    try:
        runtime.serve_lock.acquire()
    except AlreadyRunningError as e:
        typer.echo(f"serve is already running: {e}", err=True)
        raise typer.Exit(1) from None

    scheduler = runtime.scheduler(cycle)
    typer.echo(f"Polling {config.ton_wallet}. Press Ctrl+C to stop.")
    try:
        asyncio.run(scheduler.run())
    except KeyboardInterrupt:
        scheduler.stop()
        typer.echo("\nShutting down...")
    finally:
        runtime.serve_lock.release()


@app.command("poll-once")
def poll_once() -> None:
    """Run a single ingestion cycle and print its report."""
    runtime = _runtime(_load_config())
    if runtime.serve_lock.is_held():
        typer.echo("serve is running and owns the data directory", err=True)
        raise typer.Exit(1)
    try:
        cycle = runtime.ingestion_cycle()
    except ConfigError as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(1) from None
    _echo_json(cycle.run().to_dict())


@app.command("health")
def health() -> None:
    """Print the current watermark."""
    _echo_json(_runtime(_load_config()).service.health())


@app.command("stats")
def stats(
    top: int | None = typer.Option(
        None, "--top", min=1, help="Only show the N largest totals"
    ),
) -> None:
    """Print per-country totals."""
    runtime = _runtime(_load_config())
    if top is None:
        _echo_json(runtime.service.stats())
        return
    _echo_json(dict(runtime.service.top(top)))


@app.command("set-country")
def set_country(
    country: str = typer.Argument(..., help="Country name or alias"),
    amount: float = typer.Option(..., "--amount", help="New absolute total in TON"),
) -> None:
    """Replace a country's total."""
    _correct(SET, country, amount)


@app.command("add-country")
def add_country(
    country: str = typer.Argument(..., help="Country name or alias"),
    delta: float = typer.Option(
        ..., "--delta", help="Amount in TON to add; negative values subtract"
    ),
) -> None:
    """Adjust a country's total by a delta, floored at zero."""
    _correct(ADD, country, delta)


@app.command("sync-sheets")
def sync_sheets() -> None:
    """Push the current totals to the Google Sheet."""
    runtime = _runtime(_load_config())
    if runtime.service.mirror_state is MirrorState.DISABLED:
        typer.echo("Google Sheets mirror is not configured", err=True)
        raise typer.Exit(1)
    try:
        outcome = runtime.service.sync_mirror()
    except Exception as e:  # noqa: BLE001 - reported to the operator
        typer.echo(f"Sync failed: {e}", err=True)
        raise typer.Exit(1) from None
    _echo_json({"message": "Synced to Google Sheets", **outcome.to_dict()})


@app.command("sheets-test")
def sheets_test() -> None:
    """Write a small dummy table to verify Google Sheets credentials."""
    runtime = _runtime(_load_config())
    if runtime.mirror.state is MirrorState.DISABLED:
        typer.echo("Google Sheets mirror is not configured", err=True)
        raise typer.Exit(1)
    dummy = {"United States": 1.23, "India": 0.45, "Japan": 2.78}
    try:
        outcome = runtime.mirror.publish(dummy)
    except Exception as e:  # noqa: BLE001 - reported to the operator
        typer.echo(f"Test push failed: {e}", err=True)
        raise typer.Exit(1) from None
    _echo_json(outcome.to_dict())


if __name__ == "__main__":
    app()
