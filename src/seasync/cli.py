"""Command-line interface for seasync.

Subcommands:
------------
- fuse SESSION_ROOT        Run (or re-run with --force) fusion for a session pair
- status SESSION_ROOT      Print sensors and fusion status as JSON
- verify SENSOR_DIR        Recheck session.csv hash and rows against the manifest
- recombine SENSOR_DIR     Rebuild session.csv from kept chunks (degraded sessions)
- clock-offset BASE_URL    Measure the clock offset against a remote peer

Every subcommand exits with code 1 on failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from seasync.config import Settings, load_settings
from seasync.domain import FusionState
from seasync.exceptions import SeaSyncError
from seasync.fusion import run_fusion
from seasync.metadata import SyncMetadataStore
from seasync.mirror import RemotePeerClient
from seasync.store import audit_session_directory, finalize_session_directory
from seasync.sync import measure_clock_offset
from seasync.utils import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(name="seasync", help="Dual-sensor recording, mirroring and fusion tools.", no_args_is_help=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to seasync TOML configuration")


def _settings(config_path: Optional[Path]) -> Settings:
    try:
        settings = load_settings(config_path)
    except (FileNotFoundError, SeaSyncError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    configure_logging(settings.logging.level, settings.logging.structured)
    return settings


def _echo_json(payload: dict) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command()
def fuse(
    session_root: Path = typer.Argument(..., exists=True, file_okay=False, help="Unified session root"),
    force: bool = typer.Option(False, "--force", help="Re-run even if fusion already completed"),
    tolerance_ms: Optional[float] = typer.Option(None, "--tolerance-ms", help="Alignment tolerance override"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Fuse the in-water and surface session files of SESSION_ROOT."""
    settings = _settings(config)
    fusion_config = settings.fusion
    if tolerance_ms is not None:
        fusion_config = fusion_config.model_copy(update={"tolerance_ms": tolerance_ms})

    try:
        status = run_fusion(session_root, fusion_config, force=force)
    except SeaSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    _echo_json(status.model_dump(mode="json"))
    if status.status is FusionState.FAILED:
        raise typer.Exit(code=1)


@app.command()
def status(
    session_root: Path = typer.Argument(..., exists=True, file_okay=False, help="Unified session root"),
) -> None:
    """Print sensor lifecycle and fusion status of SESSION_ROOT."""
    try:
        metadata = SyncMetadataStore(session_root).read()
    except SeaSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if metadata is None:
        typer.echo(f"Error: no sync metadata in {session_root}", err=True)
        raise typer.Exit(code=1)

    payload = metadata.model_dump(mode="json", include={"mission", "unified_session_timestamp", "sensors", "fusion"})
    _echo_json(payload)


@app.command()
def verify(
    sensor_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Sensor session directory"),
) -> None:
    """Recheck session.csv of SENSOR_DIR against its manifest."""
    try:
        problems = audit_session_directory(sensor_dir)
    except SeaSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if problems:
        for problem in problems:
            typer.echo(f"FAIL: {problem}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"OK: {sensor_dir}")


@app.command()
def recombine(
    sensor_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Sensor session directory"),
    keep_chunks: bool = typer.Option(False, "--keep-chunks", help="Do not delete chunks after verification"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Rebuild session.csv from the chunks kept in SENSOR_DIR."""
    _settings(config)
    try:
        summary = finalize_session_directory(sensor_dir, delete_chunks=not keep_chunks)
    except (SeaSyncError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    _echo_json(summary.model_dump(mode="json"))
    if not summary.verified:
        raise typer.Exit(code=1)


@app.command("clock-offset")
def clock_offset(
    base_url: str = typer.Argument(..., help="Remote peer API root, e.g. http://vehicle.local:9150"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Measure the remote - local clock offset of a peer."""
    settings = _settings(config)

    async def probe():
        async with RemotePeerClient(base_url, settings.mirror) as client:
            return await measure_clock_offset(client, settings.time_sync)

    result = asyncio.run(probe())
    _echo_json(result.model_dump(mode="json"))
    if not result.ok:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
