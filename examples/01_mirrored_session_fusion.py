#!/usr/bin/env python3
"""Example 01: Mirrored Session Pair End-to-End.

This example records one synthetic session pair and walks through every
stage seasync runs for it:

1. **Start**: clock probe, local recording with a START marker, mirror start
2. **Record**: surface readings go to the local store; in-water readings
   accumulate on an in-memory remote peer whose clock runs ahead and drifts
3. **Stop**: STOP markers, local finalization, final mirror poll
4. **Fusion**: drift model from the markers, unified_session.csv written

Key Concepts:
-------------
- Session root layout and sync_metadata.json
- Chunked recording and verified session.csv
- Marker-based drift correction
- Dual-sensor vs single-sensor rows in the unified output

Example Usage:
-------------
    $ python examples/01_mirrored_session_fusion.py

    # Larger clock error on the remote peer
    $ CLOCK_OFFSET_MS=750 DRIFT_PPM=400 python examples/01_mirrored_session_fusion.py
"""

import asyncio
from datetime import timedelta
from pathlib import Path
import shutil

from pydantic_settings import BaseSettings, SettingsConfigDict

from seasync.config import Settings
from seasync.domain import Reading
from seasync.fusion import load_unified_frame
from seasync.metadata import SyncMetadataStore
from seasync.pipeline import SessionController
from seasync.utils import utc_now
from synthetic import FakeRemotePeer
from synthetic.utils import clock_drift_offset, deterministic_rng


class ExampleSettings(BaseSettings):
    """Settings for Example 01: Mirrored Session Pair End-to-End."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    output_root: Path = Path("temp/examples/01_mirrored_session")
    mission: str = "example-dive"
    n_readings: int = 40
    interval_s: float = 0.05
    clock_offset_ms: float = 250.0
    drift_ppm: float = 200.0
    seed: int = 42


async def record(settings: ExampleSettings) -> Path:
    """Run one session pair against a fake peer; returns the session root."""
    peer = FakeRemotePeer(sensor_id="SN10001", clock_offset_ms=settings.clock_offset_ms)
    seasync_settings = Settings(
        storage={"root": str(settings.output_root / "sessions")},
        mirror={"cadence_s": 0.1, "stop_grace_s": 0.0},
        logging={"level": "WARNING"},
    )
    controller = SessionController(seasync_settings, transport=peer.transport())
    rng = deterministic_rng(settings.seed, "example")

    remote_session = "remote-example"
    session_root = await controller.start(
        mission=settings.mission,
        surface_sensor_id="SN20001",
        remote_base_url="http://vehicle.example:9150",
        remote_session_id=remote_session,
    )
    print(f"   ✓ Session root: {session_root}")

    started = utc_now()
    for i in range(settings.n_readings):
        now = utc_now()
        elapsed_s = (now - started).total_seconds()
        controller.add_reading(Reading(time=now, sensor_id="SN20001", mode="freerun", value=round(20.0 + rng.gauss(0, 0.2), 4)))

        remote_ms = settings.clock_offset_ms + clock_drift_offset(elapsed_s, settings.drift_ppm) * 1000.0
        remote_time = now + timedelta(milliseconds=remote_ms)
        peer.record(remote_session, [Reading(time=remote_time, sensor_id="SN10001", mode="freerun", value=round(5.0 + rng.gauss(0, 0.1), 4))])
        if i % 10 == 9:
            peer.roll(remote_session)
        await asyncio.sleep(settings.interval_s)

    status = await controller.stop()
    print(f"   ✓ Fusion status: {status.status.value if status else 'pending'}")
    return session_root


def run_pipeline(settings: ExampleSettings) -> dict:
    """Record, mirror and fuse one synthetic session pair.

    Args:
        settings: Example settings with output paths and parameters

    Returns:
        Dictionary with artifacts
    """
    print("=" * 80)
    print("SEASYNC Example 01: Mirrored Session Pair End-to-End")
    print("=" * 80)

    if settings.output_root.exists():
        shutil.rmtree(settings.output_root)
    settings.output_root.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # PHASE 1: Record and mirror
    # =========================================================================
    print("\n📡 Recording session pair...")
    session_root = asyncio.run(record(settings))

    # =========================================================================
    # PHASE 2: Inspect sync metadata
    # =========================================================================
    metadata = SyncMetadataStore(session_root).read()
    time_sync = metadata.time_sync
    print("\n🕒 Time sync:")
    print(f"   - Probe: {time_sync.method} offset={time_sync.offset_ms} ms")
    for marker in time_sync.markers:
        print(f"   - {marker.type.value}: offset={marker.offset_ms} ms ({marker.quality.value})")
    print(f"   - Drift model: {time_sync.drift_model}")

    # =========================================================================
    # PHASE 3: Inspect unified output
    # =========================================================================
    fusion = metadata.fusion
    artifacts = {"session_root": session_root, "sync_metadata": session_root / "sync_metadata.json"}
    if fusion is not None and fusion.unified_csv:
        unified_path = session_root / fusion.unified_csv
        frame = load_unified_frame(unified_path)
        print("\n📊 Unified output:")
        print(f"   ✓ Rows: {fusion.row_count} (both={fusion.both_rows}, in-water only={fusion.in_water_rows}, surface only={fusion.surface_rows})")
        print(frame.head().to_string())
        artifacts["unified_csv"] = unified_path

    print(f"\n📁 Artifacts:")
    for name, path in artifacts.items():
        print(f"   ✓ {name}: {path}")

    return artifacts


if __name__ == "__main__":
    settings = ExampleSettings()
    run_pipeline(settings)
