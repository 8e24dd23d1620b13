"""Synthetic sensor reading streams.

Generates deterministic Reading sequences for one sensor, optionally with a
fixed clock offset and ppm drift relative to a shared reference clock, and
writes them in the on-disk layouts seasync consumes (session.csv files and
finalized chunk sets with a manifest).

Features:
- `ReadingSynthOptions` Pydantic model grouping generation knobs.
- Deterministic values (seeded RNG) with optional timing jitter.
- Clock offset and drift applied the way a free-running sensor clock skews.
- Optional SYNC_START/SYNC_STOP markers bracketing the data.
- Writers for session.csv and chunk_NNNNN.csv sets.

Example:
        from synthetic.readings_synth import ReadingSynthOptions, generate_readings, write_session_csv

        opts = ReadingSynthOptions(sensor_id="SN10001", count=50, rate_hz=4.0, drift_ppm=20.0, sync_id="abc")
        readings = generate_readings(options=opts)
        write_session_csv("temp/in-water/session.csv", readings)
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from seasync.domain import CSV_HEADER, ChunkMetadata, MarkerType, Reading, SessionManifest
from seasync.store import chunk_name, reading_to_row, write_manifest
from seasync.utils import from_epoch_ms, to_epoch_ms, utc_now
from synthetic.utils import apply_clock_drift, deterministic_rng, ensure_parent_dir, sha256_bytes

DEFAULT_START_TIME = datetime(2025, 11, 18, 12, 0, 0, tzinfo=timezone.utc)


class ReadingSynthOptions(BaseModel):
    """Knobs controlling synthetic reading generation.

    Timing model: reading ``i`` is taken at reference time
    ``start_time + i / rate_hz`` (plus uniform jitter) and stamped by a
    sensor clock that is ``clock_offset_ms`` ahead of the reference and
    gains ``drift_ppm`` parts per million of elapsed time.
    """

    sensor_id: str = Field(default="SN10001", description="Sensor serial number")
    mode: str = Field(default="freerun", description="Acquisition mode")
    count: int = Field(default=100, ge=0, description="Number of data readings")
    rate_hz: float = Field(default=10.0, gt=0, description="Nominal sample rate")
    start_time: datetime = Field(default=DEFAULT_START_TIME, description="Reference time of the first reading")
    jitter_ms: float = Field(default=0.0, ge=0, description="Uniform timing jitter magnitude (+/- jitter_ms)")
    clock_offset_ms: float = Field(default=0.0, description="Sensor clock minus reference clock at start")
    drift_ppm: float = Field(default=0.0, description="Sensor clock drift (positive = runs fast)")
    value_base: float = Field(default=10.0, description="Center of generated values")
    value_spread: float = Field(default=1.0, ge=0, description="Uniform spread around value_base")
    include_environment: bool = Field(default=True, description="Populate TempC and Vin")
    sync_id: Optional[str] = Field(default=None, description="If set, bracket data with START/STOP markers")
    seed: int = Field(default=12345, description="Base RNG seed for deterministic generation")


def sensor_time(options: ReadingSynthOptions, elapsed_s: float) -> datetime:
    """Timestamp the sensor's clock shows ``elapsed_s`` reference seconds after start."""
    base_s = to_epoch_ms(options.start_time) / 1000.0
    observed_s = apply_clock_drift(base_s + elapsed_s, elapsed_s, options.drift_ppm)
    return from_epoch_ms(observed_s * 1000.0 + options.clock_offset_ms)


def generate_readings(*, options: Optional[ReadingSynthOptions] = None, **overrides) -> List[Reading]:
    """Generate a time-ordered reading stream for one sensor.

    Preferred: pass `options=ReadingSynthOptions(...)`.
    Convenience: overrides accepted as kwargs (merged into options).
    """
    base = options or ReadingSynthOptions()
    if overrides:
        base = base.model_copy(update=overrides)

    rng = deterministic_rng(base.seed, base.sensor_id)
    interval_s = 1.0 / base.rate_hz
    readings: List[Reading] = []

    if base.sync_id:
        readings.append(Reading.marker(MarkerType.START, base.sensor_id, base.sync_id, sensor_time(base, 0.0)))

    for i in range(base.count):
        elapsed = i * interval_s
        if base.jitter_ms > 0:
            elapsed += rng.uniform(-base.jitter_ms, base.jitter_ms) / 1000.0
        elapsed = max(elapsed, 0.0)
        readings.append(
            Reading(
                time=sensor_time(base, elapsed),
                sensor_id=base.sensor_id,
                mode=base.mode,
                value=round(base.value_base + rng.uniform(-base.value_spread, base.value_spread), 6),
                temp_c=round(21.0 + rng.uniform(-0.5, 0.5), 2) if base.include_environment else None,
                vin=round(12.3 + rng.uniform(-0.05, 0.05), 3) if base.include_environment else None,
            )
        )

    if base.sync_id:
        stop_elapsed = base.count * interval_s
        readings.append(Reading.marker(MarkerType.STOP, base.sensor_id, base.sync_id, sensor_time(base, stop_elapsed)))

    readings.sort(key=lambda r: r.time)
    return readings


def readings_at(
    offsets_ms: Sequence[float],
    *,
    sensor_id: str = "SN10001",
    start_time: datetime = DEFAULT_START_TIME,
    mode: str = "freerun",
    value_base: float = 1.0,
) -> List[Reading]:
    """Readings at exact millisecond offsets from ``start_time``.

    Values count up from ``value_base`` so each reading is identifiable in
    fused output.
    """
    base_ms = to_epoch_ms(start_time)
    return [
        Reading(time=from_epoch_ms(base_ms + offset), sensor_id=sensor_id, mode=mode, value=value_base + i)
        for i, offset in enumerate(offsets_ms)
    ]


def render_csv(readings: Sequence[Reading]) -> bytes:
    """Header plus one CSV row per reading, as UTF-8 bytes."""
    return (CSV_HEADER + "\n" + "".join(reading_to_row(r) for r in readings)).encode("utf-8")


def write_session_csv(path: Union[str, Path], readings: Sequence[Reading]) -> Path:
    """Write readings as a session.csv file. Returns the absolute Path."""
    p = ensure_parent_dir(path)
    p.write_bytes(render_csv(readings))
    return p.resolve()


def split_chunks(readings: Sequence[Reading], rows_per_chunk: int) -> List[List[Reading]]:
    """Split a stream into consecutive groups of at most ``rows_per_chunk``."""
    if rows_per_chunk < 1:
        raise ValueError(f"rows_per_chunk must be >= 1, got {rows_per_chunk}")
    return [list(readings[i : i + rows_per_chunk]) for i in range(0, len(readings), rows_per_chunk)]


def write_chunk_set(
    root: Union[str, Path],
    readings: Sequence[Reading],
    *,
    rows_per_chunk: int = 25,
    session_id: str = "synth-session",
    mission: str = "synth-mission",
    sensor_id: Optional[str] = None,
) -> SessionManifest:
    """Write finalized chunk files plus a matching manifest.json.

    The result is the state a recorder leaves just before finalization.
    """
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)
    manifest = SessionManifest(
        session_id=session_id,
        sensor_id=sensor_id or (readings[0].sensor_id if readings else None),
        mission=mission,
        started_at=readings[0].time if readings else utc_now(),
    )
    for index, group in enumerate(split_chunks(readings, rows_per_chunk)):
        data = render_csv(group)
        name = chunk_name(index)
        (root / name).write_bytes(data)
        manifest.append_chunk(
            ChunkMetadata(
                index=index,
                name=name,
                rows=len(group),
                sha256=sha256_bytes(data),
                size_bytes=len(data),
                timestamp=utc_now(),
            )
        )
    write_manifest(root, manifest)
    return manifest


if __name__ == "__main__":
    out_dir = Path("temp/synth-readings")
    readings = generate_readings(options=ReadingSynthOptions(count=20, rate_hz=5.0, sync_id="demo"))
    print(write_session_csv(out_dir / "session.csv", readings))
