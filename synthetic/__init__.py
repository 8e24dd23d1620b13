"""Synthetic data helpers for seasync.

Public API to generate minimal, valid synthetic inputs:
- Sensor reading streams with offset and drift (readings_synth)
- session.csv files and finalized chunk sets (readings_synth)
- An in-memory remote peer behind httpx.MockTransport (peer_synth)
- High-level `build_session_pair` to assemble a complete, stopped
  session root ready for fusion

These utilities are intended for demos, tests, and quick E2E exercises.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .peer_synth import FakeRemotePeer, PeerSession
from .readings_synth import (
    DEFAULT_START_TIME,
    ReadingSynthOptions,
    generate_readings,
    readings_at,
    render_csv,
    split_chunks,
    write_chunk_set,
    write_session_csv,
)

__all__ = [
    # Readings
    "DEFAULT_START_TIME",
    "ReadingSynthOptions",
    "generate_readings",
    "readings_at",
    "render_csv",
    "split_chunks",
    "write_chunk_set",
    "write_session_csv",
    # Peer
    "FakeRemotePeer",
    "PeerSession",
    # Result objects
    "SessionPairResult",
    # High-level builders
    "build_session_pair",
]


@dataclass(frozen=True)
class SessionPairResult:
    """Result object for session pair generation.

    Attributes
    ----------
    session_root : Path
        Unified session root containing sync_metadata.json.
    in_water_dir : Optional[Path]
        Sensor directory of the in-water recording (None if not generated).
    surface_dir : Optional[Path]
        Sensor directory of the surface recording (None if not generated).
    in_water_rows : int
        Rows written for the in-water sensor (markers included).
    surface_rows : int
        Rows written for the surface sensor (markers included).
    """

    session_root: Path
    in_water_dir: Optional[Path]
    surface_dir: Optional[Path]
    in_water_rows: int
    surface_rows: int


def build_session_pair(
    storage_root: Union[str, Path],
    *,
    mission: str = "synth-mission",
    unified_timestamp: str = "2025-11-18T12-00-00-000Z",
    in_water: Optional[List] = None,
    surface: Optional[List] = None,
    rows_per_chunk: int = 25,
    coarse_offset_ms: Optional[float] = None,
) -> SessionPairResult:
    """Build a stopped session root from reading lists.

    Each provided stream is written as a chunk set, finalized (combined,
    verified, chunks removed) and registered complete in
    sync_metadata.json, exactly as the recorder and mirror leave it. Pass
    ``None`` for a stream to produce a single-sensor session.

    Returns
    -------
    SessionPairResult
        Paths and row counts of the generated session root.
    """
    from seasync.domain import SensorRole, TimeSyncResult
    from seasync.metadata import SyncMetadataStore, build_session_root, sensor_directory_name
    from seasync.store import finalize_session_directory
    from seasync.utils import utc_now

    session_root = build_session_root(Path(storage_root), mission, unified_timestamp)
    metadata = SyncMetadataStore(session_root)
    metadata.ensure(mission, unified_timestamp)

    if coarse_offset_ms is not None:
        now = utc_now()
        metadata.record_time_sync(
            TimeSyncResult(
                method="ntp_handshake_v1",
                offset_ms=coarse_offset_ms,
                uncertainty_ms=1.0,
                request_started_at=now,
                response_received_at=now,
            )
        )

    dirs = {}
    rows = {SensorRole.IN_WATER: 0, SensorRole.SURFACE: 0}
    for role, readings in ((SensorRole.IN_WATER, in_water), (SensorRole.SURFACE, surface)):
        if readings is None:
            dirs[role] = None
            continue
        session_id = f"{role.value}-synth"
        directory = sensor_directory_name(role, session_id)
        root = session_root / directory
        manifest = write_chunk_set(root, readings, rows_per_chunk=rows_per_chunk, session_id=session_id, mission=mission)
        summary = finalize_session_directory(root)
        metadata.update_sensor(role, session_id=session_id, directory=directory, started_at=manifest.started_at)
        metadata.complete_sensor(
            role,
            stopped_at=utc_now(),
            session_csv=summary.session_csv.relative_to(session_root).as_posix(),
            row_count=summary.total_rows,
            verified=summary.verified,
        )
        dirs[role] = root
        rows[role] = summary.total_rows

    return SessionPairResult(
        session_root=session_root,
        in_water_dir=dirs[SensorRole.IN_WATER],
        surface_dir=dirs[SensorRole.SURFACE],
        in_water_rows=rows[SensorRole.IN_WATER],
        surface_rows=rows[SensorRole.SURFACE],
    )
