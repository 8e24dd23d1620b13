"""Fusion engine: merge the in-water and surface session files into one wide CSV.

Pipeline:
---------
1. Parse both session files; markers are separated from data rows
2. Estimate the drift model from markers and the coarse clock offset
3. Drift-correct in-water times and build the consolidated axis
4. Match readings to axis points (no reuse) and apply the row policy
5. Write unified_session.csv atomically

``run_fusion`` wraps the pipeline with the session-pair preconditions and
records every outcome (complete, skipped, failed) in sync_metadata.json.

Invariant: every value in the output is copied verbatim from one of the two
input session files. Nothing is interpolated or extrapolated.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import List, Optional

from seasync.config import FusionConfig
from seasync.domain import WIDE_COLUMNS, FusionResult, FusionState, FusionStatus, SensorRole, WideRow
from seasync.exceptions import FusionError, MissingInputError, StorageError
from seasync.fusion.align import DEFAULT_GAP_FACTOR, align
from seasync.fusion.axis import build_axis
from seasync.fusion.parse import parse_session_file
from seasync.metadata import SyncMetadataStore
from seasync.sync.drift import correct, estimate_drift
from seasync.utils import atomic_writer, from_epoch_ms, time_block, utc_now

logger = logging.getLogger(__name__)

__all__ = ["UNIFIED_CSV_FILENAME", "fuse_session", "write_unified_csv", "run_fusion"]

UNIFIED_CSV_FILENAME = "unified_session.csv"


def fuse_session(
    in_water_csv: Path,
    surface_csv: Path,
    output_path: Path,
    config: Optional[FusionConfig] = None,
    coarse_offset_ms: Optional[float] = None,
    gap_factor: float = DEFAULT_GAP_FACTOR,
) -> FusionResult:
    """Fuse two session files into a wide-format unified CSV.

    Args:
        in_water_csv: Remote sensor session file
        surface_csv: Local sensor session file
        output_path: Unified CSV to write
        config: Tolerance, consolidation and drift threshold
        coarse_offset_ms: Round-trip clock offset (remote - local), if measured
        gap_factor: Multiple of tolerance counted as a genuine gap

    Returns:
        FusionResult with row counts, markers and the drift model

    Raises:
        MissingInputError: If either session file is absent
        FusionError: If a session file has an unexpected header
    """
    config = config or FusionConfig()

    remote = parse_session_file(in_water_csv)
    local = parse_session_file(surface_csv)
    logger.info(f"Fusing {len(remote.readings)} in-water and {len(local.readings)} surface readings")

    estimate = estimate_drift(remote.markers, local.markers, coarse_offset_ms, config.drift_threshold_ms)
    remote_times = [correct(t, estimate.model) for t in remote.times_ms]
    local_times = local.times_ms

    axis = build_axis(remote_times, local_times, config.consolidation_ms)
    matches = align(axis, remote_times, local_times, config.tolerance_ms, gap_factor)

    rows: List[WideRow] = []
    for match in matches:
        if match.axis_local_index is not None:
            timestamp = local.readings[match.axis_local_index].time
        else:
            timestamp = from_epoch_ms(match.time_ms)
        rows.append(
            WideRow(
                timestamp=timestamp,
                in_water=remote.readings[match.remote_index].values if match.remote_index is not None else None,
                surface=local.readings[match.local_index].values if match.local_index is not None else None,
            )
        )

    write_unified_csv(output_path, rows)

    both_rows = sum(1 for row in rows if row.has_both)
    in_water_rows = sum(1 for row in rows if row.in_water is not None and row.surface is None)
    surface_rows = sum(1 for row in rows if row.surface is not None and row.in_water is None)
    logger.info(
        f"Wrote {len(rows)} rows to {output_path} (both={both_rows}, in-water only={in_water_rows}, "
        f"surface only={surface_rows}) from {len(axis)} axis points"
    )

    return FusionResult(
        output_path=output_path,
        row_count=len(rows),
        in_water_rows=in_water_rows,
        surface_rows=surface_rows,
        both_rows=both_rows,
        skipped_rows=remote.skipped_rows + local.skipped_rows,
        markers=estimate.markers,
        drift_model=estimate.model,
    )


def write_unified_csv(output_path: Path, rows: List[WideRow]) -> None:
    with atomic_writer(output_path) as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(WIDE_COLUMNS)
        for row in rows:
            writer.writerow(row.to_csv_fields())


def run_fusion(session_root: Path, config: Optional[FusionConfig] = None, force: bool = False) -> FusionStatus:
    """Fuse a session pair and record the outcome in its sync metadata.

    Outcomes:
    - ``skipped``: only one sensor recorded in this session pair
    - ``failed``: a sensor is incomplete, a session file is missing, or fusion raised
    - ``complete``: unified_session.csv written

    A session already fused is left untouched unless ``force`` is set.

    Raises:
        MissingInputError: If sync_metadata.json does not exist
    """
    session_root = Path(session_root)
    store = SyncMetadataStore(session_root)
    metadata = store.read()
    if metadata is None:
        raise MissingInputError(f"No sync metadata in {session_root}", hint="Is this a unified session root?")

    if metadata.fusion is not None and metadata.fusion.status is FusionState.COMPLETE and not force:
        logger.info(f"Fusion already complete for {session_root.name}; use force to re-run")
        return metadata.fusion

    registered = metadata.registered_roles()
    if len(registered) < 2:
        only = registered[0].value if registered else "no"
        message = f"Only {only} sensor recorded; skipping unified fusion"
        logger.info(f"{message} ({session_root.name})")
        return _record(store, FusionStatus(status=FusionState.SKIPPED, completed_at=utc_now(), error=message))

    paths = {}
    for role in SensorRole:
        info = metadata.sensors[role]
        if not info.complete or not info.session_csv:
            return _fail(store, f"{role.value} session not complete (no session file recorded)")
        path = session_root / info.session_csv
        if not path.exists():
            return _fail(store, f"{role.value} session file missing: {path}")
        paths[role] = path

    output_path = session_root / UNIFIED_CSV_FILENAME
    config = config or FusionConfig()
    try:
        with time_block(f"Fusion of {session_root.name}", logger):
            result = fuse_session(
                paths[SensorRole.IN_WATER],
                paths[SensorRole.SURFACE],
                output_path,
                config,
                coarse_offset_ms=metadata.time_sync.offset_ms,
            )
    except (FusionError, MissingInputError, StorageError, OSError, ValueError) as e:
        return _fail(store, f"Fusion failed: {e}")

    store.record_drift(result.markers, result.drift_model)
    status = FusionStatus(
        status=FusionState.COMPLETE,
        unified_csv=output_path.relative_to(session_root).as_posix(),
        row_count=result.row_count,
        in_water_rows=result.in_water_rows,
        surface_rows=result.surface_rows,
        both_rows=result.both_rows,
        completed_at=utc_now(),
    )
    return _record(store, status)


def _fail(store: SyncMetadataStore, message: str) -> FusionStatus:
    logger.error(f"{message} ({store.session_root.name})")
    return _record(store, FusionStatus(status=FusionState.FAILED, completed_at=utc_now(), error=message))


def _record(store: SyncMetadataStore, status: FusionStatus) -> FusionStatus:
    store.set_fusion_status(status)
    return status
