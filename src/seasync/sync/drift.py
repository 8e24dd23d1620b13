"""Clock drift estimation between the in-water (remote) and surface (local) sensors.

Offsets follow one convention everywhere: ``offset = remote_time - local_time``
in milliseconds. Correcting a remote timestamp subtracts the offset.

Decision Order (first applicable wins):
--------------------------------------
1. START and STOP known on both sensors -> start/end offsets.
   ``|end - start| < threshold`` (2 ms noise floor) or a non-positive
   duration collapses to Constant((start + end) / 2); otherwise
   Linear(rate = (end - start) / local duration).
2. An endpoint recorded on only one sensor is synthesized for the other
   from the coarse offset (quality "synthetic"), then as (1).
3. START known on both sensors -> Constant(start offset); otherwise a
   coarse offset -> Constant(coarse offset).
4. Nothing available -> None; fusion uses raw timestamps.

Example:
    >>> estimate = estimate_drift(remote_markers, local_markers, coarse_offset_ms=12.5)
    >>> corrected_ms = correct(remote_ms, estimate.model)
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel

from seasync.domain import ConstantDrift, DriftModel, LinearDrift, MarkerQuality, MarkerType, SyncMarker
from seasync.sync.markers import MarkerObservation, SensorMarkers, marker_sync_ids
from seasync.utils import from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_DRIFT_THRESHOLD_MS", "DriftEstimate", "estimate_drift", "estimate_drift_model", "correct", "correct_datetime"]

DEFAULT_DRIFT_THRESHOLD_MS = 2.0


class DriftEstimate(BaseModel):
    """Chosen drift model plus the paired marker records it was derived from."""

    model_config = {"frozen": True, "extra": "forbid"}

    model: Optional[DriftModel] = None
    markers: List[SyncMarker] = []


def _endpoint(
    marker_type: MarkerType,
    remote: Optional[MarkerObservation],
    local: Optional[MarkerObservation],
    coarse_offset_ms: Optional[float],
) -> Tuple[Optional[float], Optional[float], Optional[SyncMarker]]:
    """Resolve one marker pair to (remote_ms, local_ms, record), synthesizing a missing side."""
    if remote is None and local is None:
        return None, None, None

    remote_ms = to_epoch_ms(remote.time) if remote else None
    local_ms = to_epoch_ms(local.time) if local else None
    quality = MarkerQuality.MEASURED

    if coarse_offset_ms is not None:
        if remote_ms is None:
            remote_ms = local_ms + coarse_offset_ms
            quality = MarkerQuality.SYNTHETIC
        elif local_ms is None:
            local_ms = remote_ms - coarse_offset_ms
            quality = MarkerQuality.SYNTHETIC

    both = remote_ms is not None and local_ms is not None
    record = SyncMarker(
        sync_id=(local or remote).sync_id,
        type=marker_type,
        local_timestamp=from_epoch_ms(local_ms) if local_ms is not None else None,
        remote_timestamp=from_epoch_ms(remote_ms) if remote_ms is not None else None,
        offset_ms=remote_ms - local_ms if both else None,
        quality=quality,
    )
    return remote_ms, local_ms, record


def estimate_drift(
    remote: SensorMarkers,
    local: SensorMarkers,
    coarse_offset_ms: Optional[float] = None,
    threshold_ms: float = DEFAULT_DRIFT_THRESHOLD_MS,
) -> DriftEstimate:
    """Choose a drift model from recovered markers and an optional coarse offset.

    Args:
        remote: Markers found in the in-water stream
        local: Markers found in the surface stream
        coarse_offset_ms: Round-trip clock offset measurement (remote - local)
        threshold_ms: Drift below this over the session is treated as noise

    Returns:
        DriftEstimate with the model (None when nothing is known) and marker records
    """
    sync_ids = marker_sync_ids([remote, local])
    if len(sync_ids) > 1:
        logger.warning(f"Markers carry different sync ids {sync_ids}; pairing by type anyway")

    rs, ls, start_record = _endpoint(MarkerType.START, remote.start, local.start, coarse_offset_ms)
    re_, le, stop_record = _endpoint(MarkerType.STOP, remote.stop, local.stop, coarse_offset_ms)
    markers = [record for record in (start_record, stop_record) if record is not None]

    logger.info(f"Markers: in-water={remote.describe()} surface={local.describe()} coarse_offset={coarse_offset_ms}")

    model: Optional[DriftModel] = None
    if None not in (rs, ls, re_, le):
        start_offset = rs - ls
        end_offset = re_ - le
        duration = le - ls
        if abs(end_offset - start_offset) < threshold_ms or duration <= 0:
            model = ConstantDrift(offset_ms=(start_offset + end_offset) / 2.0)
        else:
            model = LinearDrift(
                start_offset_ms=start_offset,
                end_offset_ms=end_offset,
                drift_rate_per_ms=(end_offset - start_offset) / duration,
                reference_time_ms=rs,
            )
    elif rs is not None and ls is not None:
        model = ConstantDrift(offset_ms=rs - ls)
    elif coarse_offset_ms is not None:
        model = ConstantDrift(offset_ms=coarse_offset_ms)

    _log_model(model)
    return DriftEstimate(model=model, markers=markers)


def estimate_drift_model(
    remote: SensorMarkers,
    local: SensorMarkers,
    coarse_offset_ms: Optional[float] = None,
    threshold_ms: float = DEFAULT_DRIFT_THRESHOLD_MS,
) -> Optional[DriftModel]:
    """Shortcut for :func:`estimate_drift` returning only the model."""
    return estimate_drift(remote, local, coarse_offset_ms, threshold_ms).model


def correct(time_ms: float, model: Optional[DriftModel]) -> float:
    """Map a remote epoch-ms timestamp into the local clock frame."""
    if model is None:
        return time_ms
    if isinstance(model, ConstantDrift):
        return time_ms - model.offset_ms
    offset = model.start_offset_ms + model.drift_rate_per_ms * (time_ms - model.reference_time_ms)
    return time_ms - offset


def correct_datetime(time: datetime, model: Optional[DriftModel]) -> datetime:
    return from_epoch_ms(correct(to_epoch_ms(time), model))


def _log_model(model: Optional[DriftModel]) -> None:
    if model is None:
        logger.warning("No marker or clock-offset data available; in-water timestamps will not be corrected")
    elif isinstance(model, ConstantDrift):
        logger.info(f"Using constant offset model: {model.offset_ms:.1f}ms")
    else:
        logger.info(
            f"Using linear drift model: start={model.start_offset_ms:.1f}ms end={model.end_offset_ms:.1f}ms "
            f"drift={model.drift_rate_ms_per_min:.3f}ms/min"
        )
