"""Clock synchronization: markers, drift estimation and coarse offset probe.

Example:
    >>> from seasync.sync import estimate_drift, correct, measure_clock_offset
"""

from seasync.sync.drift import DEFAULT_DRIFT_THRESHOLD_MS, DriftEstimate, correct, correct_datetime, estimate_drift, estimate_drift_model
from seasync.sync.markers import MarkerObservation, SensorMarkers, SyncMarkerCoordinator, extract_markers, marker_sync_ids, new_sync_id
from seasync.sync.timesync import SYNCED_METHOD, UNSYNCED_METHOD, measure_clock_offset

__all__ = [
    # Markers
    "MarkerObservation",
    "SensorMarkers",
    "SyncMarkerCoordinator",
    "extract_markers",
    "marker_sync_ids",
    "new_sync_id",
    # Drift
    "DEFAULT_DRIFT_THRESHOLD_MS",
    "DriftEstimate",
    "estimate_drift",
    "estimate_drift_model",
    "correct",
    "correct_datetime",
    # Time probe
    "SYNCED_METHOD",
    "UNSYNCED_METHOD",
    "measure_clock_offset",
]
