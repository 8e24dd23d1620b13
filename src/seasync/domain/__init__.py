"""Domain models for seasync.

Pydantic models for readings, chunk manifests, mirror progress, sync
metadata and fusion output. All are re-exported here.

Package Structure:
-----------------
- reading: Reading, SensorRole, MarkerType, CSV schema constants
- manifest: ChunkMetadata, SessionManifest, MirrorProgress, SessionSummary
- sync: SyncMarker, drift models, SensorInfo, TimeSyncInfo, FusionStatus, SyncMetadata
- fusion: WideRow, FusionResult, unified CSV schema constants

Import Patterns:
---------------
from seasync.domain.reading import Reading
from seasync.domain import Reading, SessionManifest, SyncMetadata
"""

from seasync.domain.fusion import SENSOR_FIELDS, WIDE_COLUMNS, WIDE_HEADER, FusionResult, SensorValues, WideRow
from seasync.domain.manifest import MANIFEST_SCHEMA_VERSION, ChunkMetadata, MirrorProgress, SessionManifest, SessionSummary
from seasync.domain.reading import CSV_COLUMNS, CSV_HEADER, SYNC_START_MODE, SYNC_STOP_MODE, MarkerType, Reading, SensorRole
from seasync.domain.sync import (
    SYNC_METADATA_SCHEMA_VERSION,
    ConstantDrift,
    DriftModel,
    FusionState,
    FusionStatus,
    LinearDrift,
    MarkerQuality,
    SensorInfo,
    SyncMarker,
    SyncMetadata,
    TimeSyncInfo,
    TimeSyncResult,
)

__all__ = [
    # Reading
    "CSV_COLUMNS",
    "CSV_HEADER",
    "SYNC_START_MODE",
    "SYNC_STOP_MODE",
    "MarkerType",
    "SensorRole",
    "Reading",
    # Manifest
    "MANIFEST_SCHEMA_VERSION",
    "ChunkMetadata",
    "SessionManifest",
    "MirrorProgress",
    "SessionSummary",
    # Sync
    "SYNC_METADATA_SCHEMA_VERSION",
    "MarkerQuality",
    "SyncMarker",
    "ConstantDrift",
    "LinearDrift",
    "DriftModel",
    "TimeSyncResult",
    "TimeSyncInfo",
    "SensorInfo",
    "FusionState",
    "FusionStatus",
    "SyncMetadata",
    # Fusion
    "SENSOR_FIELDS",
    "WIDE_COLUMNS",
    "WIDE_HEADER",
    "SensorValues",
    "WideRow",
    "FusionResult",
]
