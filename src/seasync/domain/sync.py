"""Synchronization metadata models.

One SyncMetadata document exists per recording session pair
(sync_metadata.json in the unified session root). It tracks each sensor's
lifecycle, the detected synchronization markers, the chosen drift model,
and the fusion outcome.

Model Hierarchy:
---------------
- SyncMetadata
  ├── sensors: {in_water, surface} -> SensorInfo | None
  ├── time_sync: TimeSyncInfo
  │   ├── markers: SyncMarker (list)
  │   └── drift_model: ConstantDrift | LinearDrift | None
  └── fusion: FusionStatus | None

Offset Convention:
------------------
offset_ms = remote (in-water) clock - local (surface) clock. Correcting a
remote timestamp subtracts the offset.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from seasync.domain.reading import MarkerType, SensorRole
from seasync.utils import utc_now

__all__ = [
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
]

SYNC_METADATA_SCHEMA_VERSION = 1


class MarkerQuality(str, Enum):
    MEASURED = "measured"
    SYNTHETIC = "synthetic"


class SyncMarker(BaseModel):
    """A START or STOP marker paired across both sensors by sync_id."""

    model_config = {"frozen": True, "extra": "forbid"}

    sync_id: str
    type: MarkerType
    local_timestamp: Optional[datetime] = None
    remote_timestamp: Optional[datetime] = None
    offset_ms: Optional[float] = None
    quality: MarkerQuality = MarkerQuality.MEASURED


class ConstantDrift(BaseModel):
    """Fixed clock offset for the whole session."""

    model_config = {"frozen": True, "extra": "forbid"}

    type: Literal["constant"] = "constant"
    offset_ms: float


class LinearDrift(BaseModel):
    """Offset that changes linearly with elapsed remote time.

    Attributes:
        start_offset_ms: Offset at the START marker
        end_offset_ms: Offset at the STOP marker
        drift_rate_per_ms: Offset change per elapsed millisecond
        reference_time_ms: Remote epoch-ms where start_offset_ms applies
    """

    model_config = {"frozen": True, "extra": "forbid"}

    type: Literal["linear"] = "linear"
    start_offset_ms: float
    end_offset_ms: float
    drift_rate_per_ms: float
    reference_time_ms: float

    @property
    def drift_rate_ms_per_min(self) -> float:
        return self.drift_rate_per_ms * 60_000.0


DriftModel = Annotated[Union[ConstantDrift, LinearDrift], Field(discriminator="type")]


class TimeSyncResult(BaseModel):
    """Result of one coarse clock-offset probe against the remote peer."""

    model_config = {"frozen": True, "extra": "forbid"}

    method: str
    offset_ms: Optional[float] = None
    uncertainty_ms: Optional[float] = None
    request_started_at: datetime
    remote_response_time: Optional[str] = None
    response_received_at: datetime
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.offset_ms is not None and self.error is None


class TimeSyncInfo(BaseModel):
    """Clock synchronization state stored in sync metadata."""

    model_config = {"extra": "forbid", "validate_assignment": True}

    method: Optional[str] = None
    offset_ms: Optional[float] = None
    uncertainty_ms: Optional[float] = None
    measured_at: Optional[datetime] = None
    error: Optional[str] = None
    markers: List[SyncMarker] = Field(default_factory=list)
    drift_model: Optional[DriftModel] = None


class SensorInfo(BaseModel):
    """Lifecycle record of one sensor's recording within a session pair."""

    model_config = {"extra": "forbid", "validate_assignment": True}

    session_id: Optional[str] = None
    directory: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    session_csv: Optional[str] = None
    bytes_recorded: Optional[int] = None
    bytes_mirrored: Optional[int] = None
    row_count: Optional[int] = None
    verified: Optional[bool] = None
    complete: bool = False


class FusionState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    FAILED = "failed"


class FusionStatus(BaseModel):
    """Terminal (or pending) fusion outcome."""

    model_config = {"frozen": True, "extra": "forbid"}

    status: FusionState
    unified_csv: Optional[str] = None
    row_count: Optional[int] = None
    in_water_rows: Optional[int] = None
    surface_rows: Optional[int] = None
    both_rows: Optional[int] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class SyncMetadata(BaseModel):
    """Shared document for one recording session pair (sync_metadata.json)."""

    model_config = {"extra": "forbid", "validate_assignment": True}

    schema_version: int = SYNC_METADATA_SCHEMA_VERSION
    mission: str
    unified_session_timestamp: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    sensors: Dict[SensorRole, Optional[SensorInfo]] = Field(
        default_factory=lambda: {SensorRole.IN_WATER: None, SensorRole.SURFACE: None}
    )
    time_sync: TimeSyncInfo = Field(default_factory=TimeSyncInfo)
    fusion: Optional[FusionStatus] = None

    def sensor(self, role: SensorRole) -> Optional[SensorInfo]:
        return self.sensors.get(role)

    def registered_roles(self) -> List[SensorRole]:
        """Sensors that have started recording in this session pair."""
        return [role for role in SensorRole if self.sensors.get(role) is not None]

    def all_registered_complete(self) -> bool:
        """True when at least one sensor is registered and all registered sensors are complete."""
        roles = self.registered_roles()
        return bool(roles) and all(self.sensors[role].complete for role in roles)

    def both_sensors_complete(self) -> bool:
        return all(
            self.sensors.get(role) is not None and self.sensors[role].complete and self.sensors[role].session_csv
            for role in SensorRole
        )
