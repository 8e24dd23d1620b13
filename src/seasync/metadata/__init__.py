"""Shared sync metadata for a recording session pair.

One ``sync_metadata.json`` lives in each unified session root::

    {storage}/{mission}/session_{unified_timestamp}/
    ├── sync_metadata.json
    ├── surface_{session_id}/
    │   ├── manifest.json
    │   └── session.csv
    └── in-water_{session_id}/
        ├── manifest.json
        ├── mirror.json
        └── session.csv

Every mutation is a read-modify-write of the whole document followed by an
atomic rename: read the latest on-disk copy, apply one mutation, stamp
``updated_at``, write back. Cached copies are never reused across mutations.
Callers run in one event loop and there is a single writer per session root.

Completion check:
-----------------
``complete_sensor`` marks one sensor complete and, within the same
read-modify-write, reports whether every registered sensor is now complete.
Whichever component observes ``True`` runs fusion.
"""

from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from seasync.domain import (
    DriftModel,
    FusionStatus,
    SensorInfo,
    SensorRole,
    SyncMarker,
    SyncMetadata,
    TimeSyncResult,
)
from seasync.exceptions import MissingInputError, StorageError
from seasync.utils import read_json, utc_now, write_json

logger = logging.getLogger(__name__)

__all__ = [
    "SYNC_METADATA_FILENAME",
    "build_session_root",
    "sensor_directory_name",
    "format_session_timestamp",
    "SyncMetadataStore",
]

SYNC_METADATA_FILENAME = "sync_metadata.json"


def format_session_timestamp(dt: Optional[datetime] = None) -> str:
    """Filesystem-safe UTC timestamp used in session directory names.

    Example:
        >>> format_session_timestamp(datetime(2025, 11, 18, 12, 0, 1, 123000, tzinfo=timezone.utc))
        '2025-11-18T12-00-01-123Z'
    """
    dt = dt or utc_now()
    return dt.strftime("%Y-%m-%dT%H-%M-%S-") + f"{dt.microsecond // 1000:03d}Z"


def build_session_root(storage_root: Path, mission: str, unified_timestamp: str) -> Path:
    return Path(storage_root) / mission / f"session_{unified_timestamp}"


def sensor_directory_name(role: SensorRole, session_id: str) -> str:
    """Directory name of one sensor inside a session root (surface_x / in-water_x)."""
    return f"{role.directory_prefix}_{session_id}"


class SyncMetadataStore:
    """Read-modify-write access to one session root's sync_metadata.json.

    Args:
        session_root: Unified session root directory

    Example:
        >>> store = SyncMetadataStore(root)
        >>> store.ensure("mission-a", "2025-11-18T12-00-01-123Z")
        >>> store.update_sensor(SensorRole.SURFACE, session_id="abc", started_at=utc_now())
        >>> store.complete_sensor(SensorRole.SURFACE, session_csv="surface_abc/session.csv")
        True
    """

    def __init__(self, session_root: Path | str):
        self.session_root = Path(session_root)

    @property
    def path(self) -> Path:
        return self.session_root / SYNC_METADATA_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def ensure(self, mission: str, unified_timestamp: str) -> SyncMetadata:
        """Return the existing document or create a fresh one."""
        existing = self.read()
        if existing is not None:
            return existing

        self.session_root.mkdir(parents=True, exist_ok=True)
        metadata = SyncMetadata(mission=mission, unified_session_timestamp=unified_timestamp)
        self._write(metadata)
        logger.info(f"Initialized {SYNC_METADATA_FILENAME} in {self.session_root}")
        return metadata

    def read(self) -> Optional[SyncMetadata]:
        """Latest on-disk document, or None if not initialized.

        Raises:
            StorageError: If the document exists but is invalid
        """
        if not self.path.exists():
            return None
        try:
            return SyncMetadata.model_validate(read_json(self.path))
        except (ValueError, ValidationError) as e:
            raise StorageError(f"Invalid sync metadata {self.path}: {e}", context={"path": str(self.path)}) from e

    def update(self, mutator: Callable[[SyncMetadata], Any]) -> SyncMetadata:
        """Apply one mutation to the latest document and write it back.

        Raises:
            MissingInputError: If the document was never initialized
        """
        metadata = self.read()
        if metadata is None:
            raise MissingInputError(
                f"{SYNC_METADATA_FILENAME} not initialized for {self.session_root}",
                hint="Call ensure() when the session pair starts",
            )
        mutator(metadata)
        metadata.updated_at = utc_now()
        self._write(metadata)
        return metadata

    def update_sensor(self, role: SensorRole, **updates: Any) -> SyncMetadata:
        """Merge field updates into one sensor's record (created if absent)."""

        def apply(metadata: SyncMetadata) -> None:
            current = metadata.sensors.get(role) or SensorInfo()
            merged = SensorInfo.model_validate({**current.model_dump(), **updates})
            metadata.sensors = {**metadata.sensors, role: merged}

        return self.update(apply)

    def complete_sensor(self, role: SensorRole, **updates: Any) -> bool:
        """Mark a sensor complete and report whether all registered sensors are.

        Returns:
            True when every registered (non-null) sensor is complete
        """
        metadata = self.update_sensor(role, complete=True, **updates)
        ready = metadata.all_registered_complete()
        logger.info(
            f"Sensor {role.value} complete in {self.session_root.name}; "
            f"registered={[r.value for r in metadata.registered_roles()]} ready={ready}"
        )
        return ready

    def record_time_sync(self, result: TimeSyncResult) -> SyncMetadata:
        """Store a coarse clock-offset probe result."""

        def apply(metadata: SyncMetadata) -> None:
            metadata.time_sync = metadata.time_sync.model_copy(
                update={
                    "method": result.method,
                    "offset_ms": result.offset_ms,
                    "uncertainty_ms": result.uncertainty_ms,
                    "measured_at": result.response_received_at,
                    "error": result.error,
                }
            )

        return self.update(apply)

    def record_drift(self, markers: List[SyncMarker], drift_model: Optional[DriftModel]) -> SyncMetadata:
        """Store paired markers and the chosen drift model."""

        def apply(metadata: SyncMetadata) -> None:
            metadata.time_sync = metadata.time_sync.model_copy(
                update={"markers": list(markers), "drift_model": drift_model}
            )

        return self.update(apply)

    def set_fusion_status(self, status: FusionStatus) -> SyncMetadata:
        return self.update(lambda metadata: setattr(metadata, "fusion", status))

    def _write(self, metadata: SyncMetadata) -> None:
        write_json(self.path, metadata.model_dump(mode="json"))
