"""Synchronization markers.

A marker is a reading with mode SYNC_START or SYNC_STOP carrying a shared
correlation id (sync_id) in its value column. Both sensors record one
marker of each type so fusion can measure the clock offset between them at
the start and at the end of a session.

Markers improve fusion quality but recording never depends on them: a
failed remote marker request is logged and recording continues.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Iterable, List, Optional
import uuid

from pydantic import BaseModel

from seasync.domain import MarkerType, Reading, SessionSummary
from seasync.exceptions import TransportError
from seasync.mirror.client import RemotePeerClient
from seasync.store.recorder import ChunkedSessionStore, RecordingHandle

logger = logging.getLogger(__name__)

__all__ = ["MarkerObservation", "SensorMarkers", "extract_markers", "marker_sync_ids", "new_sync_id", "SyncMarkerCoordinator"]


class MarkerObservation(BaseModel):
    """A marker as recorded in one sensor's stream."""

    model_config = {"frozen": True, "extra": "forbid"}

    sync_id: str
    type: MarkerType
    time: datetime


class SensorMarkers(BaseModel):
    """START/STOP markers found in one sensor's stream (first of each kind)."""

    model_config = {"frozen": True, "extra": "forbid"}

    start: Optional[MarkerObservation] = None
    stop: Optional[MarkerObservation] = None

    def with_marker(self, observation: MarkerObservation) -> "SensorMarkers":
        """Return a copy including ``observation`` unless one of its kind is already set."""
        if observation.type is MarkerType.START and self.start is None:
            return self.model_copy(update={"start": observation})
        if observation.type is MarkerType.STOP and self.stop is None:
            return self.model_copy(update={"stop": observation})
        return self

    def describe(self) -> str:
        kinds = [kind for kind, marker in (("START", self.start), ("STOP", self.stop)) if marker is not None]
        return "+".join(kinds) if kinds else "none"


def extract_markers(readings: Iterable[Reading]) -> SensorMarkers:
    """Collect the first START and first STOP marker from a reading stream."""
    markers = SensorMarkers()
    for reading in readings:
        if not reading.is_marker:
            continue
        marker_type = MarkerType.START if reading.mode == MarkerType.START.mode else MarkerType.STOP
        markers = markers.with_marker(MarkerObservation(sync_id=reading.sync_id, type=marker_type, time=reading.time))
    return markers


def new_sync_id() -> str:
    return uuid.uuid4().hex


class SyncMarkerCoordinator:
    """Stamps paired START/STOP markers into the local and remote streams.

    Locally the marker is the first (START) or last (STOP) buffered reading
    of the recording. Remotely it is a best-effort POST to the peer.

    Args:
        store: Local recorder
        client: Remote peer client (None when recording the local sensor only)
    """

    def __init__(self, store: ChunkedSessionStore, client: Optional[RemotePeerClient] = None):
        self.store = store
        self.client = client

    async def start(
        self,
        sensor_id: str,
        mission: str,
        *,
        remote_session_id: Optional[str] = None,
        sync_id: Optional[str] = None,
        **start_kwargs,
    ) -> RecordingHandle:
        """Start the local recording with a START marker and notify the peer."""
        sync_id = sync_id or new_sync_id()
        handle = await self.store.start_session(sensor_id, mission, sync_id=sync_id, **start_kwargs)
        if remote_session_id is not None:
            await self.notify_remote(remote_session_id, sync_id, MarkerType.START)
        logger.info(f"Sync START {sync_id} stamped for local session {handle.session_id}")
        return handle

    async def stop(self, handle: RecordingHandle, remote_session_id: Optional[str] = None) -> SessionSummary:
        """Notify the peer of STOP, then stop the local recording (which records STOP)."""
        if remote_session_id is not None and handle.sync_id:
            await self.notify_remote(remote_session_id, handle.sync_id, MarkerType.STOP)
        return await self.store.stop_session(handle.session_id)

    async def notify_remote(self, session_id: str, sync_id: str, marker_type: MarkerType) -> bool:
        """POST a marker to the peer. Failures are logged, never raised.

        Returns:
            True if the peer accepted the marker
        """
        if self.client is None:
            logger.debug(f"No remote peer configured; {marker_type.value} marker {sync_id} recorded locally only")
            return False
        try:
            await self.client.post_marker(session_id, sync_id, marker_type)
        except TransportError as e:
            logger.warning(f"Remote {marker_type.value} marker {sync_id} for {session_id} not delivered: {e.message}")
            return False
        logger.debug(f"Remote {marker_type.value} marker {sync_id} delivered for {session_id}")
        return True


def marker_sync_ids(markers: Iterable[SensorMarkers]) -> List[str]:
    """Distinct sync ids seen across sensors, in first-seen order."""
    seen: List[str] = []
    for sensor in markers:
        for marker in (sensor.start, sensor.stop):
            if marker is not None and marker.sync_id not in seen:
                seen.append(marker.sync_id)
    return seen
