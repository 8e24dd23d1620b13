"""Session orchestration for seasync.

Owns Settings and coordinates one recording session pair: the local
surface recording, the mirrored in-water recording, the coarse clock probe,
the sync markers, and the fusion trigger.

Architecture:
-------------
- **Orchestration layer** (this module): owns Settings, wires components
- **Components**: ChunkedSessionStore, ReplicationAgent, SyncMarkerCoordinator
- **Low-level tools**: fusion.run_fusion, sync.measure_clock_offset

Both the store and the agent receive the same completion hook. Whichever
stops last observes every registered sensor complete in sync_metadata.json
and runs fusion exactly once.

Example:
--------
>>> controller = SessionController(load_settings("seasync.toml"))
>>> root = await controller.start(
...     mission="dive-07",
...     surface_sensor_id="SN20001",
...     remote_base_url="http://vehicle.local:9150",
...     remote_session_id="a1b2c3",
... )
>>> controller.add_reading(reading)
>>> status = await controller.stop()
>>> status.status
<FusionState.COMPLETE: 'complete'>
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional

import httpx

from seasync.config import FusionConfig, Settings
from seasync.domain import FusionStatus, Reading, SensorRole
from seasync.exceptions import SessionStateError
from seasync.fusion import run_fusion
from seasync.metadata import SyncMetadataStore, build_session_root, format_session_timestamp
from seasync.mirror import RemotePeerClient, ReplicationAgent
from seasync.store import CompletionHook, ChunkedSessionStore, RecordingHandle
from seasync.sync import SyncMarkerCoordinator, measure_clock_offset

logger = logging.getLogger(__name__)

__all__ = ["SessionController", "make_fusion_hook"]


def make_fusion_hook(config: Optional[FusionConfig] = None) -> CompletionHook:
    """Completion hook that fuses a session root once both sensors are complete."""

    async def fuse(session_root: Path) -> FusionStatus:
        logger.info(f"All sensors complete for {session_root.name}; running fusion")
        return run_fusion(session_root, config)

    return fuse


@dataclass
class _ActivePair:
    session_root: Path
    handle: RecordingHandle
    coordinator: SyncMarkerCoordinator
    client: Optional[RemotePeerClient]
    remote_session_id: Optional[str]


class SessionController:
    """Runs one surface + in-water session pair at a time.

    Args:
        settings: Complete seasync settings
        transport: Optional httpx transport for all peer requests
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport
        self.fusion_status: Optional[FusionStatus] = None

        hook = self._on_complete
        self.store = ChunkedSessionStore(settings.recorder, settings.storage.root, on_complete=hook)
        self.agent = ReplicationAgent(settings.mirror, transport=transport, on_complete=hook)
        self._active: Optional[_ActivePair] = None

    @property
    def session_root(self) -> Optional[Path]:
        return self._active.session_root if self._active else None

    async def start(
        self,
        *,
        mission: str,
        surface_sensor_id: str,
        remote_base_url: Optional[str] = None,
        remote_session_id: Optional[str] = None,
        unified_timestamp: Optional[str] = None,
        full_bandwidth: bool = False,
        sync_id: Optional[str] = None,
    ) -> Path:
        """Prepare the session root and start recording (and mirroring).

        Without a remote peer only the surface sensor records and fusion is
        recorded as skipped at stop.

        Returns:
            The unified session root
        """
        if self._active is not None:
            raise SessionStateError(f"A session is already running in {self._active.session_root}")

        timestamp = unified_timestamp or format_session_timestamp()
        session_root = build_session_root(self.settings.storage.root, mission, timestamp)
        metadata = SyncMetadataStore(session_root)
        metadata.ensure(mission, timestamp)

        mirrored = remote_base_url is not None and remote_session_id is not None
        client = None
        if mirrored:
            client = RemotePeerClient(remote_base_url, self.settings.mirror, transport=self.transport)
            metadata.record_time_sync(await measure_clock_offset(client, self.settings.time_sync))

        coordinator = SyncMarkerCoordinator(self.store, client)
        handle = await coordinator.start(
            surface_sensor_id,
            mission,
            remote_session_id=remote_session_id if mirrored else None,
            sync_id=sync_id,
            session_root=session_root,
            role=SensorRole.SURFACE,
            unified_timestamp=timestamp,
        )

        if mirrored:
            await self.agent.start(
                remote_session_id,
                remote_base_url,
                session_root=session_root,
                mission=mission,
                full_bandwidth=full_bandwidth,
                unified_timestamp=timestamp,
            )

        self._active = _ActivePair(session_root, handle, coordinator, client, remote_session_id if mirrored else None)
        self.fusion_status = None
        logger.info(f"Session pair started in {session_root} (mirrored={mirrored})")
        return session_root

    def add_reading(self, reading: Reading) -> None:
        if self._active is None:
            raise SessionStateError("No session is running")
        self.store.add_reading(self._active.handle.session_id, reading)

    async def stop(self) -> Optional[FusionStatus]:
        """Stop the local recording, then the mirror; return the final fusion status."""
        if self._active is None:
            raise SessionStateError("No session is running")
        active = self._active

        try:
            await active.coordinator.stop(active.handle, active.remote_session_id)
            if active.remote_session_id is not None:
                await self.agent.stop(active.remote_session_id)
        finally:
            if active.client is not None:
                await active.client.aclose()
            self._active = None

        metadata = SyncMetadataStore(active.session_root).read()
        status = metadata.fusion if metadata is not None else None
        logger.info(f"Session pair stopped: fusion={status.status.value if status else 'pending'}")
        return status

    async def _on_complete(self, session_root: Path) -> None:
        self.fusion_status = await make_fusion_hook(self.settings.fusion)(session_root)
