"""Replication agent: mirrors a remote chunked session over HTTP.

The agent polls the peer's chunk catalog, downloads every chunk newer than
its cursor, verifies each against the advertised SHA-256, and only then
renames it into place and advances the persisted cursor (mirror.json).

Poll Semantics:
---------------
- Chunks are processed in index order; the first failure (network error or
  hash mismatch) ends the poll, so the cursor never passes a chunk that was
  not accepted. That chunk is retried on the next poll.
- A catalog with nothing newer than the cursor performs no writes.
- Transport failures and local write failures are logged and retried on the
  next cycle; none of them stop the schedule. The in-memory cursor moves
  only after mirror.json is written.

Stop Semantics:
---------------
The schedule is signalled to stop; a poll already in progress runs to
completion. After ``stop_grace_s`` one final poll picks up the peer's last
chunk, then the mirrored chunks go through the same combine/verify/cleanup
sequence as a local recording.

Example:
    >>> agent = ReplicationAgent(settings.mirror)
    >>> await agent.start(session_id, "http://vehicle.local:9150", session_root=root, mission="m1")
    >>> summary = await agent.stop(session_id)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from seasync.config import MirrorConfig
from seasync.domain import ChunkMetadata, MirrorProgress, SensorRole, SessionManifest, SessionSummary
from seasync.exceptions import IntegrityError, SessionNotFoundError, SessionStateError, StorageError, TransportError
from seasync.metadata import SyncMetadataStore, sensor_directory_name
from seasync.mirror.client import CatalogEntry, RemotePeerClient
from seasync.mirror.progress import load_mirror_state, record_mirrored_chunk
from seasync.store import CompletionHook, count_data_rows, finalize_session_directory, write_manifest
from seasync.utils import TMP_SUFFIX, file_hash, utc_now

logger = logging.getLogger(__name__)

__all__ = ["ReplicationAgent", "MirrorStats"]


class MirrorStats(BaseModel):
    """Live counters for one mirror run."""

    model_config = {"frozen": True, "extra": "forbid"}

    session_id: str
    root_path: Path
    running: bool
    last_chunk_index: int
    bytes_mirrored: int
    last_sync_time: Optional[datetime] = None
    polls: int = 0
    last_error: Optional[str] = None


@dataclass
class _MirrorSession:
    session_id: str
    mission: str
    session_root: Path
    root_path: Path
    cadence_s: float
    client: RemotePeerClient
    manifest: SessionManifest
    progress: MirrorProgress
    stop_event: asyncio.Event
    lock: asyncio.Lock
    task: Optional[asyncio.Task] = None
    polls: int = 0
    last_error: Optional[str] = None
    stopping: bool = False


class ReplicationAgent:
    """Mirrors remote sensor sessions into local session roots.

    Args:
        config: Cadence, timeout and grace settings
        transport: Optional httpx transport shared by all peer clients
        on_complete: Awaited with the session root when this agent's stop
            completes the last registered sensor of a session pair
    """

    def __init__(
        self,
        config: MirrorConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_complete: Optional[CompletionHook] = None,
    ):
        self.config = config
        self.transport = transport
        self.on_complete = on_complete
        self._sessions: Dict[str, _MirrorSession] = {}

    async def start(
        self,
        session_id: str,
        remote_base_url: str,
        *,
        session_root: Path,
        mission: str,
        cadence_s: Optional[float] = None,
        full_bandwidth: bool = False,
        unified_timestamp: Optional[str] = None,
    ) -> Path:
        """Create or resume the mirrored directory, poll once, then schedule polling.

        Returns:
            The mirrored sensor directory
        """
        if session_id in self._sessions:
            raise SessionStateError(f"Mirror for {session_id} is already running")

        session_root = Path(session_root)
        directory = sensor_directory_name(SensorRole.IN_WATER, session_id)
        root_path = session_root / directory

        metadata = SyncMetadataStore(session_root)
        metadata.ensure(mission, unified_timestamp or session_root.name.removeprefix("session_"))
        existing = metadata.read().sensor(SensorRole.IN_WATER)
        if existing is None or existing.started_at is None:
            metadata.update_sensor(SensorRole.IN_WATER, session_id=session_id, directory=directory, started_at=utc_now())

        manifest, progress = load_mirror_state(root_path, session_id, mission)

        if full_bandwidth:
            cadence = self.config.full_bandwidth_cadence_s
        else:
            cadence = cadence_s if cadence_s is not None else self.config.cadence_s

        session = _MirrorSession(
            session_id=session_id,
            mission=mission,
            session_root=session_root,
            root_path=root_path,
            cadence_s=cadence,
            client=RemotePeerClient(remote_base_url, self.config, transport=self.transport),
            manifest=manifest,
            progress=progress,
            stop_event=asyncio.Event(),
            lock=asyncio.Lock(),
        )
        self._sessions[session_id] = session

        logger.info(f"Mirroring {session_id} from {remote_base_url} into {root_path} every {cadence}s")
        await self.poll(session_id)
        session.task = asyncio.create_task(self._poll_loop(session), name=f"mirror-{session_id}")
        return root_path

    async def poll(self, session_id: str) -> int:
        """Mirror every new chunk in the remote catalog.

        Returns:
            Number of chunks accepted in this poll
        """
        session = self._get(session_id)
        async with session.lock:
            session.polls += 1
            try:
                entries = await session.client.catalog(session_id)
            except TransportError as e:
                session.last_error = e.message
                logger.warning(f"Catalog request for {session_id} failed: {e.message}; retrying next cycle")
                return 0

            new_entries = [entry for entry in entries if entry.index > session.progress.last_chunk_index]
            if not new_entries:
                logger.debug(f"No new chunks for {session_id} (have up to {session.progress.last_chunk_index})")
                return 0

            logger.info(f"Found {len(new_entries)} new chunks for {session_id}")
            accepted = 0
            for entry in new_entries:
                try:
                    chunk = await self._download(session, entry)
                    session.manifest, session.progress = record_mirrored_chunk(
                        session.root_path, session.manifest, session.progress, chunk
                    )
                except (TransportError, IntegrityError) as e:
                    session.last_error = e.message
                    logger.warning(f"Chunk {entry.name} of {session_id} not mirrored: {e.message}")
                    break
                except (OSError, StorageError) as e:
                    session.last_error = str(e)
                    logger.error(f"Writing chunk {entry.name} of {session_id} failed: {e}")
                    break

                accepted += 1
                logger.info(
                    f"Mirrored {entry.name} ({chunk.size_bytes} bytes, {chunk.rows} rows); "
                    f"total {session.progress.bytes_mirrored} bytes"
                )

            if accepted:
                session.last_error = None
            return accepted

    async def stop(self, session_id: str) -> SessionSummary:
        """Stop polling, run one final poll, and finalize the mirrored session."""
        session = self._get(session_id)
        if session.stopping:
            raise SessionStateError(f"Mirror for {session_id} is already stopping")
        session.stopping = True

        session.stop_event.set()
        if session.task is not None:
            await session.task
            session.task = None

        if self.config.stop_grace_s > 0:
            await asyncio.sleep(self.config.stop_grace_s)

        await self.poll(session_id)
        await session.client.aclose()

        stopped_at = utc_now()
        session.manifest.stopped_at = stopped_at
        write_manifest(session.root_path, session.manifest)

        summary = finalize_session_directory(session.root_path)
        del self._sessions[session_id]

        logger.info(
            f"Stopped mirror {session_id}: {summary.chunk_count} chunks, {summary.total_rows} rows "
            f"(verified={summary.verified})"
        )

        ready = SyncMetadataStore(session.session_root).complete_sensor(
            SensorRole.IN_WATER,
            stopped_at=stopped_at,
            session_csv=summary.session_csv.relative_to(session.session_root).as_posix(),
            bytes_mirrored=session.progress.bytes_mirrored,
            row_count=summary.total_rows,
            verified=summary.verified,
        )
        if ready and self.on_complete is not None:
            await self.on_complete(session.session_root)

        return summary

    def get_stats(self, session_id: str) -> MirrorStats:
        session = self._get(session_id)
        return MirrorStats(
            session_id=session.session_id,
            root_path=session.root_path,
            running=session.task is not None and not session.task.done(),
            last_chunk_index=session.progress.last_chunk_index,
            bytes_mirrored=session.progress.bytes_mirrored,
            last_sync_time=session.progress.last_sync_time,
            polls=session.polls,
            last_error=session.last_error,
        )

    @property
    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    async def _poll_loop(self, session: _MirrorSession) -> None:
        while not session.stop_event.is_set():
            try:
                await asyncio.wait_for(session.stop_event.wait(), timeout=session.cadence_s)
            except asyncio.TimeoutError:
                try:
                    await self.poll(session.session_id)
                except Exception as e:
                    session.last_error = str(e)
                    logger.exception(f"Poll of {session.session_id} failed; retrying next cycle")

    async def _download(self, session: _MirrorSession, entry: CatalogEntry) -> ChunkMetadata:
        """Fetch one chunk to a temp file, verify it, and rename it into place.

        Raises:
            TransportError: Download failed
            IntegrityError: Content hash differs from the catalog
        """
        if Path(entry.name).name != entry.name:
            raise TransportError(f"Refusing chunk name with path components: {entry.name!r}")

        data = await session.client.fetch_chunk(session.session_id, entry.name)

        final_path = session.root_path / entry.name
        tmp_path = session.root_path / (entry.name + TMP_SUFFIX)
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        actual = file_hash(tmp_path)
        if actual != entry.sha256:
            tmp_path.unlink(missing_ok=True)
            raise IntegrityError(
                f"SHA-256 mismatch for {entry.name}: expected {entry.sha256[:8]}..., got {actual[:8]}...",
                context={"chunk": entry.name, "expected": entry.sha256, "actual": actual},
            )

        os.replace(tmp_path, final_path)
        return ChunkMetadata(
            index=entry.index,
            name=entry.name,
            rows=count_data_rows(final_path),
            sha256=actual,
            size_bytes=len(data),
            timestamp=utc_now(),
        )

    def _get(self, session_id: str) -> _MirrorSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"No active mirror session {session_id}") from None
