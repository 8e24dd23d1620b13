"""Local chunked session recorder.

Buffers readings in memory and periodically appends them to a rolling chunk
file. Each rolled chunk is finalized (renamed, hashed, counted and appended
to the manifest) and never modified again. At stop the chunks are combined
into session.csv, verified, and removed.

Schedules (per session):
------------------------
- Flush task: every ``flush_interval_ms`` append the buffer to
  ``chunk_NNNNN.csv.tmp`` (header first when the file is new)
- Roll check: on each flush, finalize the chunk when ``roll_interval_s``
  elapsed or the row/size ceiling is reached
- Overflow: a buffer larger than ``max_buffer_size`` flushes immediately

Write failures keep the data: a failed append is truncated back and the
buffer retried, and a chunk renamed but not yet in the manifest stays
pending and is registered on the next cycle. A failed cycle never ends the
flush task.

Stop is cancel-then-drain: the flush task is cancelled first, then one final
flush and finalize run before the combine, so no flush can race the combine.

Example:
    >>> store = ChunkedSessionStore(settings.recorder, settings.storage.root)
    >>> handle = await store.start_session("SN12345", "mission-a")
    >>> store.add_reading(handle.session_id, reading)
    >>> summary = await store.stop_session(handle.session_id)
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
import logging
import os
from pathlib import Path
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
import uuid

from pydantic import BaseModel

from seasync.config import RecorderConfig
from seasync.domain import CSV_HEADER, ChunkMetadata, MarkerType, Reading, SensorRole, SessionManifest, SessionSummary
from seasync.exceptions import ChunkWriteError, SeaSyncError, SessionNotFoundError, SessionStateError
from seasync.metadata import SyncMetadataStore, build_session_root, sensor_directory_name
from seasync.store.chunks import chunk_name, count_data_rows, finalize_session_directory, reading_to_row
from seasync.store.manifest import read_manifest, write_manifest
from seasync.utils import TMP_SUFFIX, file_hash, utc_now

logger = logging.getLogger(__name__)

__all__ = ["ChunkedSessionStore", "RecordingHandle", "RecordingStats", "CompletionHook"]

CompletionHook = Callable[[Path], Awaitable[Any]]


class RecordingHandle(BaseModel):
    """Identifies a started recording."""

    model_config = {"frozen": True, "extra": "forbid"}

    session_id: str
    root_path: Path
    session_root: Optional[Path] = None
    sync_id: Optional[str] = None


class RecordingStats(BaseModel):
    """Live counters for one recording."""

    model_config = {"frozen": True, "extra": "forbid"}

    session_id: str
    root_path: Path
    started_at: datetime
    chunk_index: int
    buffered_rows: int
    total_rows_flushed: int
    bytes_flushed: int
    pending_chunks: int = 0
    running: bool = False
    write_error: Optional[str] = None


@dataclass
class _RecordingSession:
    session_id: str
    sensor_id: str
    mission: str
    role: SensorRole
    root_path: Path
    session_root: Optional[Path]
    started_at: datetime
    sync_id: Optional[str]
    chunk_started: float
    chunk_index: int = 0
    chunk_rows: int = 0
    chunk_bytes: int = 0
    total_rows_flushed: int = 0
    bytes_flushed: int = 0
    buffer: List[Reading] = field(default_factory=list)
    pending_chunks: List[int] = field(default_factory=list)
    write_error: Optional[str] = None
    flush_task: Optional[asyncio.Task] = None
    stopping: bool = False

    @property
    def tmp_path(self) -> Path:
        return self.root_path / (chunk_name(self.chunk_index) + TMP_SUFFIX)


class ChunkedSessionStore:
    """Records local sensor sessions as rolling, integrity-checked chunks.

    Active sessions live in a table keyed by session id and owned by this
    instance.

    Args:
        config: Recorder timing and size settings
        storage_root: Base directory for recordings
        on_complete: Awaited with the session root when this store's stop
            completes the last registered sensor of a session pair
        clock: Monotonic clock (seconds) used for the roll check
    """

    def __init__(
        self,
        config: RecorderConfig,
        storage_root: Path | str,
        on_complete: Optional[CompletionHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.storage_root = Path(storage_root)
        self.on_complete = on_complete
        self._clock = clock
        self._sessions: Dict[str, _RecordingSession] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        sensor_id: str,
        mission: str,
        *,
        session_root: Optional[Path] = None,
        role: SensorRole = SensorRole.SURFACE,
        sync_id: Optional[str] = None,
        unified_timestamp: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> RecordingHandle:
        """Create the session directory and manifest and start flushing.

        With ``session_root`` (or ``unified_timestamp``) the recording lives
        under a unified session root shared with the mirrored sensor and is
        registered in its sync metadata. Otherwise it is a standalone
        ``{storage}/{mission}/surface_{id}`` directory.
        """
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._sessions:
            raise SessionStateError(f"Session {session_id} is already recording")

        if session_root is None and unified_timestamp is not None:
            session_root = build_session_root(self.storage_root, mission, unified_timestamp)

        directory = sensor_directory_name(role, session_id)
        if session_root is not None:
            session_root = Path(session_root)
            root_path = session_root / directory
        else:
            root_path = self.storage_root / mission / directory

        started_at = utc_now()
        root_path.mkdir(parents=True, exist_ok=True)
        write_manifest(
            root_path,
            SessionManifest(session_id=session_id, sensor_id=sensor_id, mission=mission, started_at=started_at),
        )

        if session_root is not None:
            metadata = SyncMetadataStore(session_root)
            metadata.ensure(mission, unified_timestamp or session_root.name.removeprefix("session_"))
            metadata.update_sensor(role, session_id=session_id, directory=directory, started_at=started_at)

        session = _RecordingSession(
            session_id=session_id,
            sensor_id=sensor_id,
            mission=mission,
            role=role,
            root_path=root_path,
            session_root=session_root,
            started_at=started_at,
            sync_id=sync_id,
            chunk_started=self._clock(),
        )
        if sync_id:
            session.buffer.append(Reading.marker(MarkerType.START, sensor_id, sync_id, started_at))

        self._sessions[session_id] = session
        session.flush_task = asyncio.create_task(self._flush_loop(session), name=f"flush-{session_id}")

        logger.info(f"Started recording {session_id} (sensor {sensor_id}) in {root_path}")
        return RecordingHandle(session_id=session_id, root_path=root_path, session_root=session_root, sync_id=sync_id)

    def add_reading(self, session_id: str, reading: Reading) -> None:
        """Buffer one reading; an overfull buffer is flushed immediately."""
        session = self._get(session_id)
        if session.stopping:
            raise SessionStateError(f"Session {session_id} is stopping; reading rejected")

        session.buffer.append(reading)
        if len(session.buffer) >= self.config.max_buffer_size:
            logger.debug(f"Buffer ceiling reached for {session_id}; flushing out of cycle")
            self._flush(session)

    async def stop_session(self, session_id: str) -> SessionSummary:
        """Drain, finalize, combine and verify a recording.

        Raises:
            SessionNotFoundError: Unknown session id
            ChunkWriteError: If the final flush or finalize fails
        """
        session = self._get(session_id)
        if session.stopping:
            raise SessionStateError(f"Session {session_id} is already stopping")
        session.stopping = True

        if session.flush_task is not None:
            session.flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session.flush_task
            session.flush_task = None

        if session.sync_id:
            session.buffer.append(Reading.marker(MarkerType.STOP, session.sensor_id, session.sync_id, utc_now()))

        self._flush(session, raise_errors=True, roll=False)
        self._finalize_chunk(session, raise_errors=True)

        stopped_at = utc_now()
        manifest = read_manifest(session.root_path)
        manifest.stopped_at = stopped_at
        write_manifest(session.root_path, manifest)

        summary = finalize_session_directory(session.root_path)
        del self._sessions[session_id]

        logger.info(
            f"Stopped recording {session_id}: {summary.total_rows} rows in {summary.chunk_count} chunks "
            f"(verified={summary.verified})"
        )

        if session.session_root is not None:
            ready = SyncMetadataStore(session.session_root).complete_sensor(
                session.role,
                stopped_at=stopped_at,
                session_csv=summary.session_csv.relative_to(session.session_root).as_posix(),
                bytes_recorded=summary.total_bytes,
                row_count=summary.total_rows,
                verified=summary.verified,
            )
            if ready and self.on_complete is not None:
                await self.on_complete(session.session_root)

        return summary

    def get_stats(self, session_id: str) -> RecordingStats:
        session = self._get(session_id)
        return RecordingStats(
            session_id=session.session_id,
            root_path=session.root_path,
            started_at=session.started_at,
            chunk_index=session.chunk_index,
            buffered_rows=len(session.buffer),
            total_rows_flushed=session.total_rows_flushed,
            bytes_flushed=session.bytes_flushed,
            pending_chunks=len(session.pending_chunks),
            running=session.flush_task is not None and not session.flush_task.done(),
            write_error=session.write_error,
        )

    @property
    def active_sessions(self) -> List[str]:
        return list(self._sessions)

    # ------------------------------------------------------------------
    # Flush / roll / finalize
    # ------------------------------------------------------------------

    async def _flush_loop(self, session: _RecordingSession) -> None:
        interval = self.config.flush_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            try:
                self._flush(session)
            except Exception as e:
                session.write_error = f"Flush cycle failed: {e}"
                logger.exception(f"Flush cycle failed for {session.session_id}; retrying next cycle")

    def _flush(self, session: _RecordingSession, raise_errors: bool = False, roll: bool = True) -> None:
        if session.buffer:
            self._append_buffer(session, raise_errors)
        if roll and (self._should_roll(session) or session.pending_chunks):
            self._finalize_chunk(session, raise_errors)

    def _append_buffer(self, session: _RecordingSession, raise_errors: bool) -> None:
        tmp_path = session.tmp_path
        lines = "".join(reading_to_row(reading) for reading in session.buffer)
        is_new = not tmp_path.exists()
        payload = (CSV_HEADER + "\n" + lines) if is_new else lines
        previous_size = tmp_path.stat().st_size if tmp_path.is_file() else None

        try:
            with open(tmp_path, "a", encoding="utf-8", newline="") as f:
                f.write(payload)
                f.flush()
        except OSError as e:
            self._rollback_append(tmp_path, previous_size)
            self._record_write_error(session, f"Flush to {tmp_path.name} failed: {e}", raise_errors, e)
            return

        flushed = len(session.buffer)
        written = len(payload.encode("utf-8"))
        session.buffer.clear()
        session.chunk_rows += flushed
        session.chunk_bytes += written
        session.total_rows_flushed += flushed
        session.bytes_flushed += written
        session.write_error = None
        logger.debug(f"Flushed {flushed} readings to {tmp_path.name} for {session.session_id}")

    def _rollback_append(self, tmp_path: Path, previous_size: Optional[int]) -> None:
        """Cut a failed append back so the retained buffer is written exactly once."""
        try:
            if previous_size is None:
                if tmp_path.is_file():
                    tmp_path.unlink()
            else:
                os.truncate(tmp_path, previous_size)
        except OSError as e:
            logger.error(f"Could not roll back partial write to {tmp_path.name}: {e}")

    def _should_roll(self, session: _RecordingSession) -> bool:
        if self._clock() - session.chunk_started >= self.config.roll_interval_s:
            return True
        if self.config.max_chunk_rows is not None and session.chunk_rows >= self.config.max_chunk_rows:
            return True
        if self.config.max_chunk_bytes is not None and session.chunk_bytes >= self.config.max_chunk_bytes:
            return True
        return False

    def _finalize_chunk(self, session: _RecordingSession, raise_errors: bool = False) -> List[ChunkMetadata]:
        """Rename the open chunk, then register renamed chunks in the manifest.

        The chunk index moves past a chunk as soon as it is renamed, so a new
        temp file never takes the name of a chunk whose manifest entry is
        still pending. Pending entries are retried on every finalize. An
        absent temp file (nothing buffered since the last roll) only retries.
        """
        tmp_path = session.tmp_path
        if tmp_path.exists():
            try:
                final_path = self._claim_final_path(session)
                tmp_path.replace(final_path)
            except OSError as e:
                self._record_write_error(session, f"Renaming {tmp_path.name} failed: {e}", raise_errors, e)
                return []
            session.pending_chunks.append(session.chunk_index)
            session.chunk_index += 1
            session.chunk_rows = 0
            session.chunk_bytes = 0
        session.chunk_started = self._clock()
        return self._register_pending(session, raise_errors)

    def _claim_final_path(self, session: _RecordingSession) -> Path:
        """Final path for the open chunk, skipping names already on disk."""
        final_path = session.root_path / chunk_name(session.chunk_index)
        while final_path.exists():
            logger.warning(f"{final_path.name} already exists in {session.root_path}; keeping it and moving on")
            if session.chunk_index not in session.pending_chunks:
                session.pending_chunks.append(session.chunk_index)
            session.chunk_index += 1
            final_path = session.root_path / chunk_name(session.chunk_index)
        return final_path

    def _register_pending(self, session: _RecordingSession, raise_errors: bool) -> List[ChunkMetadata]:
        if not session.pending_chunks:
            return []

        added = []
        try:
            manifest = read_manifest(session.root_path)
            recorded = {chunk.index for chunk in manifest.chunks}
            for index in sorted(session.pending_chunks):
                if index in recorded:
                    continue
                name = chunk_name(index)
                path = session.root_path / name
                chunk = ChunkMetadata(
                    index=index,
                    name=name,
                    rows=count_data_rows(path),
                    sha256=file_hash(path),
                    size_bytes=path.stat().st_size,
                    timestamp=utc_now(),
                )
                manifest.append_chunk(chunk)
                added.append(chunk)
            write_manifest(session.root_path, manifest)
        except (OSError, SeaSyncError) as e:
            names = ", ".join(chunk_name(index) for index in session.pending_chunks)
            self._record_write_error(session, f"Registering {names} failed: {e}", raise_errors, e)
            return []

        session.pending_chunks.clear()
        for chunk in added:
            logger.info(f"Finalized {chunk.name} for {session.session_id}: {chunk.rows} rows, {chunk.size_bytes} bytes")
        return added

    def _record_write_error(
        self, session: _RecordingSession, message: str, raise_errors: bool, cause: Exception
    ) -> None:
        session.write_error = message
        logger.error(f"{message} (session {session.session_id})")
        if raise_errors:
            raise ChunkWriteError(message, context={"session_id": session.session_id}) from cause

    def _get(self, session_id: str) -> _RecordingSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"No active recording session {session_id}") from None
