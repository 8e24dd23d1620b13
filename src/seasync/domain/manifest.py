"""Session manifest and mirror progress models.

The manifest is the per-session index of finalized chunks plus running
totals. It is rewritten atomically after every chunk finalization; existing
chunk entries are never modified, only appended to.

Model Hierarchy:
---------------
- SessionManifest
  └── ChunkMetadata (list)
- MirrorProgress (resumable replication cursor)
- SessionSummary (result of finalizing a session directory)

Persisted Files:
----------------
- manifest.json  (SessionManifest)
- mirror.json    (MirrorProgress)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

__all__ = [
    "MANIFEST_SCHEMA_VERSION",
    "ChunkMetadata",
    "SessionManifest",
    "MirrorProgress",
    "SessionSummary",
]

MANIFEST_SCHEMA_VERSION = 1


class ChunkMetadata(BaseModel):
    """One finalized, immutable chunk.

    Attributes:
        index: Monotonic chunk index within the session
        name: File name (chunk_00000.csv)
        rows: Data rows (header excluded)
        sha256: Content hash of the finalized file
        size_bytes: File size
        timestamp: When the chunk was finalized
    """

    model_config = {"frozen": True, "extra": "forbid"}

    index: int = Field(..., ge=0)
    name: str
    rows: int = Field(..., ge=0)
    sha256: str
    size_bytes: int = Field(..., ge=0)
    timestamp: datetime


class SessionManifest(BaseModel):
    """Per-session chunk index with running totals."""

    model_config = {"extra": "forbid", "validate_assignment": True}

    schema_version: int = MANIFEST_SCHEMA_VERSION
    session_id: str
    sensor_id: Optional[str] = None
    mission: str
    started_at: datetime
    stopped_at: Optional[datetime] = None
    next_chunk_index: int = 0
    total_rows: int = 0
    total_bytes: int = 0
    chunks: List[ChunkMetadata] = Field(default_factory=list)
    session_sha256: Optional[str] = None
    session_rows: Optional[int] = None
    verified: bool = False
    degraded: bool = False

    def append_chunk(self, chunk: ChunkMetadata) -> None:
        """Record a newly finalized chunk and advance the totals."""
        if any(existing.index == chunk.index for existing in self.chunks):
            raise ValueError(f"Chunk index {chunk.index} already recorded in manifest")
        self.chunks = [*self.chunks, chunk]
        self.next_chunk_index = chunk.index + 1
        self.total_rows += chunk.rows
        self.total_bytes += chunk.size_bytes

    @property
    def last_chunk_index(self) -> int:
        return max((c.index for c in self.chunks), default=-1)


class MirrorProgress(BaseModel):
    """Resumable replication cursor (mirror.json)."""

    model_config = {"extra": "forbid", "validate_assignment": True}

    session_id: str
    mission: str = ""
    last_chunk_index: int = -1
    bytes_mirrored: int = 0
    last_sync_time: Optional[datetime] = None


class SessionSummary(BaseModel):
    """Outcome of finalizing a session directory into session.csv."""

    model_config = {"frozen": True, "extra": "forbid"}

    session_id: str
    root_path: Path
    session_csv: Optional[Path] = None
    session_sha256: Optional[str] = None
    total_rows: int = 0
    total_bytes: int = 0
    chunk_count: int = 0
    verified: bool = False
    chunks_deleted: bool = False
