"""Resumable mirror state: mirror.json cursor plus the mirrored manifest.

The manifest is written before the cursor. A crash between the two leaves
the manifest one chunk ahead on disk; ``load_mirror_state`` reconciles the
cursor forward so the chunk is not downloaded twice. Within a running mirror
a failed write leaves the in-memory state unchanged and the chunk is retried.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from seasync.domain import ChunkMetadata, MirrorProgress, SessionManifest
from seasync.store.manifest import (
    MANIFEST_FILENAME,
    read_manifest,
    read_mirror_progress,
    write_manifest,
    write_mirror_progress,
)
from seasync.utils import utc_now

logger = logging.getLogger(__name__)

__all__ = ["load_mirror_state", "record_mirrored_chunk"]


def load_mirror_state(root: Path, session_id: str, mission: str) -> Tuple[SessionManifest, MirrorProgress]:
    """Load (or create) the mirrored manifest and progress cursor for a directory."""
    root.mkdir(parents=True, exist_ok=True)

    if (root / MANIFEST_FILENAME).exists():
        manifest = read_manifest(root)
    else:
        manifest = SessionManifest(session_id=session_id, mission=mission, started_at=utc_now())
        write_manifest(root, manifest)

    progress = read_mirror_progress(root)
    if progress is None:
        progress = MirrorProgress(session_id=session_id, mission=mission)
    else:
        logger.info(
            f"Resuming mirror of {session_id} from chunk {progress.last_chunk_index + 1} "
            f"({progress.bytes_mirrored} bytes already mirrored)"
        )

    if manifest.last_chunk_index > progress.last_chunk_index:
        logger.warning(
            f"Mirror cursor for {session_id} behind manifest "
            f"({progress.last_chunk_index} < {manifest.last_chunk_index}); advancing cursor"
        )
        progress.last_chunk_index = manifest.last_chunk_index
        progress.bytes_mirrored = manifest.total_bytes
        write_mirror_progress(root, progress)

    return manifest, progress


def record_mirrored_chunk(
    root: Path, manifest: SessionManifest, progress: MirrorProgress, chunk: ChunkMetadata
) -> Tuple[SessionManifest, MirrorProgress]:
    """Persist a verified chunk in the manifest, then persist the advanced cursor.

    The inputs are left untouched; the updated copies are returned only after
    both files are written, so a failed write leaves the caller's cursor where
    it was and the chunk is fetched again on the next poll.

    Raises:
        OSError: If either file cannot be written
    """
    updated = manifest.model_copy(deep=True)
    updated.append_chunk(chunk)
    write_manifest(root, updated)

    advanced = progress.model_copy(
        update={
            "last_chunk_index": chunk.index,
            "bytes_mirrored": progress.bytes_mirrored + chunk.size_bytes,
            "last_sync_time": utc_now(),
        }
    )
    write_mirror_progress(root, advanced)
    return updated, advanced
