"""Manifest and mirror-progress persistence.

Both documents are rewritten whole through an atomic temp-file rename.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from seasync.domain import MirrorProgress, SessionManifest
from seasync.exceptions import MissingInputError, StorageError
from seasync.utils import read_json, write_json

__all__ = [
    "MANIFEST_FILENAME",
    "MIRROR_PROGRESS_FILENAME",
    "read_manifest",
    "write_manifest",
    "read_mirror_progress",
    "write_mirror_progress",
]

MANIFEST_FILENAME = "manifest.json"
MIRROR_PROGRESS_FILENAME = "mirror.json"


def read_manifest(root: Path) -> SessionManifest:
    """Load manifest.json from a sensor session directory.

    Raises:
        MissingInputError: If the manifest does not exist
        StorageError: If the manifest is unreadable or invalid
    """
    path = Path(root) / MANIFEST_FILENAME
    if not path.exists():
        raise MissingInputError(f"Manifest not found: {path}", context={"path": str(path)})
    try:
        return SessionManifest.model_validate(read_json(path))
    except (ValueError, ValidationError) as e:
        raise StorageError(f"Invalid manifest {path}: {e}", context={"path": str(path)}) from e


def write_manifest(root: Path, manifest: SessionManifest) -> Path:
    path = Path(root) / MANIFEST_FILENAME
    write_json(path, manifest.model_dump(mode="json"))
    return path


def read_mirror_progress(root: Path) -> MirrorProgress | None:
    """Load mirror.json, or None when no mirror run has persisted progress yet."""
    path = Path(root) / MIRROR_PROGRESS_FILENAME
    if not path.exists():
        return None
    try:
        return MirrorProgress.model_validate(read_json(path))
    except (ValueError, ValidationError) as e:
        raise StorageError(f"Invalid mirror progress {path}: {e}", context={"path": str(path)}) from e


def write_mirror_progress(root: Path, progress: MirrorProgress) -> Path:
    path = Path(root) / MIRROR_PROGRESS_FILENAME
    write_json(path, progress.model_dump(mode="json"))
    return path
