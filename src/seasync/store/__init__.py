"""Chunked session storage.

Example:
    >>> from seasync.store import ChunkedSessionStore, finalize_session_directory
"""

from seasync.store.chunks import (
    CHUNK_NAME_PATTERN,
    SESSION_CSV,
    audit_session_directory,
    chunk_name,
    cleanup_chunks,
    combine_chunks,
    count_data_rows,
    finalize_session_directory,
    iter_data_lines,
    read_data_bytes,
    parse_chunk_index,
    reading_to_row,
    verify_session_file,
)
from seasync.store.manifest import (
    MANIFEST_FILENAME,
    MIRROR_PROGRESS_FILENAME,
    read_manifest,
    read_mirror_progress,
    write_manifest,
    write_mirror_progress,
)
from seasync.store.recorder import ChunkedSessionStore, CompletionHook, RecordingHandle, RecordingStats

__all__ = [
    # Chunks
    "SESSION_CSV",
    "CHUNK_NAME_PATTERN",
    "chunk_name",
    "parse_chunk_index",
    "reading_to_row",
    "read_data_bytes",
    "iter_data_lines",
    "count_data_rows",
    "combine_chunks",
    "verify_session_file",
    "cleanup_chunks",
    "audit_session_directory",
    "finalize_session_directory",
    # Manifest
    "MANIFEST_FILENAME",
    "MIRROR_PROGRESS_FILENAME",
    "read_manifest",
    "write_manifest",
    "read_mirror_progress",
    "write_mirror_progress",
    # Recorder
    "ChunkedSessionStore",
    "CompletionHook",
    "RecordingHandle",
    "RecordingStats",
]
