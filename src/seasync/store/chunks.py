"""Chunk file codec and session finalization.

Chunk files are CSV segments named ``chunk_NNNNN.csv`` (zero-padded index).
An open chunk carries a ``.tmp`` suffix. At session stop the finalized chunks
are combined, in index order, into a single ``session.csv`` with one header.

Finalization Sequence:
----------------------
1. combine_chunks: header once, then every data row of each chunk
2. file_hash: record session_sha256 in the manifest
3. verify_session_file: data rows must equal the manifest total
4. cleanup_chunks: delete chunk files (only after verification)

On verification failure the chunks are kept and the manifest is marked
degraded so the session can be rebuilt with ``seasync recombine``.

The same sequence runs on locally recorded sessions and on mirrored copies
of remote sessions.
"""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
import re
from typing import Iterator, List, Optional, Tuple

from seasync.domain import CSV_HEADER, Reading, SessionManifest, SessionSummary
from seasync.exceptions import VerificationError
from seasync.store.manifest import read_manifest, write_manifest
from seasync.utils import TMP_SUFFIX, atomic_writer, file_hash, time_block

logger = logging.getLogger(__name__)

__all__ = [
    "SESSION_CSV",
    "CHUNK_NAME_PATTERN",
    "chunk_name",
    "parse_chunk_index",
    "reading_to_row",
    "iter_data_lines",
    "read_data_bytes",
    "count_data_rows",
    "combine_chunks",
    "verify_session_file",
    "cleanup_chunks",
    "audit_session_directory",
    "finalize_session_directory",
]

SESSION_CSV = "session.csv"
CHUNK_NAME_PATTERN = re.compile(r"^chunk_(\d{5})\.csv$")


def chunk_name(index: int) -> str:
    """Finalized file name for a chunk index.

    Example:
        >>> chunk_name(3)
        'chunk_00003.csv'
    """
    if index < 0:
        raise ValueError(f"Chunk index must be non-negative, got {index}")
    return f"chunk_{index:05d}.csv"


def parse_chunk_index(name: str) -> Optional[int]:
    """Index encoded in a finalized chunk name, or None if not a chunk file."""
    match = CHUNK_NAME_PATTERN.match(name)
    return int(match.group(1)) if match else None


def reading_to_row(reading: Reading) -> str:
    """Render a reading as one CSV line (with trailing newline)."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(reading.to_csv_fields())
    return buffer.getvalue()


def iter_data_lines(path: Path) -> Iterator[str]:
    """Yield the data lines of a CSV file, skipping the header and blank lines.

    Lines are yielded without their line terminator.
    """
    with open(path, "r", encoding="utf-8", newline="") as f:
        for line_no, line in enumerate(f):
            if line_no == 0:
                continue
            line = line.rstrip("\r\n")
            if line.strip():
                yield line


def read_data_bytes(path: Path) -> bytes:
    """Raw bytes of a CSV file after its header line."""
    with open(path, "rb") as f:
        f.readline()
        return f.read()


def count_data_rows(path: Path | str) -> int:
    """Number of non-empty lines after the header."""
    return sum(1 for _ in iter_data_lines(Path(path)))


def combine_chunks(root: Path, manifest: SessionManifest) -> Tuple[Path, int]:
    """Concatenate the manifest's chunks into ``session.csv``.

    Chunks are read in index order. The header is written once; each chunk's
    own header line is skipped and the rest of its bytes are copied verbatim,
    line terminators included. A chunk whose last line is unterminated gets a
    ``\\n`` so it cannot merge with the next chunk's first row. The output is
    written atomically.

    Args:
        root: Sensor session directory
        manifest: Manifest listing the finalized chunks

    Returns:
        (session file path, data rows written)

    Raises:
        FileNotFoundError: If a chunk listed in the manifest is missing
    """
    session_path = root / SESSION_CSV
    rows_written = 0

    with atomic_writer(session_path, mode="wb") as out:
        out.write((CSV_HEADER + "\n").encode("utf-8"))
        for chunk in sorted(manifest.chunks, key=lambda c: c.index):
            chunk_path = root / chunk.name
            if not chunk_path.exists():
                raise FileNotFoundError(f"Chunk listed in manifest is missing: {chunk_path}")
            data = read_data_bytes(chunk_path)
            if data and not data.endswith(b"\n"):
                logger.warning(f"{chunk.name} ends without a line terminator; appending one")
                data += b"\n"
            out.write(data)
            rows_written += sum(1 for line in data.splitlines() if line.strip())

    if not manifest.chunks:
        logger.warning(f"No chunks recorded for session {manifest.session_id}; wrote header-only {SESSION_CSV}")
    else:
        logger.info(f"Combined {len(manifest.chunks)} chunks into {session_path} ({rows_written} rows)")

    return session_path, rows_written


def verify_session_file(session_path: Path, expected_rows: int) -> int:
    """Check that the session file's data-row count equals the manifest total.

    Returns:
        Data rows found

    Raises:
        VerificationError: On mismatch
    """
    actual_rows = count_data_rows(session_path)
    if actual_rows != expected_rows:
        raise VerificationError(
            f"Row count mismatch: {session_path.name} has {actual_rows} rows, manifest reports {expected_rows}",
            context={"path": str(session_path), "expected": expected_rows, "actual": actual_rows},
            hint="Chunk files were kept; run 'seasync recombine' after inspecting them",
        )
    return actual_rows


def cleanup_chunks(root: Path, manifest: SessionManifest) -> List[Path]:
    """Delete finalized chunk files and stray ``.tmp`` chunks.

    The manifest and session file are never touched.

    Returns:
        Paths that were deleted
    """
    deleted = []
    for chunk in manifest.chunks:
        chunk_path = root / chunk.name
        if chunk_path.exists():
            chunk_path.unlink()
            deleted.append(chunk_path)

    for stray in root.glob(f"chunk_*.csv{TMP_SUFFIX}"):
        stray.unlink()
        deleted.append(stray)

    logger.debug(f"Deleted {len(deleted)} chunk files from {root}")
    return deleted


def audit_session_directory(root: Path) -> List[str]:
    """Recheck session.csv against the manifest without modifying anything.

    Returns:
        Human-readable problems; empty when the directory is consistent
    """
    manifest = read_manifest(root)
    session_path = root / SESSION_CSV
    if not session_path.exists():
        return [f"{SESSION_CSV} missing"]

    problems = []
    actual_hash = file_hash(session_path)
    if manifest.session_sha256 is None:
        problems.append("manifest has no session_sha256")
    elif actual_hash != manifest.session_sha256:
        problems.append(f"sha256 mismatch: manifest {manifest.session_sha256[:8]}..., file {actual_hash[:8]}...")

    rows = count_data_rows(session_path)
    if rows != manifest.total_rows:
        problems.append(f"row count mismatch: manifest {manifest.total_rows}, file {rows}")

    chunk_sum = sum(chunk.rows for chunk in manifest.chunks)
    if chunk_sum != manifest.total_rows:
        problems.append(f"chunk rows sum to {chunk_sum}, manifest total is {manifest.total_rows}")

    return problems


def finalize_session_directory(root: Path, delete_chunks: bool = True) -> SessionSummary:
    """Combine, hash, verify and clean up a sensor session directory.

    The manifest is rewritten with ``session_sha256``, ``session_rows`` and
    either ``verified=True`` or ``degraded=True``.

    Args:
        root: Sensor session directory containing manifest.json and chunks
        delete_chunks: Delete chunk files after successful verification

    Returns:
        SessionSummary describing the outcome
    """
    manifest = read_manifest(root)

    with time_block(f"Finalizing session {manifest.session_id}", logger):
        session_path, rows_written = combine_chunks(root, manifest)
        manifest.session_sha256 = file_hash(session_path)
        manifest.session_rows = rows_written

        verified = False
        try:
            verify_session_file(session_path, manifest.total_rows)
            verified = True
        except VerificationError as e:
            logger.error(f"{e.message}; keeping chunk files in {root}")
            manifest.degraded = True

        manifest.verified = verified
        if verified:
            manifest.degraded = False
        write_manifest(root, manifest)

    chunks_deleted = False
    if verified and delete_chunks:
        cleanup_chunks(root, manifest)
        chunks_deleted = True

    return SessionSummary(
        session_id=manifest.session_id,
        root_path=root,
        session_csv=session_path,
        session_sha256=manifest.session_sha256,
        total_rows=manifest.total_rows,
        total_bytes=manifest.total_bytes,
        chunk_count=len(manifest.chunks),
        verified=verified,
        chunks_deleted=chunks_deleted,
    )
