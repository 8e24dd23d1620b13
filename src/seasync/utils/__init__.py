"""Foundation utilities for seasync.

Provides reusable primitives for file I/O, content hashing, atomic writes,
timestamp handling, timing, and logging. As a foundation module, this
package must not import any other project packages except exceptions.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import hashlib
import json
import logging
import os
from pathlib import Path
import time
from typing import IO, Any, Iterator

__all__ = [
    "read_json",
    "write_json",
    "file_hash",
    "atomic_writer",
    "atomic_write",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
    "to_epoch_ms",
    "from_epoch_ms",
    "time_block",
    "configure_logging",
]

TMP_SUFFIX = ".tmp"


# ============================================================================
# Atomic Writes
# ============================================================================


@contextmanager
def atomic_writer(path: Path | str, mode: str = "w") -> Iterator[IO[Any]]:
    """Open a sibling temp file and rename it over ``path`` on success.

    A reader never observes a partially written target: either the previous
    content or the complete new content is visible. On error the temp file
    is removed and the exception propagates.

    Args:
        path: Final target path
        mode: "w" (text, utf-8) or "wb" (binary)

    Yields:
        Open file handle for the temp file

    Example:
        >>> with atomic_writer("session.csv") as f:
        ...     f.write("timestamp,sensor_id,mode,value,TempC,Vin\\n")
    """
    if mode not in ("w", "wb"):
        raise ValueError(f"Unsupported atomic write mode: {mode}")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + TMP_SUFFIX)

    if mode == "w":
        handle = open(tmp_path, mode, encoding="utf-8", newline="")
    else:
        handle = open(tmp_path, mode)

    try:
        with handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write(path: Path | str, data: bytes | str) -> Path:
    """Write ``data`` to ``path`` via temp file + rename.

    Args:
        path: Target path
        data: Bytes or text (text is encoded as utf-8)

    Returns:
        The target path
    """
    path = Path(path)
    mode = "wb" if isinstance(data, bytes) else "w"
    with atomic_writer(path, mode) as f:
        f.write(data)
    return path


# ============================================================================
# JSON I/O
# ============================================================================


def read_json(path: Path | str) -> dict[str, Any]:
    """Read JSON file and return parsed dictionary.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dictionary

    Raises:
        FileNotFoundError: If file does not exist
        JSONDecodeError: If file contains invalid JSON
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path | str, obj: dict[str, Any], indent: int = 2) -> None:
    """Atomically write dictionary to JSON file with pretty formatting.

    Args:
        path: Target file path
        obj: Dictionary to serialize
        indent: Indentation level (default: 2)
    """
    atomic_write(path, json.dumps(obj, indent=indent, ensure_ascii=False) + "\n")


# ============================================================================
# File Hashing
# ============================================================================


def file_hash(
    path: Path | str,
    algorithm: str = "sha256",
    chunk_size: int = 65536,
) -> str:
    """Compute content hash of a file.

    The digest is recomputed from disk on every call; it is never cached
    across writes.

    Args:
        path: File to hash
        algorithm: Hash algorithm (default: sha256)
        chunk_size: Read chunk size in bytes

    Returns:
        Hexadecimal hash digest

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If algorithm not supported
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    try:
        hasher = hashlib.new(algorithm)
    except ValueError as e:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from e

    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


# ============================================================================
# Timestamps
# ============================================================================


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO-8601 with microseconds and explicit offset.

    Naive datetimes are assumed to be UTC.

    Example:
        >>> format_timestamp(datetime(2025, 11, 18, 12, 0, 1, 123456, tzinfo=timezone.utc))
        '2025-11-18T12:00:01.123456+00:00'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Accepts a trailing ``Z``. Naive values are assumed to be UTC.

    Raises:
        ValueError: If text is not a valid ISO-8601 timestamp
    """
    text = text.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_epoch_ms(dt: datetime) -> float:
    """Milliseconds since the Unix epoch (float, sub-ms precision kept)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def from_epoch_ms(ms: float) -> datetime:
    """Inverse of :func:`to_epoch_ms`, returning an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


# ============================================================================
# Timing Utilities
# ============================================================================


@contextmanager
def time_block(label: str, logger: logging.Logger | None = None) -> Iterator[None]:
    """Context manager for timing code blocks with optional logging.

    Args:
        label: Descriptive label for timed block
        logger: Optional logger instance (if None, prints to stdout)

    Example:
        with time_block("Combining chunks", logger):
            combine_chunks(root, manifest)
        # Output: "Combining chunks completed in 0.12s"
    """
    start_time = time.time()

    try:
        yield
    finally:
        elapsed = time.time() - start_time
        message = f"{label} completed in {elapsed:.2f}s"

        if logger is not None:
            logger.info(message)
        else:
            print(message)


# ============================================================================
# Logging Configuration
# ============================================================================


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Configure root logger with standardized format.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Enable JSON structured logging (default: False)
    """
    numeric_level = getattr(logging, level.upper(), None)

    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)

    if structured:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
