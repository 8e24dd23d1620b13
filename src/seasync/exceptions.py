"""Exception hierarchy for seasync.

All project errors derive from SeaSyncError, which carries a human-readable
message plus optional structured context and a recovery hint.

Hierarchy:
----------
- SeaSyncError
  ├── ConfigError
  ├── SessionError
  │   ├── SessionNotFoundError
  │   └── SessionStateError
  ├── StorageError
  │   ├── ChunkWriteError
  │   └── VerificationError
  ├── IntegrityError
  ├── TransportError
  ├── MissingInputError
  └── FusionError

Example:
--------
>>> try:
...     raise VerificationError("Row count mismatch", context={"expected": 10, "actual": 9})
... except SeaSyncError as e:
...     print(e.message, e.context)
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SeaSyncError",
    "ConfigError",
    "SessionError",
    "SessionNotFoundError",
    "SessionStateError",
    "StorageError",
    "ChunkWriteError",
    "VerificationError",
    "IntegrityError",
    "TransportError",
    "MissingInputError",
    "FusionError",
]


class SeaSyncError(Exception):
    """Base class for all seasync errors.

    Attributes:
        message: Human-readable description
        context: Optional structured details (paths, counts, ids)
        hint: Optional suggestion for recovery
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.hint = hint

    def __str__(self) -> str:
        text = self.message
        if self.hint:
            text = f"{text} (hint: {self.hint})"
        return text


class ConfigError(SeaSyncError):
    """Invalid or unreadable configuration."""


class SessionError(SeaSyncError):
    """Recording or mirror session lifecycle error."""


class SessionNotFoundError(SessionError):
    """Session id is not registered with the component."""


class SessionStateError(SessionError):
    """Operation not valid in the session's current state."""


class StorageError(SeaSyncError):
    """Local disk operation failed."""


class ChunkWriteError(StorageError):
    """Flushing or finalizing a chunk failed.

    Previously finalized chunks are immutable and remain valid.
    """


class VerificationError(StorageError):
    """Combined session file disagrees with its manifest."""


class IntegrityError(SeaSyncError):
    """Content hash did not match the advertised hash."""


class TransportError(SeaSyncError):
    """Remote peer request failed (timeout, connection error, non-2xx)."""


class MissingInputError(SeaSyncError):
    """A required input file or metadata entry is absent."""


class FusionError(SeaSyncError):
    """Fusion could not produce a unified output."""
