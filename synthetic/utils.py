"""Common utilities for synthetic data generators.

Utilities provided:
- Deterministic RNG creation from a base seed and components
- Clock drift helpers (ppm -> time offset)
- Parent directory creation for generated files
- SHA-256 of in-memory payloads (catalog entries served by the fake peer)
"""

from __future__ import annotations

import hashlib
from pathlib import Path
import random
from typing import Union


def ensure_parent_dir(path: Union[str, Path]) -> Path:
    """Ensure parent directory exists for the provided path and return Path."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def deterministic_rng(seed: int, *components: Union[str, int]) -> random.Random:
    """Create a deterministic RNG from a base seed and additional components.

    The internal seed is a string in the form "{seed}:{comp1}:{comp2}:..." so
    that different components produce independent, reproducible streams.
    """

    joined = ":".join(str(c) for c in components)
    return random.Random(f"{seed}:{joined}")


def clock_drift_offset(elapsed_s: float, ppm: float) -> float:
    """Compute drift-induced offset (seconds) for elapsed time at given ppm.

    Positive ppm means the drifting clock runs fast.
    """

    return elapsed_s * (ppm / 1_000_000.0)


def apply_clock_drift(t_nominal_s: float, elapsed_from_start_s: float, ppm: float) -> float:
    """Apply clock drift to a nominal timestamp based on elapsed time and ppm."""

    return t_nominal_s + clock_drift_offset(elapsed_from_start_s, ppm)


def sha256_bytes(data: bytes) -> str:
    """Hex SHA-256 digest of an in-memory payload."""

    return hashlib.sha256(data).hexdigest()
