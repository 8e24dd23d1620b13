"""Tolerance-bounded matching with no reading reuse.

For each axis point the nearest not-yet-used reading of each sensor within
``tolerance_ms`` is selected (ties go to the earlier reading). A reading is
marked used only when its row is emitted, so one reading never appears in
two rows.

Row Creation Policy:
--------------------
- Both sensors matched: emit.
- One sensor matched: emit only if the other sensor's most recent emitted
  match is more than ``gap_factor * tolerance_ms`` before this point (a real
  data gap), or if the previous emitted row was itself single-sensor.
  Otherwise the lone match is an alignment artifact already represented by
  an adjacent dual-sensor row and the point is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import List, Optional, Sequence, Set

import numpy as np

from seasync.fusion.axis import AxisPoint

__all__ = ["DEFAULT_GAP_FACTOR", "Match", "NearestUnusedMatcher", "align"]

DEFAULT_GAP_FACTOR = 2.0


@dataclass(frozen=True)
class Match:
    """One emitted row: axis time plus the matched reading index per sensor."""

    time_ms: float
    remote_index: Optional[int]
    local_index: Optional[int]
    axis_local_index: Optional[int] = None

    @property
    def has_both(self) -> bool:
        return self.remote_index is not None and self.local_index is not None


# =============================================================================
# Nearest-unused lookup
# =============================================================================


class NearestUnusedMatcher:
    """Nearest-reading lookup over one sensor's sorted times, skipping used readings.

    Args:
        times_ms: Reading times in ascending order
    """

    def __init__(self, times_ms: Sequence[float]):
        self.times = np.asarray(times_ms, dtype=float)
        self.used: Set[int] = set()

    def find(self, target_ms: float, tolerance_ms: float) -> Optional[int]:
        """Index of the nearest unused reading within tolerance, or None."""
        if self.times.size == 0:
            return None

        pos = int(np.searchsorted(self.times, target_ms))
        best: Optional[int] = None
        best_diff = math.inf

        i = pos - 1
        while i >= 0 and target_ms - self.times[i] <= tolerance_ms:
            if i not in self.used:
                diff = target_ms - self.times[i]
                if diff <= best_diff:
                    best, best_diff = i, diff
            i -= 1

        i = pos
        while i < self.times.size and self.times[i] - target_ms <= tolerance_ms:
            if i not in self.used:
                diff = self.times[i] - target_ms
                if diff < best_diff:
                    best, best_diff = i, diff
                break
            i += 1

        return best

    def mark_used(self, index: int) -> None:
        self.used.add(index)


# =============================================================================
# Alignment
# =============================================================================


def align(
    axis: Sequence[AxisPoint],
    remote_times_ms: Sequence[float],
    local_times_ms: Sequence[float],
    tolerance_ms: float = 50.0,
    gap_factor: float = DEFAULT_GAP_FACTOR,
) -> List[Match]:
    """Match readings to axis points and apply the row creation policy.

    Args:
        axis: Consolidated axis
        remote_times_ms: Drift-corrected in-water times (ascending)
        local_times_ms: Surface times (ascending)
        tolerance_ms: Maximum distance between an axis point and a matched reading
        gap_factor: Multiple of tolerance that counts as a genuine gap

    Returns:
        Emitted matches in axis order
    """
    remote = NearestUnusedMatcher(remote_times_ms)
    local = NearestUnusedMatcher(local_times_ms)
    gap_ms = gap_factor * tolerance_ms

    last_remote_ms: Optional[float] = None
    last_local_ms: Optional[float] = None
    previous_dual = False
    matches: List[Match] = []

    for point in axis:
        remote_index = remote.find(point.time_ms, tolerance_ms)
        local_index = local.find(point.time_ms, tolerance_ms)
        if remote_index is None and local_index is None:
            continue

        if remote_index is None or local_index is None:
            other_last = last_local_ms if local_index is None else last_remote_ms
            since_other = math.inf if other_last is None else point.time_ms - other_last
            if since_other <= gap_ms and previous_dual:
                continue

        if remote_index is not None:
            remote.mark_used(remote_index)
            last_remote_ms = point.time_ms
        if local_index is not None:
            local.mark_used(local_index)
            last_local_ms = point.time_ms

        match = Match(
            time_ms=point.time_ms,
            remote_index=remote_index,
            local_index=local_index,
            axis_local_index=point.local_index,
        )
        previous_dual = match.has_both
        matches.append(match)

    return matches
