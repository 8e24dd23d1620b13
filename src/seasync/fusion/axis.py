"""Consolidated timestamp axis.

All surface times and drift-corrected in-water times are tagged with their
source and sorted together. Consecutive times within ``consolidation_ms`` of
a cluster's first member collapse into one axis point. The representative
time is the cluster's first surface time if it has one, else the median of
the cluster.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

__all__ = ["AxisPoint", "build_axis"]


@dataclass(frozen=True)
class AxisPoint:
    """One output time.

    Attributes:
        time_ms: Representative epoch milliseconds (local clock)
        local_index: Index of the surface reading providing the time, if any
        size: Number of source times consolidated into this point
    """

    time_ms: float
    local_index: Optional[int] = None
    size: int = 1


def build_axis(
    remote_times_ms: Sequence[float],
    local_times_ms: Sequence[float],
    consolidation_ms: float = 25.0,
) -> List[AxisPoint]:
    """Cluster both sensors' times into a de-duplicated axis.

    Args:
        remote_times_ms: Drift-corrected in-water times
        local_times_ms: Surface times
        consolidation_ms: Maximum distance from a cluster's first member

    Returns:
        Axis points in ascending time order
    """
    # (time, source, index); local sorts before remote at equal times
    tagged = [(t, 0, i) for i, t in enumerate(local_times_ms)]
    tagged.extend((t, 1, i) for i, t in enumerate(remote_times_ms))
    tagged.sort()

    axis: List[AxisPoint] = []
    cluster: List[tuple] = []
    for item in tagged:
        if cluster and item[0] - cluster[0][0] > consolidation_ms:
            axis.append(_representative(cluster))
            cluster = []
        cluster.append(item)
    if cluster:
        axis.append(_representative(cluster))
    return axis


def _representative(cluster: List[tuple]) -> AxisPoint:
    for time_ms, source, index in cluster:
        if source == 0:
            return AxisPoint(time_ms=time_ms, local_index=index, size=len(cluster))
    return AxisPoint(time_ms=float(np.median([item[0] for item in cluster])), size=len(cluster))
