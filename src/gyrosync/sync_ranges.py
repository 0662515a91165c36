"""
Placement of sync windows over a video.
"""

from typing import List, Optional, Sequence, Tuple

from .config import SyncParams


def plan_sync_ranges(duration_ms: float, sync_params: SyncParams) -> List[Tuple[int, int]]:
    """
    Spread ``max_sync_points`` windows evenly over the video.

    Window ``i`` is centered at ``(i + 0.5) * duration / count`` and spans
    ``time_per_syncpoint``, clipped to the video.

    Returns:
        Half-open (from_ts, to_ts) windows in µs
    """
    count = sync_params.max_sync_points
    if duration_ms <= 0 or count <= 0:
        return []

    centers = [(i + 0.5) * duration_ms / count for i in range(count)]
    return ranges_around(centers, sync_params.time_per_syncpoint, duration_ms)


def ranges_around(
    timestamps_ms: Sequence[float],
    time_per_syncpoint: float,
    duration_ms: Optional[float] = None,
) -> List[Tuple[int, int]]:
    """Windows of ``time_per_syncpoint`` ms centered on each timestamp, in µs."""
    half = time_per_syncpoint / 2.0
    ranges = []
    for ts in timestamps_ms:
        start = max(ts - half, 0.0)
        end = ts + half
        if duration_ms is not None:
            end = min(end, duration_ms)
        ranges.append((int(round(start * 1000.0)), int(round(end * 1000.0))))
    return ranges
