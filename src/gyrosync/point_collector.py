"""
Collection of matched optical flow points per sync window.
"""

import logging
from typing import List, Sequence, Tuple

from .frame_results import FlowStatus, FrameResultStore, NEXT_FRAME, OpticalFlowPoints

logger = logging.getLogger(__name__)

# (((ts_from, points_from), (ts_to, points_to)), (width, height))
MatchedFrames = Tuple[OpticalFlowPoints, Tuple[int, int]]


def collect_points(
    sync_results: FrameResultStore,
    ranges: Sequence[Tuple[int, int]],
    flow_key: int = NEXT_FRAME,
) -> List[List[MatchedFrames]]:
    """
    Gather tracked frame pairs for each time range.

    Args:
        sync_results: Frame results keyed by timestamp (µs)
        ranges: Half-open (from_ts, to_ts) windows in µs
        flow_key: Optical flow entry to read (frame distance)

    Returns:
        One list per range, in range order. Only frames whose flow entry is
        available are included; an empty or inverted range gives an empty list.
    """
    points = []
    for from_ts, to_ts in ranges:
        points_per_range = []
        if to_ts > from_ts:
            with sync_results.lock.read():
                for _ts, frame in sync_results.range(from_ts, to_ts):
                    if frame.flow_status(flow_key) is not FlowStatus.AVAILABLE:
                        continue
                    points_per_range.append((frame.get_optical_flow(flow_key), frame.frame_size))
        logger.debug(f"Range {from_ts}..{to_ts}: {len(points_per_range)} tracked frame pairs")
        points.append(points_per_range)
    return points
