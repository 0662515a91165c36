"""
Per-frame optical flow results.

The tracker stores, for each video frame, the points it matched against a
later frame. Results are keyed by frame timestamp in microseconds and by
flow key, the distance in frames between the two tracked frames (``1`` is
the next frame).
"""

import bisect
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

from .locking import ReadWriteLock

# ((timestamp_from, points_from), (timestamp_to, points_to)), points are (N, 2) pixels
OpticalFlowPoints = Tuple[Tuple[int, np.ndarray], Tuple[int, np.ndarray]]

NEXT_FRAME = 1


class FlowStatus(Enum):
    """State of one optical flow entry of a frame."""

    NOT_COMPUTED = "not_computed"
    UNAVAILABLE = "unavailable"
    AVAILABLE = "available"


@dataclass
class FrameResult:
    """Optical flow results for a single frame."""

    frame_size: Tuple[int, int]  # (width, height) of the tracked image
    optical_flow: Dict[int, Optional[OpticalFlowPoints]] = field(default_factory=dict)

    def flow_status(self, flow_key: int = NEXT_FRAME) -> FlowStatus:
        if flow_key not in self.optical_flow:
            return FlowStatus.NOT_COMPUTED
        if self.optical_flow[flow_key] is None:
            return FlowStatus.UNAVAILABLE
        return FlowStatus.AVAILABLE

    def get_optical_flow(self, flow_key: int = NEXT_FRAME) -> Optional[OpticalFlowPoints]:
        """Return the flow entry, or None unless its status is AVAILABLE."""
        return self.optical_flow.get(flow_key)

    def set_optical_flow(
        self,
        flow_key: int,
        timestamp_from: int,
        points_from,
        timestamp_to: int,
        points_to,
    ) -> None:
        self.optical_flow[flow_key] = (
            (int(timestamp_from), np.asarray(points_from, dtype=np.float64).reshape(-1, 2)),
            (int(timestamp_to), np.asarray(points_to, dtype=np.float64).reshape(-1, 2)),
        )

    def mark_unavailable(self, flow_key: int = NEXT_FRAME) -> None:
        self.optical_flow[flow_key] = None


class FrameResultStore:
    """
    Time-ordered frame results guarded by a read-write lock.

    Single lookups take the read lock themselves. Readers take
    ``store.lock.read()`` around ``range()`` so that the tracker can keep
    inserting from its own thread; the lock is not reentrant, so no other
    store method may be called inside that block.
    """

    def __init__(self):
        self.lock = ReadWriteLock()
        self._timestamps: list = []
        self._results: Dict[int, FrameResult] = {}

    def __len__(self) -> int:
        return len(self._timestamps)

    def __contains__(self, timestamp_us: int) -> bool:
        with self.lock.read():
            return timestamp_us in self._results

    def insert(self, timestamp_us: int, result: FrameResult) -> None:
        timestamp_us = int(timestamp_us)
        with self.lock.write():
            if timestamp_us not in self._results:
                bisect.insort(self._timestamps, timestamp_us)
            self._results[timestamp_us] = result

    def get(self, timestamp_us: int) -> Optional[FrameResult]:
        with self.lock.read():
            return self._results.get(timestamp_us)

    def range(self, from_ts: int, to_ts: int) -> Iterator[Tuple[int, FrameResult]]:
        """Yield (timestamp, result) for timestamps in [from_ts, to_ts)."""
        lo = bisect.bisect_left(self._timestamps, from_ts)
        hi = bisect.bisect_left(self._timestamps, to_ts)
        for ts in self._timestamps[lo:hi]:
            yield ts, self._results[ts]

    @property
    def first_timestamp(self) -> Optional[int]:
        with self.lock.read():
            return self._timestamps[0] if self._timestamps else None

    @property
    def last_timestamp(self) -> Optional[int]:
        with self.lock.read():
            return self._timestamps[-1] if self._timestamps else None
