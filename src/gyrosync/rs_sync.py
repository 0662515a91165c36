"""
Gyro/video offset estimation with rolling shutter aware ray matching.

For each sync window the tracked optical flow points are undistorted,
stamped with their scanline capture time and matched against the gyro
rotation to find the time offset between the two streams. The same
machinery brute-forces the IMU mounting orientation when it is unknown.
"""

import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .config import ComputeParams, SyncParams
from .frame_results import FrameResultStore
from .optimizer import SyncProblem
from .orientation import CANDIDATE_ORIENTATIONS
from .point_collector import collect_points
from .quaternions import set_quats
from .rolling_shutter import build_correspondence, effective_readout_time

logger = logging.getLogger(__name__)

PRESYNC_STEP_MS = 3.0
REFINE_ITERATIONS = 4

# Calibration constants, kept at their empirical values
ACCEPT_RADIUS_FRACTION = 0.9  # reject results this close to the search boundary
READOUT_BIAS_FRACTION = 0.5  # fraction of the readout time subtracted from offsets

OffsetResult = Tuple[float, float, float]  # (window center s, offset ms, cost)


class SearchContext:
    """
    Progress and cancellation state of one synchronization run.

    Registered as the optimizer's progress callback. The counters are
    advanced by the synchronizing thread and may be read from any other.
    """

    def __init__(
        self,
        progress_cb: Optional[Callable[[float], None]],
        cancel_flag: Optional[threading.Event],
        num_sync_points: int = 1,
    ):
        self.progress_cb = progress_cb
        self.cancel_flag = cancel_flag if cancel_flag is not None else threading.Event()
        self.num_sync_points = num_sync_points

        self._lock = threading.Lock()
        self._current_sync_point = 0
        self._current_orientation = 0
        self._is_guess_orient = False

    @property
    def current_sync_point(self) -> int:
        with self._lock:
            return self._current_sync_point

    @property
    def current_orientation(self) -> int:
        with self._lock:
            return self._current_orientation

    @property
    def cancelled(self) -> bool:
        return self.cancel_flag.is_set()

    def start_pass(self, guess_orient: bool) -> None:
        with self._lock:
            self._is_guess_orient = guess_orient
            self._current_sync_point = 0
            self._current_orientation = 0

    def advance_sync_point(self) -> None:
        with self._lock:
            self._current_sync_point += 1

    def advance_orientation(self) -> None:
        with self._lock:
            self._current_orientation += 1
            self._current_sync_point = 0

    def progress(self, window_progress: float = 0.0) -> float:
        """Overall progress in [0, 1] for a fraction of the current window."""
        with self._lock:
            num_orientations = len(CANDIDATE_ORIENTATIONS) if self._is_guess_orient else 1
            num_sync_points = max(self.num_sync_points, 1)
            sync_part = (self._current_sync_point + window_progress) / num_sync_points
            value = (self._current_orientation + sync_part) / num_orientations
        return float(min(max(value, 0.0), 1.0))

    def __call__(self, window_progress: float) -> bool:
        if self.progress_cb is not None:
            self.progress_cb(self.progress(window_progress))
        return not self.cancelled


class FindOffsetsRssync:
    """
    Offset search over a set of sync windows.

    Builds the ray correspondences of every usable window once, then runs
    ``full_sync()`` and/or ``guess_orient()`` against the same optimizer
    session.
    """

    def __init__(
        self,
        ranges: Sequence[Tuple[int, int]],
        sync_results: FrameResultStore,
        sync_params: SyncParams,
        params: ComputeParams,
        progress_cb: Optional[Callable[[float], None]] = None,
        cancel_flag: Optional[threading.Event] = None,
        problem: Optional[SyncProblem] = None,
    ):
        matched_points = collect_points(sync_results, ranges)

        # Time the sensor needs to scan a whole frame, used for the rolling shutter
        self.frame_readout_time = effective_readout_time(params)

        self.sync = problem if problem is not None else SyncProblem()
        self.gyro_source = params.gyro
        self.sync_params = sync_params
        self.sync_points: List[Tuple[int, int]] = []
        self.context = SearchContext(progress_cb, cancel_flag)
        self.sync.on_progress(self.context)

        for range_points in matched_points:
            if len(range_points) < 2:
                logger.warning(f"Not enough data for sync! range.len: {len(range_points)}")
                continue

            from_ts = None
            to_ts = 0
            for matched in range_points:
                ((a_t, _), (b_t, _)), _frame_size = matched
                if from_ts is None:
                    from_ts = a_t
                to_ts = b_t

                corr = build_correspondence(matched, params, self.frame_readout_time)
                self.sync.set_track_result(corr.key_ts, corr.ts_a, corr.ts_b, corr.rays_a, corr.rays_b)

            self.sync_points.append((from_ts, to_ts))

        self.context.num_sync_points = len(self.sync_points)

    def full_sync(self) -> List[OffsetResult]:
        """
        Estimate the offset of every sync window.

        Returns:
            (window center s, offset ms, cost) per accepted window
        """
        self.context.start_pass(guess_orient=False)

        offsets = []
        with self.gyro_source.read() as gyro:
            set_quats(self.sync, gyro.quaternions)

        presync_step = PRESYNC_STEP_MS
        presync_radius = self.sync_params.search_size
        initial_delay = -self.sync_params.initial_offset

        for from_ts, to_ts in self.sync_points:
            if self.context.cancelled:
                logger.info("Sync cancelled")
                break

            delay = self.sync.full_sync(
                initial_delay / 1000.0,
                from_ts,
                to_ts,
                presync_step / 1000.0,
                presync_radius / 1000.0,
                REFINE_ITERATIONS,
            )
            if delay is not None:
                offset = delay[1] * 1000.0
                distance = abs(offset - initial_delay)
                if distance < presync_radius * ACCEPT_RADIUS_FRACTION:
                    offset = -offset - self.frame_readout_time * 1000.0 * READOUT_BIAS_FRACTION
                    center = (from_ts + to_ts) / 2.0 / 1_000_000.0
                    logger.debug(f"Sync point {center:.3f}s: offset {offset:.3f} ms, cost {delay[0]:.6f}")
                    offsets.append((center, offset, delay[0]))
                else:
                    logger.warning(
                        f"Sync point out of acceptable range {distance} < {presync_radius * ACCEPT_RADIUS_FRACTION}"
                    )
            self.context.advance_sync_point()
            if not self.context.cancelled:
                self.context(0.0)

        if self.sync_points:
            logger.info(
                f"rs-sync full sync done: {len(offsets)}/{len(self.sync_points)} sync points accepted, "
                f"time range {self.sync_points[0][0] / 1e6:.3f}s - {self.sync_points[-1][1] / 1e6:.3f}s"
            )
        else:
            logger.info("rs-sync full sync done: no usable sync points")
        return offsets

    def guess_orient(self) -> Optional[Tuple[str, float]]:
        """
        Find the IMU orientation whose gyro motion best matches the video.

        Returns:
            (orientation label, total cost) of the best candidate, None if no
            candidate could be scored
        """
        self.context.start_pass(guess_orient=True)
        if not self.sync_points:
            logger.warning("No usable sync points, cannot guess orientation")
            return None

        clone_source = self.gyro_source.snapshot()

        best = None
        for orientation in CANDIDATE_ORIENTATIONS:
            clone_source.set_orientation(orientation)
            clone_source.apply_transforms()

            set_quats(self.sync, clone_source.quaternions)

            total_cost = 0.0
            for from_ts, to_ts in self.sync_points:
                result = self.sync.pre_sync(
                    -self.sync_params.initial_offset / 1000.0,
                    from_ts,
                    to_ts,
                    PRESYNC_STEP_MS / 1000.0,
                    self.sync_params.search_size / 1000.0,
                )
                if result is not None:
                    total_cost += result[0]
                self.context.advance_sync_point()

            if self.context.cancelled:
                logger.info("Orientation guess cancelled")
                break

            logger.debug(f"Orientation {orientation.label}: cost {total_cost:.6f}")
            if best is None or total_cost < best[1]:
                best = (orientation.label, total_cost)

            self.context.advance_orientation()

        if best is not None:
            logger.info(f"Best orientation: {best[0]} (cost {best[1]:.6f})")
        return best


def find_offsets(
    ranges: Sequence[Tuple[int, int]],
    sync_results: FrameResultStore,
    sync_params: SyncParams,
    params: ComputeParams,
    progress_cb: Optional[Callable[[float], None]] = None,
    cancel_flag: Optional[threading.Event] = None,
) -> List[OffsetResult]:
    """
    Estimate the gyro offset for each time range.

    Args:
        ranges: Sync windows as half-open (from_ts, to_ts) in µs
        sync_results: Tracked optical flow per frame
        sync_params: Initial offset and search size
        params: Gyro source, lens and frame timing
        progress_cb: Receives overall progress in [0, 1]
        cancel_flag: Set from any thread to stop early

    Returns:
        (window center s, offset ms, cost) per accepted window; positive
        offsets mean the gyro lags the video
    """
    offsets = FindOffsetsRssync(ranges, sync_results, sync_params, params, progress_cb, cancel_flag).full_sync()
    logger.info(f"rs-sync find_offsets completed, offsets: {offsets}")
    return offsets


def guess_orientation(
    ranges: Sequence[Tuple[int, int]],
    sync_results: FrameResultStore,
    sync_params: SyncParams,
    params: ComputeParams,
    progress_cb: Optional[Callable[[float], None]] = None,
    cancel_flag: Optional[threading.Event] = None,
) -> Optional[Tuple[str, float]]:
    """Best IMU orientation label and its summed cost over all windows."""
    return FindOffsetsRssync(ranges, sync_results, sync_params, params, progress_cb, cancel_flag).guess_orient()


def median_offset(offsets: Sequence[OffsetResult]) -> Optional[float]:
    """Median offset (ms) of a result list."""
    if not offsets:
        return None
    return float(np.median([offset for _, offset, _ in offsets]))
