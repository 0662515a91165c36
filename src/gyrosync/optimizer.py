"""
Offset optimizer for gyro/video synchronization.

Scores a candidate time offset by predicting where each tracked ray should
appear in the next frame from the gyro rotation between the two capture
instants, and searches the offset that minimizes the prediction error.

Methods:
- pre_sync: single-pass grid search around an initial offset
- full_sync: grid search followed by coarse-to-fine refinement
"""

import logging
from typing import Callable, Dict, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

logger = logging.getLogger(__name__)

# (ts_a, ts_b, rays_a, rays_b) of all tracks of one window
_Window = Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]


class SyncProblem:
    """
    One optimizer session.

    Timestamps of gyro samples, track keys and window bounds are integer
    microseconds; ray timestamps, offsets, steps and radii are seconds.
    """

    REFINE_FACTOR = 4  # step shrink per refinement level

    def __init__(self):
        self._slerp: Optional[Slerp] = None
        self._time_range: Tuple[float, float] = (0.0, 0.0)
        self._tracks: Dict[int, _Window] = {}
        self._progress_cb: Optional[Callable[[float], bool]] = None

    def on_progress(self, callback: Callable[[float], bool]) -> None:
        """
        Register the progress callback.

        It receives the completed fraction of the current search and returns
        False to abort it.
        """
        self._progress_cb = callback

    def set_gyro_quaternions(self, timestamps_us: np.ndarray, quats: np.ndarray) -> None:
        """
        Args:
            timestamps_us: (N,) sample times in µs
            quats: (N, 4) orientations [w, x, y, z]
        """
        times = np.asarray(timestamps_us, dtype=np.float64) / 1_000_000.0
        quats = np.asarray(quats, dtype=np.float64).reshape(-1, 4)

        # Slerp needs strictly increasing times
        times, idx = np.unique(times, return_index=True)
        if len(times) < 2:
            logger.warning(f"Need at least 2 gyro samples for sync, got {len(times)}")
            self._slerp = None
            return

        self._slerp = Slerp(times, Rotation.from_quat(quats[idx][:, [1, 2, 3, 0]]))
        self._time_range = (times[0], times[-1])

    def set_track_result(
        self,
        key_ts: int,
        ts_a: np.ndarray,
        ts_b: np.ndarray,
        rays_a: np.ndarray,
        rays_b: np.ndarray,
    ) -> None:
        ts_a = np.asarray(ts_a, dtype=np.float64)
        ts_b = np.asarray(ts_b, dtype=np.float64)
        rays_a = np.asarray(rays_a, dtype=np.float64).reshape(-1, 3)
        rays_b = np.asarray(rays_b, dtype=np.float64).reshape(-1, 3)
        if not (len(ts_a) == len(ts_b) == len(rays_a) == len(rays_b)):
            raise ValueError(f"Track {key_ts} has inconsistent lengths")
        self._tracks[int(key_ts)] = (ts_a, ts_b, rays_a, rays_b)

    @property
    def num_tracks(self) -> int:
        return len(self._tracks)

    def rotations_at(self, times: np.ndarray) -> Rotation:
        """Gyro rotations at the given times (seconds), clamped to the sampled range."""
        if self._slerp is None:
            raise RuntimeError("No gyro quaternions set. Call set_gyro_quaternions() first.")
        t = np.clip(np.asarray(times, dtype=np.float64), *self._time_range)
        return self._slerp(t)

    def cost(self, delay: float, from_ts: int, to_ts: int) -> Optional[float]:
        """Prediction error of the window's tracks at one offset (seconds)."""
        window = self._window(from_ts, to_ts)
        if window is None:
            return None
        return self._cost(delay, window)

    def pre_sync(
        self,
        initial_delay: float,
        from_ts: int,
        to_ts: int,
        search_step: float,
        search_radius: float,
    ) -> Optional[Tuple[float, float]]:
        """
        Grid search of offsets ``initial_delay + k * search_step`` within
        ``search_radius``.

        Returns:
            (cost, delay) of the lowest cost, None without data or when aborted
        """
        window = self._window(from_ts, to_ts)
        if window is None:
            return None

        run = _SearchRun(self, window, _grid_size(search_step, search_radius))
        return run.grid(initial_delay, search_step, search_radius)

    def full_sync(
        self,
        initial_delay: float,
        from_ts: int,
        to_ts: int,
        search_step: float,
        search_radius: float,
        iterations: int,
    ) -> Optional[Tuple[float, float]]:
        """
        Grid search as in ``pre_sync`` followed by ``iterations`` refinement
        levels, each searching ``±step`` around the best offset with a step
        ``REFINE_FACTOR`` times finer.
        """
        window = self._window(from_ts, to_ts)
        if window is None:
            return None

        total = _grid_size(search_step, search_radius) + iterations * (2 * self.REFINE_FACTOR + 1)
        run = _SearchRun(self, window, total)

        best = run.grid(initial_delay, search_step, search_radius)
        step = search_step
        for _ in range(iterations):
            if best is None:
                return None
            radius = step
            step = step / self.REFINE_FACTOR
            best = run.grid(best[1], step, radius)

        return best

    def _window(self, from_ts: int, to_ts: int) -> Optional[_Window]:
        if self._slerp is None:
            return None

        keys = sorted(k for k in self._tracks if from_ts <= k < to_ts)
        if not keys:
            return None

        tracks = [self._tracks[k] for k in keys]
        window = tuple(np.concatenate([t[i] for t in tracks]) for i in range(4))
        if len(window[0]) == 0:
            return None
        return window

    def _cost(self, delay: float, window: _Window) -> float:
        ts_a, ts_b, rays_a, rays_b = window
        rot_a = self.rotations_at(ts_a + delay)
        rot_b = self.rotations_at(ts_b + delay)

        # Registered rotations map world to camera: camera a -> world -> camera b
        predicted = rot_b.apply(rot_a.inv().apply(rays_a))
        return float(np.sum((predicted - rays_b) ** 2))

    def _report(self, progress: float) -> bool:
        if self._progress_cb is None:
            return True
        return bool(self._progress_cb(progress))


def _grid_size(step: float, radius: float) -> int:
    return 2 * _half_steps(step, radius) + 1


def _half_steps(step: float, radius: float) -> int:
    if step <= 0:
        raise ValueError(f"Search step must be positive, got {step}")
    return int(np.floor(radius / step + 1e-9))


class _SearchRun:
    """Progress bookkeeping for one search over one window."""

    def __init__(self, problem: SyncProblem, window: _Window, total_steps: int):
        self.problem = problem
        self.window = window
        self.total_steps = max(total_steps, 1)
        self.done = 0

    def grid(self, center: float, step: float, radius: float) -> Optional[Tuple[float, float]]:
        n = _half_steps(step, radius)
        best = None
        for k in range(-n, n + 1):
            delay = center + k * step
            cost = self.problem._cost(delay, self.window)
            if best is None or cost < best[0]:
                best = (cost, delay)

            self.done += 1
            if not self.problem._report(min(1.0, self.done / self.total_steps)):
                logger.debug("Offset search aborted")
                return None
        return best
