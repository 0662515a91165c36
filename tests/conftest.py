from __future__ import annotations

import numpy as np
import pytest
from scipy.spatial.transform import Rotation, Slerp

from gyrosync.config import ComputeParams, SyncParams
from gyrosync.frame_results import FrameResult, FrameResultStore
from gyrosync.gyro_source import GyroSource, SharedGyroSource
from gyrosync.lens_profile import FisheyeDistortion, LensProfile

FPS = 30.0
FRAME_SIZE = (960, 720)
FOCAL_PX = 800.0
GYRO_RATE_HZ = 200.0


def frame_ts(index: int) -> int:
    """Timestamp (µs) of a 30 fps frame."""
    return int(round(index * 1_000_000 / FPS))


def angular_velocity(t: np.ndarray) -> np.ndarray:
    # Distinct amplitude and frequency per axis so that no axis permutation mimics another.
    return np.column_stack([
        0.9 * np.sin(2 * np.pi * 0.9 * t),
        0.5 * np.cos(2 * np.pi * 1.3 * t + 0.4),
        0.25 * np.sin(2 * np.pi * 0.6 * t + 1.0) + 0.3,
    ])


def make_gyro_source(orientation: str = "XYZ", duration_s: float = 4.0) -> GyroSource:
    t = np.arange(0.0, duration_s, 1.0 / GYRO_RATE_HZ)
    source = GyroSource()
    source.set_orientation(orientation)
    source.load_from_array(t * 1000.0, angular_velocity(t))
    return source


def make_lens(global_shutter: bool = True, distortion_coeffs=None) -> LensProfile:
    lens = LensProfile.pinhole(FRAME_SIZE[0], FRAME_SIZE[1], FOCAL_PX, global_shutter=global_shutter)
    if distortion_coeffs is not None:
        lens.distortion_coeffs = np.asarray(distortion_coeffs, dtype=np.float64)
    return lens


def make_params(source: GyroSource, global_shutter: bool = True, lens: LensProfile = None) -> ComputeParams:
    lens = make_lens(global_shutter) if lens is None else lens
    return ComputeParams(gyro=SharedGyroSource(source), lens=lens, scaled_fps=FPS)


def grid_points() -> np.ndarray:
    xs, ys = np.meshgrid(np.linspace(160, 800, 5), np.linspace(140, 580, 4))
    return np.column_stack([xs.ravel(), ys.ravel()])


class MotionRenderer:
    """
    Tracked points of a static scene filmed by a camera rigidly mounted on the gyro.

    The camera-to-world rotation at time ``t`` is ``Q(t) * Rx(pi)``, with
    ``Q`` the integrated gyro orientation of the source.
    """

    MOUNT = Rotation.from_rotvec([np.pi, 0.0, 0.0])

    def __init__(self, source: GyroSource, lens: LensProfile, readout_time: float):
        quats = source.quaternions
        times = quats.timestamps_us / 1_000_000.0
        self.slerp = Slerp(times, Rotation.from_quat(quats.quats[:, [1, 2, 3, 0]]))
        self.time_range = (times[0], times[-1])
        self.lens = lens
        self.distortion = FisheyeDistortion(lens)
        self.readout_time = readout_time

    def camera_to_world(self, times: np.ndarray) -> Rotation:
        return self.slerp(np.clip(times, *self.time_range)) * self.MOUNT

    def row_times(self, points: np.ndarray, timestamp_us: int) -> np.ndarray:
        return timestamp_us / 1_000_000.0 + self.readout_time * points[:, 1] / FRAME_SIZE[1]

    def track(self, ts_a: int, ts_b: int, delay: float, points_a: np.ndarray = None):
        """
        Points of frame ``ts_a`` and where they land in frame ``ts_b`` when the
        gyro orientation at ``t + delay`` describes the camera at video time ``t``.
        """
        points_a = grid_points() if points_a is None else points_a

        normalized = self.lens.undistort_points(points_a, FRAME_SIZE)
        rays_a = np.column_stack([normalized, np.ones(len(normalized))])
        world = self.camera_to_world(self.row_times(points_a, ts_a) + delay).apply(rays_a)

        focal = np.array([self.lens.fx, self.lens.fy])
        center = np.array([self.lens.cx, self.lens.cy])

        # Fixed point on the scanline time of the landing row
        points_b = points_a.copy()
        for _ in range(3):
            rays_b = self.camera_to_world(self.row_times(points_b, ts_b) + delay).inv().apply(world)
            pinhole = rays_b[:, :2] / rays_b[:, 2:3] * focal + center
            points_b = self.distortion.distort_points(pinhole)

        return points_a, points_b


def add_tracked_frames(store: FrameResultStore, renderer: MotionRenderer, frame_indices, delay: float) -> None:
    for i in frame_indices:
        ts_a, ts_b = frame_ts(i), frame_ts(i + 1)
        points_a, points_b = renderer.track(ts_a, ts_b, delay)
        result = FrameResult(frame_size=FRAME_SIZE)
        result.set_optical_flow(1, ts_a, points_a, ts_b, points_b)
        store.insert(ts_a, result)


@pytest.fixture
def gyro_source() -> GyroSource:
    return make_gyro_source("XYZ")


@pytest.fixture
def two_window_dataset(gyro_source):
    """
    Window A holds three tracked frame pairs with the gyro 49.07 ms behind
    the video; window B holds a single pair.
    """
    delay = -0.04907
    renderer = MotionRenderer(gyro_source, make_lens(), 0.00001)

    store = FrameResultStore()
    add_tracked_frames(store, renderer, [30, 31, 32], delay)
    add_tracked_frames(store, renderer, [60], delay)

    ranges = [(frame_ts(30), frame_ts(33)), (frame_ts(60), frame_ts(61))]
    return store, ranges, make_params(gyro_source)


@pytest.fixture
def sync_params() -> SyncParams:
    return SyncParams(initial_offset=0.0, search_size=200.0)
