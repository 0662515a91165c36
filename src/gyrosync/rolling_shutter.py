"""
Rolling shutter and lens correction of tracked points.

Each tracked pixel is turned into a unit ray in camera coordinates and
stamped with the instant its scanline was captured.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .config import ComputeParams
from .point_collector import MatchedFrames

GLOBAL_SHUTTER_READOUT_MS = 0.01


class PointCountMismatchError(RuntimeError):
    """The two point lists of a tracked frame pair differ in length."""


@dataclass
class Correspondence:
    """Unit rays of one tracked frame pair with per-ray capture times."""

    key_ts: int  # µs, timestamp of the source frame
    ts_a: np.ndarray  # (N,) seconds
    ts_b: np.ndarray  # (N,) seconds
    rays_a: np.ndarray  # (N, 3)
    rays_b: np.ndarray  # (N, 3)

    def __len__(self) -> int:
        return len(self.ts_a)


def effective_readout_time(params: ComputeParams) -> float:
    """
    Time in seconds the sensor needs to scan one full frame.

    The configured readout time wins when nonzero, otherwise half a frame
    interval is assumed. Global shutter lenses get a fixed 10 µs.
    """
    frame_readout_time = params.frame_readout_time
    if frame_readout_time == 0.0:
        frame_readout_time = 1000.0 / params.scaled_fps / 2.0
    if params.lens.global_shutter:
        frame_readout_time = GLOBAL_SHUTTER_READOUT_MS
    return frame_readout_time / 1000.0


def undistort_points_for_optical_flow(
    points: np.ndarray,
    params: ComputeParams,
    frame_size: Tuple[int, int],
) -> np.ndarray:
    """Normalized undistorted coordinates (N, 2) of pixel points, one lens profile per run."""
    return params.lens.undistort_points(points, frame_size)


def scanline_timestamps(points: np.ndarray, timestamp_us: int, frame_height: int, readout_time: float) -> np.ndarray:
    """Capture time in seconds of each point's scanline."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return timestamp_us / 1_000_000.0 + readout_time * (points[:, 1] / float(frame_height))


def to_unit_rays(normalized: np.ndarray) -> np.ndarray:
    rays = np.column_stack([normalized, np.ones(len(normalized))])
    return rays / np.linalg.norm(rays, axis=1, keepdims=True)


def build_correspondence(matched: MatchedFrames, params: ComputeParams, readout_time: float) -> Correspondence:
    """
    Convert one tracked frame pair into timestamped unit rays.

    Raises:
        PointCountMismatchError: the tracker returned point lists of different
            length for the two frames
    """
    ((a_t, a_p), (b_t, b_p)), frame_size = matched
    a_p = np.asarray(a_p, dtype=np.float64).reshape(-1, 2)
    b_p = np.asarray(b_p, dtype=np.float64).reshape(-1, 2)
    if len(a_p) != len(b_p):
        raise PointCountMismatchError(
            f"Frame pair {a_t} -> {b_t} has {len(a_p)} source points but {len(b_p)} target points"
        )

    a = undistort_points_for_optical_flow(a_p, params, frame_size)
    b = undistort_points_for_optical_flow(b_p, params, frame_size)
    if len(a) != len(b):
        raise PointCountMismatchError(
            f"Undistortion of frame pair {a_t} -> {b_t} returned {len(a)} and {len(b)} points"
        )

    # Scanline time comes from the raw (distorted) row
    height = frame_size[1]
    return Correspondence(
        key_ts=int(a_t),
        ts_a=scanline_timestamps(a_p, a_t, height, readout_time),
        ts_b=scanline_timestamps(b_p, b_t, height, readout_time),
        rays_a=to_unit_rays(a),
        rays_b=to_unit_rays(b),
    )
