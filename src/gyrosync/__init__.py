"""
gyrosync
========

Time offset estimation between a gyroscope stream and the motion of
tracked optical flow points in a video, for footage stabilization.

Main components:
- frame_results: per-frame optical flow results and their store
- point_collector: tracked frame pairs per sync window
- rolling_shutter: lens undistortion and scanline timestamps of points
- quaternions: gyro quaternion convention adapter
- optimizer: offset cost function and grid / coarse-to-fine searches
- rs_sync: sync orchestration and IMU orientation guessing
- gyro_source: gyro samples, mounting orientation and integration
- lens_profile: Gyroflow-compatible lens profiles
"""

__version__ = "0.1.0"

from .config import Config, SyncParams, ComputeParams
from .frame_results import FrameResult, FrameResultStore, FlowStatus
from .gyro_source import GyroSource, SharedGyroSource, TimeQuat
from .lens_profile import LensProfile, load_lens_profile
from .orientation import AxisOrientation, CANDIDATE_ORIENTATIONS, parse_orientation
from .optimizer import SyncProblem
from .rolling_shutter import PointCountMismatchError
from .rs_sync import FindOffsetsRssync, find_offsets, guess_orientation, median_offset
from .sync_ranges import plan_sync_ranges

__all__ = [
    "Config",
    "SyncParams",
    "ComputeParams",
    "FrameResult",
    "FrameResultStore",
    "FlowStatus",
    "GyroSource",
    "SharedGyroSource",
    "TimeQuat",
    "LensProfile",
    "load_lens_profile",
    "AxisOrientation",
    "CANDIDATE_ORIENTATIONS",
    "parse_orientation",
    "SyncProblem",
    "PointCountMismatchError",
    "FindOffsetsRssync",
    "find_offsets",
    "guess_orientation",
    "median_offset",
    "plan_sync_ranges",
    "__version__",
]
