"""
Loading of synchronization datasets: tracked optical flow and gyro samples.

Optical flow JSON layout::

    {
      "frame_size": [960, 720],
      "frames": [
        {"timestamp_us": 1000000,
         "flow": {"1": {"from": [1000000, [[x, y], ...]],
                        "to":   [1033333, [[x, y], ...]]}}}
      ]
    }

A ``null`` flow entry marks a frame the tracker processed without a result.
Frames may override ``frame_size``.
"""

import json
import logging
from pathlib import Path

from .config import GyroConfig
from .frame_results import FrameResult, FrameResultStore
from .gyro_source import GyroSource

logger = logging.getLogger(__name__)


def load_optical_flow(path: Path) -> FrameResultStore:
    """
    Load tracked optical flow from JSON.

    Args:
        path: Path to optical flow JSON

    Returns:
        FrameResultStore keyed by frame timestamp (µs)
    """
    with open(path, "r") as f:
        data = json.load(f)

    default_size = tuple(data.get("frame_size", (0, 0)))
    store = FrameResultStore()

    for frame in data.get("frames", []):
        if "timestamp_us" not in frame:
            raise ValueError(f"Frame entry without timestamp_us in {path}")
        frame_size = tuple(frame.get("frame_size", default_size))
        if frame_size[1] <= 0:
            raise ValueError(f"Missing frame_size for frame {frame['timestamp_us']} in {path}")

        result = FrameResult(frame_size=(int(frame_size[0]), int(frame_size[1])))
        for key, entry in frame.get("flow", {}).items():
            if entry is None:
                result.mark_unavailable(int(key))
                continue
            ts_from, points_from = entry["from"]
            ts_to, points_to = entry["to"]
            result.set_optical_flow(int(key), ts_from, points_from, ts_to, points_to)

        store.insert(frame["timestamp_us"], result)

    logger.info(f"Loaded optical flow for {len(store)} frames from {path}")
    return store


def save_optical_flow(store: FrameResultStore, path: Path) -> None:
    """Write a FrameResultStore in the layout read by ``load_optical_flow``."""
    frames = []
    first, last = store.first_timestamp or 0, store.last_timestamp or 0
    with store.lock.read():
        for ts, result in store.range(first, last + 1):
            flow = {}
            for key, entry in result.optical_flow.items():
                if entry is None:
                    flow[str(key)] = None
                    continue
                (ts_from, points_from), (ts_to, points_to) = entry
                flow[str(key)] = {
                    "from": [int(ts_from), points_from.tolist()],
                    "to": [int(ts_to), points_to.tolist()],
                }
            frames.append({
                "timestamp_us": int(ts),
                "frame_size": list(result.frame_size),
                "flow": flow,
            })

    with open(path, "w") as f:
        json.dump({"frames": frames}, f)


def load_gyro(path: Path, config: GyroConfig) -> GyroSource:
    """Load gyro CSV samples and apply the configured mounting orientation."""
    source = GyroSource()
    source.set_orientation(config.imu_orientation)
    source.load_from_csv(
        path,
        time_col=config.time_col,
        gyro_cols=tuple(config.gyro_cols),
        time_scale=config.time_scale,
        gyro_scale=config.gyro_scale,
    )
    return source
