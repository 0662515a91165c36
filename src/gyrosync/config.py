"""
Configuration management for gyro/video synchronization.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import yaml

from .gyro_source import SharedGyroSource
from .lens_profile import LensProfile


@dataclass
class SyncParams:
    """Offset search configuration."""

    initial_offset: float = 0.0  # ms, positive means gyro lags video
    search_size: float = 1000.0  # ms, half-width of the search window

    # Sync window planning
    time_per_syncpoint: float = 1000.0  # ms
    max_sync_points: int = 5

    guess_orientation: bool = False

    def __post_init__(self):
        if self.search_size <= 0:
            raise ValueError(f"search_size must be positive, got {self.search_size}")


@dataclass
class GyroConfig:
    """Gyro CSV layout and mounting."""

    imu_orientation: str = "XYZ"
    time_col: int = 0
    gyro_cols: Tuple[int, int, int] = (1, 2, 3)
    time_scale: float = 1.0  # multiply to get milliseconds
    gyro_scale: float = 1.0  # multiply to get rad/s


@dataclass
class VideoConfig:
    """Video timing and lens."""

    fps: float = 30.0
    frame_readout_time_ms: float = 0.0  # 0 = derive from fps
    lens_profile: Optional[str] = None  # Path to lens profile JSON
    global_shutter: bool = False
    focal_length_px: Optional[float] = None  # used when no lens profile is given


@dataclass
class ComputeParams:
    """Lens and gyro model shared by one synchronization run."""

    gyro: SharedGyroSource
    lens: LensProfile
    scaled_fps: float
    frame_readout_time: float = 0.0  # ms, 0 = derive from scaled_fps


@dataclass
class Config:
    """Main configuration container."""

    sync: SyncParams = field(default_factory=SyncParams)
    gyro: GyroConfig = field(default_factory=GyroConfig)
    video: VideoConfig = field(default_factory=VideoConfig)

    verbose: bool = False

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls._from_dict(data or {})

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        config = cls()

        if "sync" in data:
            config.sync = SyncParams(**data["sync"])
        if "gyro" in data:
            gyro_data = dict(data["gyro"])
            if "gyro_cols" in gyro_data:
                gyro_data["gyro_cols"] = tuple(gyro_data["gyro_cols"])
            config.gyro = GyroConfig(**gyro_data)
        if "video" in data:
            config.video = VideoConfig(**data["video"])

        config.verbose = data.get("verbose", False)

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return convert(dataclasses.asdict(obj))
            elif isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            elif isinstance(obj, tuple):
                return [convert(v) for v in obj]
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert(self)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
