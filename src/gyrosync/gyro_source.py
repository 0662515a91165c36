"""
Gyroscope source.

Holds raw IMU samples, applies the mounting orientation and integrates
angular velocity into a time-indexed quaternion series.

Features:
- Load gyro samples from numpy arrays or CSV
- IMU axis remapping (mounting orientation)
- Integration to rotation quaternions [w, x, y, z]
- Lock-guarded shared handle with deep-copy snapshots
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple, Union

import numpy as np
from scipy.spatial.transform import Rotation

from .locking import ReadWriteLock
from .orientation import AxisOrientation, IDENTITY, parse_orientation

logger = logging.getLogger(__name__)


@dataclass
class TimeQuat:
    """Orientation samples keyed by timestamp."""

    timestamps_us: np.ndarray  # (N,) int64 microseconds
    quats: np.ndarray  # (N, 4) quaternions [w, x, y, z]

    def __len__(self) -> int:
        return len(self.timestamps_us)

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray]]:
        return zip(self.timestamps_us.tolist(), self.quats)

    @classmethod
    def empty(cls) -> "TimeQuat":
        return cls(np.zeros(0, dtype=np.int64), np.zeros((0, 4)))


@dataclass
class IMUTransforms:
    """Transforms applied to raw IMU samples before integration."""

    imu_orientation: Optional[AxisOrientation] = None


class GyroSource:
    """
    Gyroscope data with its integrated orientation.

    ``quaternions`` is only valid after ``apply_transforms()``; the loaders
    call it for you.
    """

    def __init__(self):
        # Raw data storage
        self.timestamps_ms: np.ndarray = np.zeros(0)
        self.gyro_data: np.ndarray = np.zeros((0, 3))  # rad/s, sensor axes

        self.imu_transforms = IMUTransforms()
        self.quaternions = TimeQuat.empty()

    @property
    def num_samples(self) -> int:
        return len(self.timestamps_ms)

    @property
    def duration_ms(self) -> float:
        if self.num_samples < 2:
            return 0.0
        return float(self.timestamps_ms[-1] - self.timestamps_ms[0])

    def load_from_array(self, timestamps_ms: np.ndarray, gyro: np.ndarray) -> None:
        """
        Load gyro samples from numpy arrays.

        Args:
            timestamps_ms: Sample times in milliseconds, shape (N,)
            gyro: Angular velocities [rad/s], shape (N, 3)
        """
        timestamps_ms = np.asarray(timestamps_ms, dtype=np.float64).flatten()
        gyro = np.asarray(gyro, dtype=np.float64).reshape(-1, 3)
        if len(timestamps_ms) != len(gyro):
            raise ValueError(
                f"Timestamp count {len(timestamps_ms)} does not match gyro sample count {len(gyro)}"
            )

        order = np.argsort(timestamps_ms, kind="stable")
        self.timestamps_ms = timestamps_ms[order]
        self.gyro_data = gyro[order]
        self.apply_transforms()

    def load_from_csv(
        self,
        filepath,
        time_col: int = 0,
        gyro_cols: Tuple[int, int, int] = (1, 2, 3),
        time_scale: float = 1.0,
        gyro_scale: float = 1.0,
        skip_header: int = 1,
        delimiter: str = ",",
    ) -> None:
        """
        Load gyro samples from a CSV file.

        Args:
            filepath: Path to CSV file
            time_col: Column index for timestamps
            gyro_cols: Column indices for gyro X, Y, Z
            time_scale: Multiply timestamps by this to get milliseconds
            gyro_scale: Multiply gyro by this to get rad/s (e.g. pi/180 for deg/s)
            skip_header: Number of header rows to skip
            delimiter: CSV delimiter
        """
        data = np.loadtxt(filepath, delimiter=delimiter, skiprows=skip_header, ndmin=2)
        self.load_from_array(
            data[:, time_col] * time_scale,
            data[:, list(gyro_cols)] * gyro_scale,
        )
        logger.info(f"Loaded {self.num_samples} gyro samples over {self.duration_ms / 1000.0:.1f}s")

    def set_orientation(self, orientation: Union[str, AxisOrientation, None]) -> None:
        if isinstance(orientation, str):
            orientation = parse_orientation(orientation)
        self.imu_transforms.imu_orientation = orientation

    def raw_imu(self) -> np.ndarray:
        """Gyro samples with the IMU transforms applied, shape (N, 3)."""
        orientation = self.imu_transforms.imu_orientation or IDENTITY
        return orientation.apply(self.gyro_data)

    def apply_transforms(self) -> None:
        """Re-integrate the quaternion series from the transformed gyro samples."""
        if self.num_samples == 0:
            self.quaternions = TimeQuat.empty()
            return

        self.quaternions = TimeQuat(
            timestamps_us=np.round(self.timestamps_ms * 1000.0).astype(np.int64),
            quats=self._integrate_orientations(self.timestamps_ms / 1000.0, self.raw_imu()),
        )

    @staticmethod
    def _integrate_orientations(timestamps: np.ndarray, angular_velocity: np.ndarray) -> np.ndarray:
        """
        Integrate angular velocity to orientation quaternions.

        Each step composes the body-frame rotation ``exp(omega * dt)``, which is
        exact for angular velocity held constant over the step.
        """
        n_samples = len(timestamps)
        quaternions = np.zeros((n_samples, 4))
        quaternions[0] = [1, 0, 0, 0]  # Initial orientation (identity)
        if n_samples == 1:
            return quaternions

        dt = np.diff(timestamps)
        steps = Rotation.from_rotvec(angular_velocity[:-1] * dt[:, None])

        current = Rotation.identity()
        for i in range(1, n_samples):
            current = current * steps[i - 1]
            x, y, z, w = current.as_quat()
            quaternions[i] = [w, x, y, z]

        return quaternions

    def clone(self) -> "GyroSource":
        return copy.deepcopy(self)


class SharedGyroSource:
    """A GyroSource shared between threads behind a read-write lock."""

    def __init__(self, source: Optional[GyroSource] = None):
        self._source = source if source is not None else GyroSource()
        self._lock = ReadWriteLock()

    @contextmanager
    def read(self):
        with self._lock.read():
            yield self._source

    @contextmanager
    def write(self):
        with self._lock.write():
            yield self._source

    def snapshot(self) -> GyroSource:
        """Independent deep copy; changes to it are never visible here."""
        with self.read() as source:
            return source.clone()
