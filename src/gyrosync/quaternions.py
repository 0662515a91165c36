"""
Quaternion convention adapter for the offset optimizer.

Gyro orientations are rotated 180° about X to match the camera frame used
by the optimizer, then conjugated. The optimizer takes [w, x, y, z].
"""

from typing import Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .gyro_source import TimeQuat

_FLIP_X = Rotation.from_rotvec([np.pi, 0.0, 0.0])


def adapt_quaternions(source_quats: TimeQuat) -> Tuple[np.ndarray, np.ndarray]:
    """
    Remap a quaternion series to the optimizer convention.

    Args:
        source_quats: Gyro orientations, quaternions [w, x, y, z]

    Returns:
        (timestamps_us, quats) with quats (N, 4) as [w, -x, -y, -z] of q * flip
    """
    timestamps = np.asarray(source_quats.timestamps_us, dtype=np.int64).copy()
    if len(source_quats) == 0:
        return timestamps, np.zeros((0, 4))

    q = np.asarray(source_quats.quats, dtype=np.float64)
    rotated = Rotation.from_quat(q[:, [1, 2, 3, 0]]) * _FLIP_X
    x, y, z, w = rotated.as_quat().T

    return timestamps, np.column_stack([w, -x, -y, -z])


def set_quats(sync, source_quats: TimeQuat) -> None:
    """Register an adapted quaternion series with an optimizer session."""
    timestamps, quats = adapt_quaternions(source_quats)
    sync.set_gyro_quaternions(timestamps, quats)
