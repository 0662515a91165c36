"""
Signed axis permutations describing how an IMU is mounted.

An orientation maps the raw sensor axes onto camera axes. Written as a
three-letter label, the n-th letter names the sensor axis feeding camera
axis n; a lower case letter negates it ("XyZ" keeps X and Z, flips Y).
"""

from typing import NamedTuple, Tuple

import numpy as np

_AXIS_NAMES = "XYZ"


class AxisOrientation(NamedTuple):
    """Source axis index and sign for each output axis."""

    axes: Tuple[int, int, int]
    signs: Tuple[int, int, int]

    @property
    def label(self) -> str:
        letters = []
        for axis, sign in zip(self.axes, self.signs):
            name = _AXIS_NAMES[axis]
            letters.append(name if sign > 0 else name.lower())
        return "".join(letters)

    @property
    def matrix(self) -> np.ndarray:
        """3x3 matrix with ``matrix @ v`` equal to ``apply(v)``."""
        m = np.zeros((3, 3))
        for row, (axis, sign) in enumerate(zip(self.axes, self.signs)):
            m[row, axis] = sign
        return m

    def apply(self, vectors: np.ndarray) -> np.ndarray:
        """Remap an (N, 3) array (or a single 3-vector) of sensor readings."""
        vectors = np.asarray(vectors, dtype=np.float64)
        return vectors[..., list(self.axes)] * np.asarray(self.signs, dtype=np.float64)

    def __str__(self) -> str:
        return self.label


def parse_orientation(label: str) -> AxisOrientation:
    """Parse a label such as ``"XyZ"`` into an AxisOrientation."""
    if len(label) != 3:
        raise ValueError(f"Orientation must have three letters: {label!r}")

    axes = []
    signs = []
    for letter in label:
        if letter.upper() not in _AXIS_NAMES:
            raise ValueError(f"Unknown axis {letter!r} in orientation {label!r}")
        axes.append(_AXIS_NAMES.index(letter.upper()))
        signs.append(1 if letter.isupper() else -1)

    if sorted(axes) != [0, 1, 2]:
        raise ValueError(f"Orientation must use each axis once: {label!r}")
    return AxisOrientation(tuple(axes), tuple(signs))


IDENTITY = AxisOrientation((0, 1, 2), (1, 1, 1))

# Every signed axis permutation, in the order the orientation guess visits them.
CANDIDATE_ORIENTATIONS: Tuple[AxisOrientation, ...] = (
    AxisOrientation((1, 0, 2), (1, -1, 1)),  # YxZ
    AxisOrientation((0, 1, 2), (1, -1, -1)),  # Xyz
    AxisOrientation((0, 2, 1), (1, 1, -1)),  # XZy
    AxisOrientation((2, 0, 1), (1, -1, -1)),  # Zxy
    AxisOrientation((2, 1, 0), (-1, -1, 1)),  # zyX
    AxisOrientation((1, 0, 2), (-1, -1, 1)),  # yxZ
    AxisOrientation((2, 0, 1), (1, 1, 1)),  # ZXY
    AxisOrientation((2, 1, 0), (-1, 1, -1)),  # zYx
    AxisOrientation((2, 1, 0), (1, 1, 1)),  # ZYX
    AxisOrientation((1, 0, 2), (-1, 1, -1)),  # yXz
    AxisOrientation((1, 2, 0), (1, 1, 1)),  # YZX
    AxisOrientation((0, 1, 2), (1, -1, 1)),  # XyZ
    AxisOrientation((1, 2, 0), (1, -1, -1)),  # Yzx
    AxisOrientation((2, 0, 1), (-1, 1, -1)),  # zXy
    AxisOrientation((1, 0, 2), (1, 1, -1)),  # YXz
    AxisOrientation((0, 1, 2), (-1, -1, -1)),  # xyz
    AxisOrientation((1, 2, 0), (-1, 1, -1)),  # yZx
    AxisOrientation((0, 1, 2), (1, 1, 1)),  # XYZ
    AxisOrientation((2, 0, 1), (-1, -1, -1)),  # zxy
    AxisOrientation((0, 1, 2), (-1, 1, -1)),  # xYz
    AxisOrientation((0, 1, 2), (1, 1, -1)),  # XYz
    AxisOrientation((2, 0, 1), (-1, -1, 1)),  # zxY
    AxisOrientation((2, 0, 1), (-1, 1, 1)),  # zXY
    AxisOrientation((0, 2, 1), (-1, 1, -1)),  # xZy
    AxisOrientation((2, 1, 0), (-1, -1, -1)),  # zyx
    AxisOrientation((0, 1, 2), (-1, -1, 1)),  # xyZ
    AxisOrientation((1, 0, 2), (1, -1, -1)),  # Yxz
    AxisOrientation((0, 2, 1), (-1, -1, -1)),  # xzy
    AxisOrientation((1, 2, 0), (-1, 1, 1)),  # yZX
    AxisOrientation((1, 2, 0), (-1, -1, 1)),  # yzX
    AxisOrientation((2, 1, 0), (1, 1, -1)),  # ZYx
    AxisOrientation((0, 1, 2), (-1, 1, 1)),  # xYZ
    AxisOrientation((2, 1, 0), (-1, 1, 1)),  # zYX
    AxisOrientation((2, 0, 1), (1, -1, 1)),  # ZxY
    AxisOrientation((1, 2, 0), (-1, -1, -1)),  # yzx
    AxisOrientation((0, 2, 1), (-1, 1, 1)),  # xZY
    AxisOrientation((0, 2, 1), (1, -1, -1)),  # Xzy
    AxisOrientation((0, 2, 1), (1, -1, 1)),  # XzY
    AxisOrientation((1, 2, 0), (1, -1, 1)),  # YzX
    AxisOrientation((2, 1, 0), (1, -1, -1)),  # Zyx
    AxisOrientation((0, 2, 1), (1, 1, 1)),  # XZY
    AxisOrientation((1, 0, 2), (-1, -1, -1)),  # yxz
    AxisOrientation((0, 2, 1), (-1, -1, 1)),  # xzY
    AxisOrientation((2, 1, 0), (1, -1, 1)),  # ZyX
    AxisOrientation((1, 0, 2), (1, 1, 1)),  # YXZ
    AxisOrientation((1, 0, 2), (-1, 1, 1)),  # yXZ
    AxisOrientation((1, 2, 0), (1, 1, -1)),  # YZx
    AxisOrientation((2, 0, 1), (1, 1, -1)),  # ZXy
)
