"""
Lens profiles and undistortion of tracked points.

Profiles use the Gyroflow lens profile JSON layout. Tracked pixel points
are mapped to undistorted normalized camera coordinates (x/z, y/z), which
the synchronizer turns into unit rays.

Supported distortion models:
- opencv_fisheye: equidistant fisheye, inverted with vectorized Newton steps
- opencv_standard: Brown-Conrady, inverted by cv2.undistortPoints
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

FISHEYE = "opencv_fisheye"
STANDARD = "opencv_standard"


@dataclass
class LensProfile:
    """Intrinsics of one camera/lens/video mode."""

    camera_brand: str
    camera_model: str

    calib_width: int
    calib_height: int

    distortion_model: str
    camera_matrix: np.ndarray  # 3x3 intrinsics at the calibration size
    distortion_coeffs: np.ndarray  # k1..k4 (fisheye) or OpenCV standard coefficients

    frame_readout_time: float = 0.0  # ms, 0 = unknown
    global_shutter: bool = False

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.camera_matrix[1, 2])

    @classmethod
    def pinhole(
        cls,
        width: int,
        height: int,
        focal_length_px: float,
        distortion_model: str = FISHEYE,
        global_shutter: bool = False,
    ) -> "LensProfile":
        """Distortion-free profile centered on the frame."""
        matrix = np.eye(3)
        matrix[0, 0] = matrix[1, 1] = focal_length_px
        matrix[:2, 2] = (width / 2, height / 2)
        return cls(
            camera_brand="Unknown",
            camera_model="Unknown",
            calib_width=width,
            calib_height=height,
            distortion_model=distortion_model,
            camera_matrix=matrix,
            distortion_coeffs=np.zeros(4),
            global_shutter=global_shutter,
        )

    def scale_to_resolution(self, width: int, height: int) -> "LensProfile":
        """
        Profile for frames of another size.

        Focal lengths and principal point follow the resolution, distortion
        coefficients are dimensionless.
        """
        matrix = self.camera_matrix.astype(np.float64)
        matrix[0, :] *= width / self.calib_width
        matrix[1, :] *= height / self.calib_height
        return replace(
            self,
            calib_width=width,
            calib_height=height,
            camera_matrix=matrix,
            distortion_coeffs=np.array(self.distortion_coeffs, dtype=np.float64),
        )

    def undistort_points(self, points: np.ndarray, frame_size: Tuple[int, int]) -> np.ndarray:
        """
        Args:
            points: (N, 2) pixel coordinates
            frame_size: (width, height) of the frame the points were tracked in

        Returns:
            (N, 2) undistorted normalized coordinates
        """
        profile = self
        if (self.calib_width, self.calib_height) != tuple(frame_size):
            profile = self.scale_to_resolution(*frame_size)
        return make_distortion(profile).undistort_points_normalized(points)


def _profile_from_dict(data: dict) -> LensProfile:
    # Gyroflow nests intrinsics under fisheye_params, older files keep them at the top level
    intrinsics = data.get("fisheye_params", data)
    calib = data.get("calib_dimension", {})
    return LensProfile(
        camera_brand=data.get("camera_brand", "Unknown"),
        camera_model=data.get("camera_model", "Unknown"),
        calib_width=int(calib.get("w", 1920)),
        calib_height=int(calib.get("h", 1080)),
        distortion_model=data.get("distortion_model", FISHEYE),
        camera_matrix=np.array(intrinsics.get("camera_matrix", np.eye(3)), dtype=np.float64),
        distortion_coeffs=np.array(intrinsics.get("distortion_coeffs", np.zeros(4)), dtype=np.float64),
        frame_readout_time=float(data.get("frame_readout_time") or 0.0),
        global_shutter=bool(data.get("global_shutter", False)),
    )


def load_lens_profile(path: Path) -> LensProfile:
    """Read a Gyroflow lens profile JSON file."""
    with open(path, "r") as f:
        profile = _profile_from_dict(json.load(f))
    logger.debug(
        f"Lens {profile.camera_brand} {profile.camera_model} "
        f"({profile.calib_width}x{profile.calib_height}, {profile.distortion_model}) from {path}"
    )
    return profile


def _to_normalized(profile: LensProfile, pixels: np.ndarray) -> np.ndarray:
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    return (pixels - (profile.cx, profile.cy)) / (profile.fx, profile.fy)


def _to_pixels(profile: LensProfile, normalized: np.ndarray) -> np.ndarray:
    return normalized * (profile.fx, profile.fy) + (profile.cx, profile.cy)


class FisheyeDistortion:
    """
    OpenCV fisheye model.

        theta_d = theta * (1 + k1*theta^2 + k2*theta^4 + k3*theta^6 + k4*theta^8)

    with theta the angle of the ray to the optical axis. The model maps the
    radius tan(theta) of an undistorted normalized point to theta_d.
    """

    EPS = 1e-10
    MAX_ITERATIONS = 10

    def __init__(self, profile: LensProfile):
        self.profile = profile
        coeffs = np.asarray(profile.distortion_coeffs, dtype=np.float64).ravel()[:4]
        self.k = np.pad(coeffs, (0, 4 - len(coeffs)))

    def _theta_d(self, theta: np.ndarray) -> np.ndarray:
        t2 = theta * theta
        return theta * (1 + t2 * (self.k[0] + t2 * (self.k[1] + t2 * (self.k[2] + t2 * self.k[3]))))

    def _theta_d_prime(self, theta: np.ndarray) -> np.ndarray:
        t2 = theta * theta
        return 1 + t2 * (3 * self.k[0] + t2 * (5 * self.k[1] + t2 * (7 * self.k[2] + t2 * 9 * self.k[3])))

    def distort(self, normalized: np.ndarray) -> np.ndarray:
        """Distort (N, 2) undistorted normalized points."""
        xy = np.asarray(normalized, dtype=np.float64).reshape(-1, 2)
        r = np.hypot(xy[:, 0], xy[:, 1])
        scale = np.ones_like(r)
        off_axis = r > self.EPS
        scale[off_axis] = self._theta_d(np.arctan(r[off_axis])) / r[off_axis]
        return xy * scale[:, None]

    def undistort(self, normalized: np.ndarray) -> np.ndarray:
        """
        Invert ``distort`` for (N, 2) distorted normalized points.

        Points whose Newton iteration hits a flat derivative are returned
        unchanged.
        """
        xy = np.asarray(normalized, dtype=np.float64).reshape(-1, 2)
        r_d = np.hypot(xy[:, 0], xy[:, 1])
        theta_d = np.minimum(r_d, np.pi / 2)

        theta = theta_d.copy()
        valid = r_d > self.EPS
        active = valid.copy()
        for _ in range(self.MAX_ITERATIONS):
            if not active.any():
                break
            t = theta[active]
            slope = self._theta_d_prime(t)
            flat = np.abs(slope) < self.EPS

            idx = np.flatnonzero(active)
            valid[idx[flat]] = False
            active[idx[flat]] = False

            step = (self._theta_d(t[~flat]) - theta_d[idx[~flat]]) / slope[~flat]
            theta[idx[~flat]] -= step
            active[idx[~flat][np.abs(step) < self.EPS]] = False

        scale = np.ones_like(r_d)
        scale[valid] = np.tan(theta[valid]) / r_d[valid]
        return xy * scale[:, None]

    def distort_points(self, points: np.ndarray) -> np.ndarray:
        """Pixel coordinates of a pinhole image as seen through the lens."""
        return _to_pixels(self.profile, self.distort(_to_normalized(self.profile, points)))

    def undistort_points_normalized(self, points: np.ndarray) -> np.ndarray:
        """Undistorted normalized coordinates (N, 2) of pixel points."""
        return self.undistort(_to_normalized(self.profile, points))


class StandardDistortion:
    """OpenCV standard (Brown-Conrady) model."""

    def __init__(self, profile: LensProfile):
        self.profile = profile

    def undistort_points_normalized(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
        if len(points) == 0:
            return np.zeros((0, 2))
        undistorted = cv2.undistortPoints(
            points,
            self.profile.camera_matrix,
            np.asarray(self.profile.distortion_coeffs, dtype=np.float64),
        )
        return undistorted.reshape(-1, 2)


def make_distortion(profile: LensProfile):
    """Distortion handler for the profile's model."""
    if profile.distortion_model == FISHEYE:
        return FisheyeDistortion(profile)
    if profile.distortion_model == STANDARD:
        return StandardDistortion(profile)
    raise ValueError(f"Unknown distortion model: {profile.distortion_model}")
