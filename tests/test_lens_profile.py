from __future__ import annotations

import json

import numpy as np
import pytest

from gyrosync.lens_profile import FisheyeDistortion, LensProfile, load_lens_profile, make_distortion


def _fisheye() -> LensProfile:
    lens = LensProfile.pinhole(1920, 1080, 1100.0)
    lens.distortion_coeffs = np.array([0.05, -0.02, 0.01, -0.002])
    return lens


def test_fisheye_round_trip() -> None:
    distortion = FisheyeDistortion(_fisheye())
    points = np.array([[0.1, -0.2], [0.6, 0.3], [-0.9, 0.4], [0.0, 0.0]])

    distorted = distortion.distort(points)

    assert not np.allclose(distorted[:3], points[:3])
    assert np.allclose(distortion.undistort(distorted), points, atol=1e-8)


def test_fisheye_without_coefficients_is_equidistant() -> None:
    distortion = FisheyeDistortion(LensProfile.pinhole(640, 480, 500.0))

    distorted = distortion.distort([[1.0, 0.0]])

    assert np.allclose(distorted, [[np.pi / 4, 0.0]])


def test_undistort_pixels_to_normalized() -> None:
    lens = _fisheye()
    distortion = FisheyeDistortion(lens)
    undistorted = np.array([[1400.0, 300.0], [960.0, 540.0]])

    normalized = lens.undistort_points(distortion.distort_points(undistorted), (1920, 1080))

    expected = (undistorted - [lens.cx, lens.cy]) / [lens.fx, lens.fy]
    assert np.allclose(normalized, expected, atol=1e-8)


def test_points_from_smaller_frame_are_scaled() -> None:
    lens = LensProfile.pinhole(1920, 1080, 1000.0)

    normalized = lens.undistort_points(np.array([[960.0, 270.0]]), (960, 540))

    assert np.allclose(normalized, [[(960.0 - 480.0) / 500.0, 0.0]])


def test_scale_to_resolution() -> None:
    scaled = LensProfile.pinhole(1920, 1080, 1000.0).scale_to_resolution(960, 540)

    assert (scaled.calib_width, scaled.calib_height) == (960, 540)
    assert (scaled.fx, scaled.fy, scaled.cx, scaled.cy) == (500.0, 500.0, 480.0, 270.0)


def test_standard_model_uses_opencv() -> None:
    lens = LensProfile.pinhole(640, 480, 500.0, distortion_model="opencv_standard")
    lens.distortion_coeffs = np.zeros(5)

    normalized = lens.undistort_points(np.array([[420.0, 140.0]]), (640, 480))

    assert np.allclose(normalized, [[0.2, -0.2]], atol=1e-9)


def test_unknown_model_rejected() -> None:
    lens = LensProfile.pinhole(640, 480, 500.0, distortion_model="poly3")

    with pytest.raises(ValueError):
        make_distortion(lens)


def test_load_gyroflow_profile(tmp_path) -> None:
    path = tmp_path / "lens.json"
    path.write_text(json.dumps({
        "camera_brand": "GoPro",
        "camera_model": "HERO9",
        "calib_dimension": {"w": 2704, "h": 1520},
        "frame_readout_time": 15.2,
        "fisheye_params": {
            "camera_matrix": [[1200.0, 0, 1352.0], [0, 1200.0, 760.0], [0, 0, 1]],
            "distortion_coeffs": [0.04, 0.01, -0.01, 0.002],
        },
    }))

    lens = load_lens_profile(path)

    assert lens.camera_brand == "GoPro"
    assert (lens.calib_width, lens.calib_height) == (2704, 1520)
    assert lens.distortion_model == "opencv_fisheye"
    assert lens.frame_readout_time == 15.2
    assert lens.global_shutter is False
    assert lens.cx == 1352.0
