from __future__ import annotations

import logging
import threading

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from gyrosync.config import ComputeParams, SyncParams
from gyrosync.frame_results import FrameResult, FrameResultStore
from gyrosync.gyro_source import GyroSource, SharedGyroSource
from gyrosync.rolling_shutter import PointCountMismatchError
from gyrosync.rs_sync import FindOffsetsRssync, SearchContext, find_offsets, median_offset

from conftest import FPS, MotionRenderer, add_tracked_frames, frame_ts, make_lens, make_params


def test_two_windows_single_result_from_usable_window(two_window_dataset, sync_params, caplog) -> None:
    store, ranges, params = two_window_dataset

    with caplog.at_level(logging.WARNING, logger="gyrosync.rs_sync"):
        offsets = find_offsets(ranges, store, sync_params, params)

    assert len(offsets) == 1
    center, offset, cost = offsets[0]
    assert center == pytest.approx((frame_ts(30) + frame_ts(33)) / 2 / 1e6)
    # 10 µs global shutter readout: half of it is subtracted
    assert offset == pytest.approx(49.07 - 0.005, abs=0.05)
    assert cost >= 0.0
    assert "Not enough data for sync" in caplog.text


def test_initial_offset_centers_the_search(gyro_source) -> None:
    renderer = MotionRenderer(gyro_source, make_lens(), 0.00001)
    store = FrameResultStore()
    add_tracked_frames(store, renderer, [45, 46, 47], -0.120)
    ranges = [(frame_ts(45), frame_ts(48))]

    # 120 ms is outside a 50 ms search around zero but inside one around 100 ms
    offsets = find_offsets(ranges, store, SyncParams(initial_offset=100.0, search_size=50.0), make_params(gyro_source))

    assert len(offsets) == 1
    assert offsets[0][1] == pytest.approx(120.0 - 0.005, abs=0.05)


def test_result_near_search_boundary_is_rejected(gyro_source, caplog) -> None:
    renderer = MotionRenderer(gyro_source, make_lens(), 0.00001)
    store = FrameResultStore()
    add_tracked_frames(store, renderer, [30, 31, 32], -0.029)
    ranges = [(frame_ts(30), frame_ts(33))]

    with caplog.at_level(logging.WARNING, logger="gyrosync.rs_sync"):
        offsets = find_offsets(ranges, store, SyncParams(search_size=30.0), make_params(gyro_source))

    assert offsets == []
    assert "out of acceptable range" in caplog.text


def test_accepted_results_stay_inside_acceptance_radius(two_window_dataset) -> None:
    store, ranges, params = two_window_dataset
    sync_params = SyncParams(initial_offset=10.0, search_size=100.0)

    sync = FindOffsetsRssync(ranges, store, sync_params, params)
    offsets = sync.full_sync()

    readout_bias_ms = sync.frame_readout_time * 1000.0 / 2.0
    for _, offset, _ in offsets:
        internal = -(offset + readout_bias_ms)
        assert abs(internal - (-sync_params.initial_offset)) < 0.9 * sync_params.search_size


def test_cancel_before_start_returns_empty(two_window_dataset, sync_params) -> None:
    store, ranges, params = two_window_dataset
    cancel = threading.Event()
    cancel.set()
    calls = []

    offsets = find_offsets(ranges, store, sync_params, params, calls.append, cancel)

    assert offsets == []
    assert calls == []


def test_cancel_during_search_stops_at_first_poll(two_window_dataset, sync_params) -> None:
    store, ranges, params = two_window_dataset
    cancel = threading.Event()
    calls = []

    def progress(value: float) -> None:
        calls.append(value)
        cancel.set()

    offsets = find_offsets(ranges, store, sync_params, params, progress, cancel)

    assert offsets == []
    assert len(calls) == 1


def test_progress_is_bounded_and_completes(two_window_dataset, sync_params) -> None:
    store, ranges, params = two_window_dataset
    values = []

    find_offsets(ranges, store, sync_params, params, values.append)

    assert values
    assert all(0.0 <= v <= 1.0 for v in values)
    assert values == sorted(values)
    assert values[-1] == pytest.approx(1.0)


def test_no_usable_windows_gives_empty_list(gyro_source, sync_params) -> None:
    store = FrameResultStore()
    assert find_offsets([(0, 1_000_000)], store, sync_params, make_params(gyro_source)) == []
    assert find_offsets([], store, sync_params, make_params(gyro_source)) == []


def test_point_count_mismatch_aborts(gyro_source, sync_params) -> None:
    store = FrameResultStore()
    good = FrameResult(frame_size=(960, 720))
    good.set_optical_flow(1, frame_ts(0), [[100, 100], [200, 200]], frame_ts(1), [[101, 100], [201, 200]])
    bad = FrameResult(frame_size=(960, 720))
    bad.set_optical_flow(1, frame_ts(1), [[100, 100], [200, 200], [300, 300]], frame_ts(2), [[101, 100], [201, 200]])
    store.insert(frame_ts(0), good)
    store.insert(frame_ts(1), bad)

    with pytest.raises(PointCountMismatchError):
        find_offsets([(frame_ts(0), frame_ts(2))], store, sync_params, make_params(gyro_source))


def test_sync_points_span_first_source_to_last_target(two_window_dataset, sync_params) -> None:
    store, ranges, params = two_window_dataset
    sync = FindOffsetsRssync(ranges, store, sync_params, params)

    assert sync.sync_points == [(frame_ts(30), frame_ts(33))]
    assert sync.sync.num_tracks == 3


def test_search_context_progress_in_guess_mode() -> None:
    values = []
    context = SearchContext(values.append, None, num_sync_points=2)
    context.start_pass(guess_orient=True)

    context.advance_sync_point()
    assert context(0.5) is True
    assert values[-1] == pytest.approx((0 + (1 + 0.5) / 2) / 48)

    context.advance_orientation()
    assert context.current_sync_point == 0
    assert context.current_orientation == 1
    context(0.0)
    assert values[-1] == pytest.approx(1 / 48)

    context.cancel_flag.set()
    assert context(0.0) is False


def test_median_offset() -> None:
    assert median_offset([]) is None
    assert median_offset([(0.0, 3.0, 1.0)]) == 3.0
    assert median_offset([(0.0, 1.0, 1.0), (1.0, 4.0, 1.0), (2.0, 2.0, 1.0), (3.0, 3.0, 1.0)]) == 2.5


def test_offsets_recovered_while_camera_is_turned_away(gyro_source) -> None:
    lens = make_lens(distortion_coeffs=[0.03, -0.01, 0.004, 0.0])
    renderer = MotionRenderer(gyro_source, lens, 0.00001)
    store = FrameResultStore()
    for first in (30, 60, 90):
        add_tracked_frames(store, renderer, [first, first + 1, first + 2], -0.04907)
    ranges = [(frame_ts(first), frame_ts(first + 3)) for first in (30, 60, 90)]

    # Later windows are far from the starting orientation
    quats = gyro_source.quaternions
    for first in (60, 90):
        i = np.searchsorted(quats.timestamps_us, frame_ts(first))
        assert Rotation.from_quat(quats.quats[i, [1, 2, 3, 0]]).magnitude() > 0.4

    params = ComputeParams(gyro=SharedGyroSource(gyro_source), lens=lens, scaled_fps=FPS)
    offsets = find_offsets(ranges, store, SyncParams(initial_offset=0.0, search_size=200.0), params)

    assert len(offsets) == 3
    for _, offset, cost in offsets:
        assert offset == pytest.approx(49.07 - 0.005, abs=0.05)
        assert cost == pytest.approx(0.0, abs=1e-8)


def test_progress_advances_for_windows_without_result(gyro_source, sync_params, caplog) -> None:
    renderer = MotionRenderer(gyro_source, make_lens(), 0.00001)
    store = FrameResultStore()
    add_tracked_frames(store, renderer, [30, 31, 32, 60, 61, 62], 0.0)
    ranges = [(frame_ts(30), frame_ts(33)), (frame_ts(60), frame_ts(63))]
    # No gyro samples: the optimizer gives up before its first evaluation
    params = ComputeParams(gyro=SharedGyroSource(GyroSource()), lens=make_lens(), scaled_fps=FPS)
    values = []

    with caplog.at_level(logging.WARNING, logger="gyrosync.optimizer"):
        offsets = find_offsets(ranges, store, sync_params, params, values.append)

    assert offsets == []
    assert values == [pytest.approx(0.5), pytest.approx(1.0)]
    assert "at least 2 gyro samples" in caplog.text
