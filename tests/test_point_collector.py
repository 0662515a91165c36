from __future__ import annotations

import threading

from gyrosync.frame_results import FlowStatus, FrameResult, FrameResultStore
from gyrosync.point_collector import collect_points


def _store() -> FrameResultStore:
    store = FrameResultStore()
    for ts in (300, 100, 200):
        result = FrameResult(frame_size=(640, 480))
        result.set_optical_flow(1, ts, [[1.0, 2.0]], ts + 100, [[1.5, 2.0]])
        store.insert(ts, result)

    skipped = FrameResult(frame_size=(640, 480))
    skipped.mark_unavailable(1)
    store.insert(150, skipped)
    store.insert(250, FrameResult(frame_size=(640, 480)))
    return store


def test_frame_results_report_flow_status() -> None:
    result = FrameResult(frame_size=(640, 480))
    assert result.flow_status() is FlowStatus.NOT_COMPUTED

    result.mark_unavailable()
    assert result.flow_status() is FlowStatus.UNAVAILABLE
    assert result.get_optical_flow() is None

    result.set_optical_flow(1, 0, [[0, 0]], 33, [[1, 1]])
    assert result.flow_status() is FlowStatus.AVAILABLE
    assert result.flow_status(2) is FlowStatus.NOT_COMPUTED


def test_store_range_is_half_open_and_sorted() -> None:
    store = _store()

    assert [ts for ts, _ in store.range(100, 300)] == [100, 150, 200, 250]
    assert store.first_timestamp == 100
    assert store.last_timestamp == 300
    assert 150 in store
    assert len(store) == 5


def test_only_available_flow_is_collected_in_order() -> None:
    points = collect_points(_store(), [(0, 1000)])

    assert len(points) == 1
    timestamps = [flow[0][0] for flow, _ in points[0]]
    assert timestamps == [100, 200, 300]
    assert all(size == (640, 480) for _, size in points[0])


def test_one_list_per_range() -> None:
    points = collect_points(_store(), [(100, 201), (250, 400), (1000, 2000)])

    assert [len(p) for p in points] == [2, 1, 0]


def test_empty_and_inverted_ranges_give_empty_lists() -> None:
    points = collect_points(_store(), [(200, 200), (300, 100)])

    assert points == [[], []]


def test_other_flow_keys_are_ignored() -> None:
    points = collect_points(_store(), [(0, 1000)], flow_key=2)

    assert points == [[]]


def test_lookups_wait_for_a_writer() -> None:
    store = _store()
    found = []

    def lookup() -> None:
        found.append((store.get(100) is not None, 150 in store, store.first_timestamp, store.last_timestamp))

    store.lock.acquire_write()
    reader = threading.Thread(target=lookup)
    reader.start()
    reader.join(timeout=0.2)
    try:
        assert reader.is_alive()
        assert found == []
    finally:
        store.lock.release_write()

    reader.join(timeout=5.0)
    assert not reader.is_alive()
    assert found == [(True, True, 100, 300)]
