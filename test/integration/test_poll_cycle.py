"""
End-to-end poll cycle tests: config → fetch → parse → history → projection.

The HTTP layer is replaced with FakeSession so every request URL and every
response is deterministic.
"""
from __future__ import annotations

import threading
import time

import numpy as np
import pytest
import requests

from core.synchronizer import StreamSynchronizer
from daq.channel_fetcher import ChannelFetcher
from shared.chart_settings import ChartSettingsStore
from shared.models import ChannelConfig, FetchWindow
from test.fixtures.fake_server import FakeResponse, FakeSession

SERVER = "http://ct.example/CT"


def _headers(t: float, d: float) -> dict:
    return {"time": str(t), "duration": str(d)}


def _make(store: ChartSettingsStore, session: FakeSession) -> StreamSynchronizer:
    return StreamSynchronizer(store, fetcher=ChannelFetcher(session=session))


@pytest.fixture
def single_store() -> ChartSettingsStore:
    return ChartSettingsStore(ChannelConfig(server_url=SERVER, source_name="Audio", channel1="a", channel2="", capacity=4))


@pytest.fixture
def dual_store() -> ChartSettingsStore:
    return ChartSettingsStore(ChannelConfig(server_url=SERVER, source_name="Mouse", channel1="x", channel2="y", capacity=4))


class TestFetchWindowProgression:
    def test_first_fetch_is_latest_point_then_incremental(self, single_store):
        session = FakeSession({"a": [FakeResponse("1", _headers(100, 5)), FakeResponse("2", _headers(106, 1))]})
        sync = _make(single_store, session)

        assert sync.run_cycle() == "updated"
        assert sync.run_cycle() == "updated"

        assert session.requests[0] == f"{SERVER}/Audio/a?f=d"
        assert session.requests[1] == f"{SERVER}/Audio/a?f=d&t=105.001&d=10000"
        assert sync.window == FetchWindow(last_time=107.0, initialized=True)

    def test_header_parse_failure_resets_window(self, single_store):
        session = FakeSession({"a": [
            FakeResponse("1", _headers(100, 5)),
            FakeResponse("2", {"time": "bogus"}),
            FakeResponse("3", _headers(200, 0)),
        ]})
        sync = _make(single_store, session)

        sync.run_cycle()
        assert sync.run_cycle() == "updated"
        assert not sync.window.initialized
        sync.run_cycle()

        assert "&t=" not in session.requests[2]
        np.testing.assert_array_equal(sync.scalar_buffer.snapshot(), [1.0, 2.0, 3.0])
        assert sync.stats()["header_resets"] == 1

    def test_transport_failure_keeps_window_and_buffer(self, single_store):
        session = FakeSession({"a": [
            FakeResponse("1", _headers(100, 5)),
            FakeResponse("", status_code=500),
            FakeResponse("2", _headers(110, 0)),
        ]})
        sync = _make(single_store, session)

        sync.run_cycle()
        assert sync.run_cycle() == "failed"
        assert sync.window.last_time == 105.0
        assert sync.run_cycle() == "updated"

        assert session.requests[1] == session.requests[2]
        np.testing.assert_array_equal(sync.scalar_buffer.snapshot(), [1.0, 2.0])
        stats = sync.stats()
        assert stats["failed"] == 1 and stats["transport_errors"] == 1


class TestDualChannel:
    def test_pairs_are_positionally_aligned(self, dual_store):
        session = FakeSession({
            "x": [FakeResponse("1\n2\nX\n4", _headers(10, 1))],
            "y": [FakeResponse("10\n20\n30\n40", _headers(10, 1))],
        })
        sync = _make(dual_store, session)

        assert sync.run_cycle() == "updated"

        np.testing.assert_array_equal(sync.paired_buffer.snapshot(), [[1, 10], [2, 20], [4, 40]])
        assert len(sync.scalar_buffer) == 0
        assert sync.channel_count == 2

    def test_one_failed_channel_aborts_whole_cycle(self, dual_store):
        session = FakeSession({
            "x": [FakeResponse("0.5", _headers(10, 1))],
            "y": [requests.ConnectionError("down")],
        })
        sync = _make(dual_store, session)

        assert sync.run_cycle() == "failed"
        assert len(sync.paired_buffer) == 0
        assert not sync.window.initialized
        assert len(session.requests) == 2

    def test_capacity_enforced_after_each_cycle(self, dual_store):
        body_x = "\n".join(str(i / 10) for i in range(10))
        body_y = "\n".join(str(1 - i / 10) for i in range(10))
        session = FakeSession({"x": [FakeResponse(body_x)], "y": [FakeResponse(body_y)]})
        sync = _make(dual_store, session)

        sync.run_cycle()

        snap = sync.paired_buffer.snapshot()
        assert snap.shape == (4, 2)
        np.testing.assert_allclose(snap[:, 0], [0.6, 0.7, 0.8, 0.9])
        assert sync.stats()["evicted"] == 6


class TestConfigurationChanges:
    def test_disabling_channel1_clears_history_without_fetching(self, single_store):
        session = FakeSession({"a": [FakeResponse("1\n2", _headers(1, 1))]})
        sync = _make(single_store, session)
        sync.run_cycle()
        assert len(sync.scalar_buffer) == 2

        single_store.update(channel1="", channel2="b")
        assert sync.run_cycle() == "skipped"

        assert len(session.requests) == 1
        assert len(sync.scalar_buffer) == 0 and len(sync.paired_buffer) == 0
        assert sync.project().empty

    def test_disabling_channel2_switches_to_scalar_history(self, dual_store):
        session = FakeSession({
            "x": [FakeResponse("0.1\n0.2"), FakeResponse("30000")],
            "y": [FakeResponse("0.3\n0.4")],
        })
        sync = _make(dual_store, session)
        sync.run_cycle()
        assert len(sync.paired_buffer) == 2

        dual_store.update(channel2="")
        sync.run_cycle()

        assert len(sync.paired_buffer) == 0
        np.testing.assert_array_equal(sync.scalar_buffer.snapshot(), [30000.0])
        assert session.urls_for("y") == [f"{SERVER}/Mouse/y?f=d"]
        frame = sync.project()
        assert frame.plot_a.shape == (1, 3)
        assert frame.plot_b.shape == (0, 3)

    def test_projected_frame_follows_current_config_between_cycles(self, dual_store):
        session = FakeSession({"x": [FakeResponse("0.1")], "y": [FakeResponse("0.2")]})
        sync = _make(dual_store, session)
        sync.run_cycle()
        assert sync.project().shows_plot_b

        dual_store.update(channel2="")
        frame = sync.project()

        assert sync.channel_count == 2
        assert frame.channel_count == 1
        assert not frame.shows_plot_b

    def test_cross_plot_still_fetches_both_channels(self, dual_store):
        dual_store.update(mode="CrossPlot")
        session = FakeSession({"x": [FakeResponse("0.75")], "y": [FakeResponse("0.25")]})
        sync = _make(dual_store, session)

        sync.run_cycle()
        frame = sync.project()

        assert len(session.requests) == 2
        np.testing.assert_allclose(frame.plot_a[:, :2], [[0.25, -0.25]])
        assert frame.plot_b.shape == (0, 3)

    def test_capacity_change_applies_on_next_cycle(self, single_store):
        session = FakeSession({"a": [FakeResponse("1\n2\n3\n4")]})
        sync = _make(single_store, session)
        sync.run_cycle()
        assert len(sync.scalar_buffer) == 4

        single_store.update(capacity=2)
        sync.run_cycle()

        np.testing.assert_array_equal(sync.scalar_buffer.snapshot(), [3.0, 4.0])


class TestBackgroundLoop:
    def test_loop_polls_until_stopped_and_closes_session(self, single_store):
        single_store.update(poll_interval=0.01)
        session = FakeSession({"a": [FakeResponse("32768")]})
        sync = _make(single_store, session)

        sync.start()
        deadline = time.monotonic() + 5.0
        while sync.stats()["updated"] < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        sync.stop(timeout=2.0)

        assert sync.stats()["updated"] >= 3
        assert not sync.running
        assert session.closed
        assert sync.state == "idle"
        frame = sync.project()
        assert frame.plot_a[-1, 1] == 0.5

        requests_after_stop = len(session.requests)
        time.sleep(0.05)
        assert len(session.requests) == requests_after_stop

    def test_failures_do_not_stop_the_loop(self, single_store):
        single_store.update(poll_interval=0.01)
        session = FakeSession({"a": [requests.ConnectionError("down")] * 3 + [FakeResponse("1")]})
        sync = _make(single_store, session)

        sync.start()
        deadline = time.monotonic() + 5.0
        while sync.stats()["updated"] < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        sync.stop(timeout=2.0)

        stats = sync.stats()
        assert stats["failed"] >= 3
        assert stats["updated"] >= 1

    def test_stop_is_idempotent(self, single_store):
        sync = _make(single_store, FakeSession())
        sync.stop()
        sync.stop()
        assert not sync.running

    def test_restart_after_stop_is_refused(self, single_store):
        single_store.update(poll_interval=0.01)
        session = FakeSession({"a": [FakeResponse("1")]})
        sync = _make(single_store, session)

        sync.start()
        deadline = time.monotonic() + 5.0
        while sync.stats()["updated"] < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        sync.stop(timeout=2.0)
        requests_after_stop = len(session.requests)

        with pytest.raises(RuntimeError):
            sync.start()
        assert not sync.running
        time.sleep(0.05)
        assert len(session.requests) == requests_after_stop
        assert sync.stats()["transport_errors"] == 0

    def test_stop_timeout_keeps_thread_handle_until_it_exits(self, single_store):
        single_store.update(poll_interval=0.01)
        session = FakeSession({"a": [FakeResponse("1")]}, delay=0.5)
        sync = _make(single_store, session)

        sync.start()
        deadline = time.monotonic() + 5.0
        while session.active == 0 and time.monotonic() < deadline:
            time.sleep(0.005)
        sync.stop(timeout=0.01)

        assert sync.running
        sync.start()
        pollers = [t for t in threading.enumerate() if t.name == "StreamSynchronizer"]
        assert len(pollers) == 1

        sync.stop(timeout=2.0)
        assert not sync.running
        assert session.max_active == 1

    def test_display_reads_while_polling(self, dual_store):
        dual_store.update(poll_interval=0.005, capacity=50)
        body = "\n".join("0.5" for _ in range(7))
        session = FakeSession({"x": [FakeResponse(body)], "y": [FakeResponse(body)]})
        sync = _make(dual_store, session)
        errors: list[str] = []
        done = threading.Event()

        def display() -> None:
            while not done.is_set():
                frame = sync.project()
                if frame.plot_a.shape[0] > 50 or frame.plot_a.shape != frame.plot_b.shape:
                    errors.append(str(frame.plot_a.shape))

        reader = threading.Thread(target=display)
        reader.start()
        sync.start()
        time.sleep(0.2)
        sync.stop(timeout=2.0)
        done.set()
        reader.join(timeout=2.0)

        assert not errors
        assert session.max_active <= 2
