from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Literal, Optional, Union

import numpy as np

from daq.channel_fetcher import ChannelFetcher, FetchResult, TransportError
from shared.history_buffer import HistoryBuffer
from shared.models import ChannelConfig, FetchWindow, ProjectedFrame

from .parsing import parse_paired_samples, parse_scalar_samples
from .projection import CoordinateProjector

logger = logging.getLogger(__name__)

State = Literal["idle", "fetching", "parsing", "updating"]
CycleOutcome = Literal["updated", "skipped", "failed"]
ConfigProvider = Callable[[], ChannelConfig]


@dataclass
class SynchronizerStats:
    cycles: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    transport_errors: int = 0
    header_resets: int = 0
    samples_enqueued: int = 0
    evicted: int = 0

    def snapshot(self) -> Dict[str, int]:
        return {
            "cycles": self.cycles,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "transport_errors": self.transport_errors,
            "header_resets": self.header_resets,
            "samples_enqueued": self.samples_enqueued,
            "evicted": self.evicted,
        }


class StreamSynchronizer:
    """
    Poll thread that keeps the chart histories current.

    Each cycle re-reads the configuration, fetches one or two channels,
    parses the bodies and appends the samples to the active history buffer:
    the scalar buffer when one channel is configured, the paired buffer when
    two are. Cycles run back to back on a single thread, so the next fetch
    never starts before the previous buffer update has finished.

    The display side only calls `snapshot()` / `project()`, which copy buffer
    contents under the buffers' own locks.
    """

    def __init__(
        self,
        config: Union[ChannelConfig, ConfigProvider],
        *,
        fetcher: Optional[ChannelFetcher] = None,
        projector: Optional[CoordinateProjector] = None,
    ) -> None:
        if isinstance(config, ChannelConfig):
            fixed = config
            self._config_provider: ConfigProvider = lambda: fixed
        else:
            self._config_provider = config
        initial = self._config_provider()

        self._fetcher = fetcher if fetcher is not None else ChannelFetcher()
        self._projector = projector if projector is not None else CoordinateProjector()
        self.scalar_buffer = HistoryBuffer(initial.capacity, width=1)
        self.paired_buffer = HistoryBuffer(initial.capacity, width=2)

        self._lock = threading.Lock()
        self._window = FetchWindow()
        self._state: State = "idle"
        self._channel_count = initial.channel_count
        self._stats = SynchronizerStats()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start the poll thread. A stopped synchronizer cannot be restarted."""
        if self._thread and self._thread.is_alive():
            return
        if self._fetcher.closed:
            raise RuntimeError("StreamSynchronizer was stopped; create a new one to resume polling")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="StreamSynchronizer", daemon=True)
        self._thread.start()
        logger.info("Stream synchronizer started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and release the HTTP session. Safe to call repeatedly."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                # keep the handle so start() cannot launch an overlapping poll thread
                logger.warning("Stream synchronizer did not stop within %s s", timeout)
            else:
                self._thread = None
        self._fetcher.close()
        self._set_state("idle")
        logger.info("Stream synchronizer stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while True:
            interval = self._config_provider().poll_interval
            if self._stop_event.wait(interval):
                break
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Unexpected error in poll cycle")
                self._set_state("idle")

    # ------------------------------------------------------------------ #
    # Poll cycle
    # ------------------------------------------------------------------ #

    def run_cycle(self) -> CycleOutcome:
        """Run one fetch/parse/update cycle synchronously."""
        config = self._config_provider()
        channel_count = config.channel_count
        with self._lock:
            self._stats.cycles += 1
            self._channel_count = channel_count
            window = self._window

        if not config.channel1:
            # channel1 feeds both histories
            self.scalar_buffer.clear()
            self.paired_buffer.clear()
            return self._finish("skipped")
        if not config.channel2:
            self.paired_buffer.clear()

        self._set_state("fetching")
        try:
            results = self._fetcher.fetch_channels(config, window)
        except TransportError as exc:
            logger.warning("Channel fetch failed: %s", exc)
            with self._lock:
                self._stats.transport_errors += 1
            return self._finish("failed")

        self._set_state("parsing")
        if channel_count == 2:
            samples = parse_paired_samples(results[0].text, results[1].text)
            buffer = self.paired_buffer
        else:
            samples = parse_scalar_samples(results[0].text)
            buffer = self.scalar_buffer

        self._set_state("updating")
        buffer.set_capacity(config.capacity)
        added = buffer.extend(samples)
        evicted = buffer.enforce_capacity()
        self._advance_window(results[0])
        with self._lock:
            self._stats.samples_enqueued += added
            self._stats.evicted += evicted
        logger.debug("Cycle added %d sample(s), evicted %d, window=%s", added, evicted, self.window)
        return self._finish("updated")

    def _advance_window(self, result: FetchResult) -> None:
        with self._lock:
            if result.window_end is None:
                self._stats.header_resets += 1
            self._window = self._window.advanced_to(result.window_end)

    def _finish(self, outcome: CycleOutcome) -> CycleOutcome:
        with self._lock:
            setattr(self._stats, outcome, getattr(self._stats, outcome) + 1)
            self._state = "idle"
        return outcome

    def _set_state(self, state: State) -> None:
        with self._lock:
            self._state = state

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def window(self) -> FetchWindow:
        with self._lock:
            return self._window

    @property
    def channel_count(self) -> int:
        with self._lock:
            return self._channel_count

    @property
    def config(self) -> ChannelConfig:
        return self._config_provider()

    def snapshot(self) -> tuple[np.ndarray, np.ndarray]:
        """Copies of the scalar and paired histories."""
        return self.scalar_buffer.snapshot(), self.paired_buffer.snapshot()

    def project(self, config: Optional[ChannelConfig] = None) -> ProjectedFrame:
        config = config if config is not None else self._config_provider()
        scalar, paired = self.snapshot()
        return self._projector.project(config, scalar, paired, config.channel_count)

    def stats(self) -> Dict[str, object]:
        with self._lock:
            payload: Dict[str, object] = dict(self._stats.snapshot())
            payload["state"] = self._state
            payload["channel_count"] = self._channel_count
            payload["window"] = {"last_time": self._window.last_time, "initialized": self._window.initialized}
        payload["scalar_len"] = len(self.scalar_buffer)
        payload["paired_len"] = len(self.paired_buffer)
        return payload


__all__ = ["CycleOutcome", "StreamSynchronizer", "SynchronizerStats"]
