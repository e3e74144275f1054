from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, Literal, Tuple, get_args

import numpy as np


PlotMode = Literal["StripChart", "CrossPlot"]
PLOT_MODES: Tuple[str, ...] = get_args(PlotMode)


def _freeze_array(array: np.ndarray, *, ndim: int | None = None, columns: int | None = None) -> np.ndarray:
    """Return a read-only, C-contiguous float64 copy of `array`, validating dimensions."""
    arr = np.array(array, dtype=np.float64, copy=True, order="C")
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"array must be {ndim}D, got {arr.ndim}D")
    if columns is not None and arr.shape[-1] != columns:
        raise ValueError(f"array must have {columns} columns, got {arr.shape[-1]}")
    arr.setflags(write=False)
    return arr


# ----------------------------
# Configuration
# ----------------------------

@dataclass(frozen=True)
class ChannelConfig:
    """Snapshot of everything the poller needs for one cycle."""

    server_url: str = "http://localhost:8000/CT"
    source_name: str = "CTmousetrack"
    channel1: str = "x"
    channel2: str = "y"
    mode: PlotMode = "StripChart"
    capacity: int = 500
    poll_interval: float = 0.05
    strip_scale: float = 65536.0
    lookback_span: float = 10000.0
    request_timeout: float = 5.0
    plot_depth: float = -0.6

    def __post_init__(self) -> None:
        if self.mode not in PLOT_MODES:
            raise ValueError(f"mode must be one of {PLOT_MODES}, got {self.mode!r}")
        if isinstance(self.capacity, bool) or not isinstance(self.capacity, (int, np.integer)):
            raise ValueError("capacity must be an integer")
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        for name in ("poll_interval", "strip_scale", "request_timeout"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be positive")
        if not math.isfinite(float(self.lookback_span)) or self.lookback_span < 0:
            raise ValueError("lookback_span must be non-negative")
        if not math.isfinite(float(self.plot_depth)):
            raise ValueError("plot_depth must be finite")

        object.__setattr__(self, "capacity", int(self.capacity))
        object.__setattr__(self, "channel1", (self.channel1 or "").strip())
        object.__setattr__(self, "channel2", (self.channel2 or "").strip())

    @property
    def channel_count(self) -> int:
        """Channels to fetch per cycle; depends on the channel2 name only, never on mode."""
        return 2 if self.channel2 else 1


# ----------------------------
# Fetch bookkeeping
# ----------------------------

@dataclass(frozen=True)
class FetchWindow:
    """Server-side time boundary of the last successful retrieval."""

    last_time: float = 0.0
    initialized: bool = False

    def advanced_to(self, window_end: float | None) -> "FetchWindow":
        """Return the window after a successful cycle reporting `window_end`."""
        if window_end is None or not math.isfinite(window_end) or window_end <= 0:
            return FetchWindow()
        if self.initialized:
            window_end = max(self.last_time, window_end)
        return FetchWindow(last_time=float(window_end), initialized=True)


# ----------------------------
# Projection output
# ----------------------------

@dataclass(frozen=True)
class PlotPoint:
    x: float
    y: float
    depth: float


def _empty_points() -> np.ndarray:
    return np.empty((0, 3), dtype=np.float64)


def _freeze_points(points: np.ndarray) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        arr = arr.reshape(0, 3)
    return _freeze_array(arr, ndim=2, columns=3)


@dataclass(frozen=True)
class ProjectedFrame:
    """Normalized plot coordinates for one display tick.

    Each plot is an ``(n, 3)`` array of ``(x, y, depth)`` rows. Plot B is only
    populated for a two-channel strip chart.
    """

    mode: PlotMode
    plot_a: np.ndarray = field(default_factory=_empty_points)
    plot_b: np.ndarray = field(default_factory=_empty_points)
    channel_count: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "plot_a", _freeze_points(self.plot_a))
        object.__setattr__(self, "plot_b", _freeze_points(self.plot_b))

    def points(self, plot: Literal["a", "b"] = "a") -> Iterator[PlotPoint]:
        rows = self.plot_a if plot == "a" else self.plot_b
        for x, y, depth in rows:
            yield PlotPoint(float(x), float(y), float(depth))

    @property
    def empty(self) -> bool:
        return self.plot_a.shape[0] == 0 and self.plot_b.shape[0] == 0

    @property
    def shows_plot_b(self) -> bool:
        return self.mode == "StripChart" and self.channel_count == 2


__all__ = [
    "PlotMode",
    "PLOT_MODES",
    "ChannelConfig",
    "FetchWindow",
    "PlotPoint",
    "ProjectedFrame",
]
