"""Core polling, parsing and projection utilities."""

from .parsing import parse_paired_samples, parse_scalar_samples, parse_value
from .projection import CoordinateProjector, strip_x_axis
from .synchronizer import StreamSynchronizer, SynchronizerStats
from shared.models import ChannelConfig, FetchWindow, PlotPoint, ProjectedFrame

__all__ = [
    "ChannelConfig",
    "FetchWindow",
    "PlotPoint",
    "ProjectedFrame",
    "CoordinateProjector",
    "StreamSynchronizer",
    "SynchronizerStats",
    "parse_paired_samples",
    "parse_scalar_samples",
    "parse_value",
    "strip_x_axis",
]
