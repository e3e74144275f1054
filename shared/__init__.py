"""
Shared data structures available to both the polling back end and the GUI.
"""

from .chart_settings import ChartSettingsStore, InMemoryPersistence
from .history_buffer import HistoryBuffer
from .models import ChannelConfig, FetchWindow, PlotPoint, ProjectedFrame

__all__ = [
    "ChannelConfig",
    "ChartSettingsStore",
    "FetchWindow",
    "HistoryBuffer",
    "InMemoryPersistence",
    "PlotPoint",
    "ProjectedFrame",
]
