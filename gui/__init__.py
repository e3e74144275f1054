__all__ = ["ChartWindow"]

from .chart_window import ChartWindow
