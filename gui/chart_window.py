from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pyqtgraph as pg
from PySide6 import QtCore, QtWidgets

from core.synchronizer import StreamSynchronizer
from shared.models import ProjectedFrame

logger = logging.getLogger(__name__)

PLOT_RANGE = (-0.6, 0.6)


class ChartWindow(QtWidgets.QMainWindow):
    """Two stacked plots redrawn from the synchronizer's projected coordinates on every frame."""

    def __init__(self, synchronizer: StreamSynchronizer, *, refresh_hz: float = 40.0, parent: Optional[QtWidgets.QWidget] = None) -> None:
        super().__init__(parent)
        self._synchronizer = synchronizer

        self.setWindowTitle("CTchart")
        self.resize(960, 640)

        central = QtWidgets.QWidget(self)
        layout = QtWidgets.QVBoxLayout(central)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(6)

        self._plot_a, self._curve_a = self._make_plot(layout, "b")
        self._plot_b, self._curve_b = self._make_plot(layout, "r")

        self._status = QtWidgets.QLabel(self)
        layout.addWidget(self._status)
        self.setCentralWidget(central)

        self._timer = QtCore.QTimer(self)
        self._timer.setInterval(max(1, int(round(1000.0 / max(refresh_hz, 1e-3)))))
        self._timer.timeout.connect(self._refresh)
        self._timer.start()

    def _make_plot(self, layout: QtWidgets.QVBoxLayout, color: str) -> tuple[pg.PlotWidget, pg.PlotCurveItem]:
        plot = pg.PlotWidget(background="w")
        plot.showGrid(x=True, y=True, alpha=0.25)
        plot.setMouseEnabled(x=False, y=False)
        plot.setXRange(*PLOT_RANGE, padding=0.0)
        plot.setYRange(*PLOT_RANGE, padding=0.0)
        curve = pg.PlotCurveItem(pen=pg.mkPen(color=color, width=2))
        plot.getPlotItem().addItem(curve)
        layout.addWidget(plot)
        return plot, curve

    def closeEvent(self, event: QtCore.QEvent) -> None:  # type: ignore[override]
        try:
            self._timer.stop()
            self._synchronizer.stop(timeout=2.0)
        finally:
            super().closeEvent(event)

    @QtCore.Slot()
    def _refresh(self) -> None:
        try:
            frame = self._synchronizer.project()
        except Exception as exc:
            logger.debug("Failed to project chart frame: %s", exc)
            return
        self._draw(frame)

    def _draw(self, frame: ProjectedFrame) -> None:
        self._set_curve(self._curve_a, frame.plot_a)
        self._set_curve(self._curve_b, frame.plot_b)
        self._plot_b.setVisible(frame.shows_plot_b)

        stats = self._synchronizer.stats()
        window = stats["window"]
        self._status.setText(
            f"{frame.mode} | points {frame.plot_a.shape[0]} | "
            f"t={window['last_time']:.3f} | failed cycles {stats['failed']}"
        )

    @staticmethod
    def _set_curve(curve: pg.PlotCurveItem, points: np.ndarray) -> None:
        if points.shape[0] == 0:
            curve.clear()
            return
        curve.setData(points[:, 0], points[:, 1], skipFiniteCheck=True)


__all__ = ["ChartWindow"]
