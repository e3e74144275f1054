"""Launch the CloudTurbine chart: poll one or two channels and plot them live.

Run ``python main.py --help`` for options. ``--headless`` skips the Qt window
and logs buffer status instead, which is handy on a server without a display.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Optional, Sequence

from core.synchronizer import StreamSynchronizer
from shared.chart_settings import ChartSettingsStore, SettingsPersistence
from shared.models import PLOT_MODES, ChannelConfig

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    defaults = ChannelConfig()
    parser = argparse.ArgumentParser(description="Real-time strip chart / cross plot of CloudTurbine channels.")
    parser.add_argument("--server", default=None, help=f"server URL (default {defaults.server_url})")
    parser.add_argument("--source", default=None, help=f"source name (default {defaults.source_name})")
    parser.add_argument("--chan1", default=None, help=f"first channel (default {defaults.channel1})")
    parser.add_argument("--chan2", default=None, help="second channel; pass '' for a single-channel chart")
    parser.add_argument("--mode", choices=PLOT_MODES, default=None)
    parser.add_argument("--max-points", type=int, default=None, help="history capacity per channel")
    parser.add_argument("--poll-interval", type=float, default=None, help="seconds between fetches")
    parser.add_argument("--scale", type=float, default=None, help="strip chart divisor for single-channel values")
    parser.add_argument("--refresh-hz", type=float, default=40.0, help="display refresh rate")
    parser.add_argument("--headless", action="store_true", help="run without a window and log status")
    parser.add_argument("--persist", action="store_true", help="remember settings via QSettings")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def settings_from_args(args: argparse.Namespace) -> ChartSettingsStore:
    persistence: Optional[SettingsPersistence] = None
    if args.persist:
        from shared.chart_settings import QSettingsPersistence

        persistence = QSettingsPersistence()
    store = ChartSettingsStore(persistence=persistence)
    overrides = {
        "server_url": args.server,
        "source_name": args.source,
        "channel1": args.chan1,
        "channel2": args.chan2,
        "mode": args.mode,
        "capacity": args.max_points,
        "poll_interval": args.poll_interval,
        "strip_scale": args.scale,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        store.update(**overrides)
    return store


def run_headless(synchronizer: StreamSynchronizer, status_interval: float = 1.0) -> int:
    stop = threading.Event()
    synchronizer.start()
    try:
        while not stop.wait(status_interval):
            frame = synchronizer.project()
            logger.info("points=%d/%d stats=%s", frame.plot_a.shape[0], frame.plot_b.shape[0], synchronizer.stats())
    except KeyboardInterrupt:
        pass
    finally:
        synchronizer.stop(timeout=2.0)
    return 0


def run_gui(synchronizer: StreamSynchronizer, refresh_hz: float) -> int:
    import pyqtgraph as pg
    from PySide6.QtWidgets import QApplication

    from gui.chart_window import ChartWindow

    pg.setConfigOptions(antialias=True)
    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("CTchart")
    window = ChartWindow(synchronizer, refresh_hz=refresh_hz)
    app.aboutToQuit.connect(lambda: synchronizer.stop(timeout=2.0))
    synchronizer.start()
    window.show()
    return app.exec()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    store = settings_from_args(args)
    config = store.get()
    logger.info(
        "Polling %s/%s channels %r %r every %.3f s (%s)",
        config.server_url, config.source_name, config.channel1, config.channel2, config.poll_interval, config.mode,
    )
    synchronizer = StreamSynchronizer(store)
    if args.headless:
        return run_headless(synchronizer)
    return run_gui(synchronizer, args.refresh_hz)


if __name__ == "__main__":
    raise SystemExit(main())
