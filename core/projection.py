from __future__ import annotations

import numpy as np

from shared.models import ChannelConfig, ProjectedFrame


def strip_x_axis(n: int, capacity: int) -> np.ndarray:
    """
    Synthetic time axis for a strip chart: ``-0.5 + i / (capacity - 1)``.

    A full buffer spans [-0.5, 0.5]. With capacity 1 there is no span to
    divide, so every point sits at x = 0.
    """
    if n <= 0:
        return np.empty(0, dtype=np.float64)
    if capacity <= 1:
        return np.zeros(n, dtype=np.float64)
    return -0.5 + np.arange(n, dtype=np.float64) * (1.0 / (capacity - 1))


def _stack(x: np.ndarray, y: np.ndarray, depth: float) -> np.ndarray:
    return np.column_stack((x, y, np.full(x.shape[0], depth, dtype=np.float64)))


class CoordinateProjector:
    """Maps buffered samples into normalized plot space for the active mode."""

    def project(
        self,
        config: ChannelConfig,
        scalar_samples: np.ndarray,
        paired_samples: np.ndarray,
        channel_count: int,
    ) -> ProjectedFrame:
        capacity = config.capacity
        depth = config.plot_depth
        scalar = np.asarray(scalar_samples, dtype=np.float64).reshape(-1)[-capacity:]
        paired = np.asarray(paired_samples, dtype=np.float64).reshape(-1, 2)[-capacity:]

        if config.mode == "CrossPlot":
            # Samples are expected pre-normalized to [0, 1] on both axes
            points = _stack(paired[:, 0] - 0.5, paired[:, 1] - 0.5, depth)
            return ProjectedFrame(mode=config.mode, plot_a=points, channel_count=channel_count)

        if channel_count == 1:
            x = strip_x_axis(scalar.shape[0], capacity)
            return ProjectedFrame(
                mode=config.mode,
                plot_a=_stack(x, scalar / config.strip_scale, depth),
                channel_count=channel_count,
            )

        x = strip_x_axis(paired.shape[0], capacity)
        return ProjectedFrame(
            mode=config.mode,
            plot_a=_stack(x, paired[:, 0] - 0.5, depth),
            plot_b=_stack(x, paired[:, 1] - 0.5, depth),
            channel_count=channel_count,
        )


__all__ = ["CoordinateProjector", "strip_x_axis"]
