"""
Diagnostic plots for response curve estimation.

Shows how well the estimated curves explain the observed exposure mappings,
and the estimated transfer functions themselves.
"""

from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from sensor_response.config import VisualizationSettings, get_settings
from sensor_response.core.models import ExposureMapping, ResponseCurve
from sensor_response.curves.algebra import sample_uniform

CHANNEL_NAMES = ("Red", "Green", "Blue")


def _curve_values(curve: Union[ResponseCurve, Sequence[float], np.ndarray]) -> np.ndarray:
    if isinstance(curve, ResponseCurve):
        return curve.to_numpy().astype(np.float64)
    return np.asarray(curve, dtype=np.float64)


class ResponseVisualizer:
    """Matplotlib figures for exposure mappings and response curves."""

    def __init__(self, config: Optional[VisualizationSettings] = None):
        """
        Initialize the visualizer.

        Args:
            config: Visualization settings. Uses the global settings if not provided.
        """
        self.config = config or get_settings().visualization

    def _color(self, channel: int, count: int) -> str:
        if count == 1:
            return "black"
        return self.config.channel_colors[channel % len(self.config.channel_colors)]

    def _label(self, channel: int, count: int) -> str:
        if count == 1:
            return "Luminance"
        return CHANNEL_NAMES[channel] if channel < len(CHANNEL_NAMES) else f"Channel {channel}"

    def _new_figure(self):
        return plt.subplots(
            figsize=(self.config.figure_width, self.config.figure_height),
            dpi=self.config.dpi,
        )

    def _configure_axis(self, ax, title: str, x_label: str, y_label: str) -> None:
        ax.set_xlabel(x_label)
        ax.set_ylabel(y_label)
        ax.set_title(title)
        ax.grid(True, alpha=self.config.grid_alpha)
        ax.set_xlim(0, 1)
        ax.set_ylim(0, 1)
        ax.set_aspect("equal")

    def plot_exposure_mappings(
        self,
        mappings_per_channel: Sequence[Sequence[ExposureMapping]],
        curves: Sequence[Union[ResponseCurve, Sequence[float]]],
        title: str = "Exposure Mappings (linearized)",
    ):
        """
        Plot every mapping point projected through the estimated curves.

        Each point (x, y) is drawn at (f(x) * ratio, f(y)). With a good fit
        the points fall on the identity line.

        Args:
            mappings_per_channel: Mappings of each channel.
            curves: Estimated to-linear curve of each channel. A single curve
                is used for every channel.
            title: Plot title.

        Returns:
            Matplotlib figure.
        """
        if not curves:
            raise ValueError("At least one curve is required")
        fig, ax = self._new_figure()

        ax.plot(
            [0, 1], [0, 1],
            "--",
            color=self.config.reference_color,
            linewidth=self.config.line_width,
            label="Identity",
        )

        count = len(mappings_per_channel)
        for chan, mappings in enumerate(mappings_per_channel):
            if not mappings:
                continue
            table = _curve_values(curves[chan] if len(curves) > 1 else curves[0])
            xs, ys = [], []
            for mapping in mappings:
                pts = mapping.to_numpy()
                xs.append(sample_uniform(table, pts[:, 0]) * mapping.exposure_ratio)
                ys.append(sample_uniform(table, pts[:, 1]))
            ax.scatter(
                np.concatenate(xs),
                np.concatenate(ys),
                s=self.config.point_size,
                color=self._color(chan, count),
                alpha=0.6,
                label=self._label(chan, count),
            )

        self._configure_axis(ax, title, "Shorter exposure (linear, scaled)", "Longer exposure (linear)")
        ax.legend(loc="lower right")
        plt.tight_layout()
        return fig

    def plot_transfer_function(
        self,
        curves: Sequence[Union[ResponseCurve, Sequence[float]]],
        title: str = "Estimated Transfer Function",
    ):
        """
        Plot the to-linear curve of every channel.

        Args:
            curves: One to-linear curve per channel.
            title: Plot title.

        Returns:
            Matplotlib figure.
        """
        fig, ax = self._new_figure()

        count = len(curves)
        for chan, curve in enumerate(curves):
            values = _curve_values(curve)
            ax.plot(
                np.linspace(0.0, 1.0, len(values)),
                values,
                color=self._color(chan, count),
                linewidth=self.config.line_width,
                label=self._label(chan, count),
            )
        ax.plot(
            [0, 1], [0, 1],
            "--",
            color=self.config.reference_color,
            alpha=0.5,
            label="Linear Reference",
        )

        self._configure_axis(ax, title, "Encoded value", "Linear light")
        ax.legend(loc="upper left")
        plt.tight_layout()
        return fig

    def save(self, fig, path: Optional[Union[str, Path]] = None, format: Optional[str] = None):
        """
        Save a figure to a file, or render it to bytes.

        Args:
            fig: Matplotlib figure.
            path: Output path. When omitted the image bytes are returned.
            format: Output format; inferred from the path, PNG for bytes.

        Returns:
            The path written, or the image bytes.
        """
        if path is None:
            buffer = BytesIO()
            fig.savefig(buffer, format=format or "png", dpi=self.config.dpi, bbox_inches="tight")
            plt.close(fig)
            return buffer.getvalue()

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(
            path,
            format=format or path.suffix.lstrip(".") or "png",
            dpi=self.config.dpi,
            bbox_inches="tight",
        )
        plt.close(fig)
        return path
