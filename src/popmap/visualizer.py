"""
Static snapshots of the population map.

This module renders the currently filtered feature set to an image with
matplotlib, styled after the map's light or dark theme.
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

import geopandas as gpd
import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.figure import Figure


SNAPSHOT_FORMATS = {
    "png": "image/png",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
}


@dataclass
class SnapshotStyle:
    """Configuration for snapshot styling.

    Attributes:
        background: Figure and axes background color
        text_color: Title and label color
        marker_color: Fill color of feature markers
        marker_edge_color: Outline color of feature markers
        marker_size: Marker area in points squared
        figsize: Figure size in inches (width, height)
        title: Snapshot title
    """
    background: str = "white"
    text_color: str = "#222222"
    marker_color: str = "white"
    marker_edge_color: str = "#333333"
    marker_size: float = 30
    figsize: Tuple[int, int] = (12, 8)
    title: Optional[str] = None

    @classmethod
    def for_theme(cls, is_dark_mode: bool, title: Optional[str] = None) -> "SnapshotStyle":
        if is_dark_mode:
            return cls(
                background="#242424",
                text_color="#f0f0f0",
                marker_edge_color="#9e9e9e",
                title=title,
            )
        return cls(background="#e8e8e8", title=title)


class SnapshotRenderer:
    """Creates static images of a feature set."""

    def __init__(self, style: Optional[SnapshotStyle] = None):
        self.default_style = style or SnapshotStyle()

    def plot(
        self,
        data: gpd.GeoDataFrame,
        style: Optional[SnapshotStyle] = None,
        ax: Optional[Axes] = None
    ) -> Tuple[Figure, Axes]:
        """Plot features onto a themed figure.

        Args:
            data: Features to draw
            style: Styling options
            ax: Existing axes to plot on (creates new if None)

        Returns:
            Tuple of (Figure, Axes)
        """
        style = style or self.default_style

        if ax is None:
            fig, ax = plt.subplots(1, 1, figsize=style.figsize)
        else:
            fig = ax.get_figure()

        fig.patch.set_facecolor(style.background)
        ax.set_facecolor(style.background)

        if data.empty:
            ax.text(
                0.5, 0.5, "No features in range",
                color=style.text_color, ha="center", va="center",
                transform=ax.transAxes,
            )
        else:
            data.plot(
                ax=ax,
                color=style.marker_color,
                edgecolor=style.marker_edge_color,
                markersize=style.marker_size,
                linewidth=0.8,
            )

        if style.title:
            ax.set_title(style.title, fontsize=14, fontweight='bold', color=style.text_color)

        ax.set_axis_off()
        plt.tight_layout()
        return fig, ax

    def to_bytes(self, fig: Figure, format: str = "png", dpi: int = 100) -> bytes:
        """Serialize a figure to image bytes."""
        if format not in SNAPSHOT_FORMATS:
            raise ValueError(
                f"Unsupported snapshot format: {format}. Available: {list(SNAPSHOT_FORMATS)}"
            )
        buffer = io.BytesIO()
        fig.savefig(
            buffer,
            format=format,
            dpi=dpi,
            bbox_inches='tight',
            facecolor=fig.get_facecolor(),
        )
        return buffer.getvalue()


def render_snapshot(
    data: gpd.GeoDataFrame,
    is_dark_mode: bool = False,
    title: Optional[str] = None,
    format: str = "png",
    dpi: int = 100
) -> bytes:
    """Convenience function to render a feature set straight to image bytes.

    Example:
        >>> png = render_snapshot(features, is_dark_mode=True, title="Population")
    """
    renderer = SnapshotRenderer(SnapshotStyle.for_theme(is_dark_mode, title))
    fig, _ = renderer.plot(data)
    try:
        return renderer.to_bytes(fig, format=format, dpi=dpi)
    finally:
        plt.close(fig)
