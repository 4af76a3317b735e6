"""Tests for the visualizer module."""

import geopandas as gpd
import matplotlib
import pytest

matplotlib.use("Agg")

from popmap.visualizer import SnapshotRenderer, SnapshotStyle, render_snapshot  # noqa: E402


class TestSnapshotStyle:
    def test_themes_differ(self) -> None:
        light = SnapshotStyle.for_theme(False)
        dark = SnapshotStyle.for_theme(True, title="Population")
        assert light.background != dark.background
        assert dark.title == "Population"


class TestRenderSnapshot:
    def test_png(self, places) -> None:
        image = render_snapshot(places, title="Population")
        assert image.startswith(b"\x89PNG")

    def test_svg(self, places) -> None:
        image = render_snapshot(places, is_dark_mode=True, format="svg")
        assert b"<svg" in image

    def test_empty(self, places) -> None:
        image = render_snapshot(places.iloc[0:0])
        assert image.startswith(b"\x89PNG")

    def test_unknown_format(self, places) -> None:
        with pytest.raises(ValueError):
            render_snapshot(places, format="bmp")

    def test_draws_on_given_axes(self, places) -> None:
        import matplotlib.pyplot as plt

        fig, ax = plt.subplots()
        try:
            result_fig, result_ax = SnapshotRenderer().plot(places, ax=ax)
            assert result_fig is fig
            assert result_ax is ax
        finally:
            plt.close(fig)
