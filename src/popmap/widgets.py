"""
Map widgets attached to a view's UI.

Each widget wraps a Leaflet control provided by folium and adds it to the
rendered map at the position the view's UI assigned to it.
"""

from typing import Dict, List, Optional

from branca.element import MacroElement
from folium import plugins
from jinja2 import Template

from popmap.layers import GroupLayer


MEASUREMENT_TOOLS = ("distance", "area")

# View UI positions mapped to Leaflet control positions
LEAFLET_POSITIONS: Dict[str, str] = {
    "top-left": "topleft",
    "top-right": "topright",
    "bottom-left": "bottomleft",
    "bottom-right": "bottomright",
}


class Widget:
    """Base class for view widgets."""

    def __init__(self, view=None):
        self.view = view

    def to_folium(self, position: str, view) -> Optional[MacroElement]:
        """Build the Leaflet control for this widget.

        Args:
            position: View UI position the widget sits at
            view: View being rendered
        """
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class Search(Widget):
    """Location search box."""

    def __init__(self, view=None, all_placeholder: str = "Search for a location"):
        super().__init__(view)
        self.all_placeholder = all_placeholder

    def to_folium(self, position, view):
        return plugins.Geocoder(
            collapsed=False,
            position=LEAFLET_POSITIONS[position],
            add_marker=True,
            provider="nominatim",
            placeholder=self.all_placeholder,
        )


class LayerList(Widget):
    """List of the map's operational layers with visibility toggles."""

    def to_folium(self, position, view):
        groups: Dict[str, List] = {}
        exclusive = True
        for layer in view.map.layers:
            if isinstance(layer, GroupLayer):
                members = [view.rendered_layer(child) for child in layer.layers]
                exclusive = exclusive and layer.exclusive
            else:
                members = [view.rendered_layer(layer)]
            members = [m for m in members if m is not None]
            if members:
                groups[layer.title] = members

        if not groups:
            return None
        return plugins.GroupedLayerControl(
            groups=groups,
            exclusive_groups=exclusive,
            position=LEAFLET_POSITIONS[position],
            collapsed=False,
        )


class Measurement(Widget):
    """Distance and area measurement tool.

    Attributes:
        active_tool: "distance", "area" or None when idle
    """

    def __init__(self, view=None, active_tool: Optional[str] = None):
        super().__init__(view)
        self._active_tool: Optional[str] = None
        self.active_tool = active_tool

    @property
    def active_tool(self) -> Optional[str]:
        return self._active_tool

    @active_tool.setter
    def active_tool(self, tool: Optional[str]):
        if tool is not None and tool not in MEASUREMENT_TOOLS:
            raise ValueError(
                f"Unknown measurement tool: {tool!r}. Available: {list(MEASUREMENT_TOOLS)}"
            )
        self._active_tool = tool

    def clear(self):
        """Reset the active tool and discard measurements."""
        self._active_tool = None

    def to_folium(self, position, view):
        return MeasureTool(
            active_tool=self.active_tool,
            position=LEAFLET_POSITIONS[position],
            primary_length_unit="kilometers",
            secondary_length_unit="miles",
            primary_area_unit="sqkilometers",
            secondary_area_unit="acres",
        )

    def __repr__(self):
        return f"Measurement(active_tool={self.active_tool!r})"


class MeasureTool(plugins.MeasureControl):
    """Measure control that opens in measuring mode for the active tool.

    The tool is exposed on the map container as ``data-measure-tool`` so
    the page can label the running measurement.
    """

    _template = Template("""
        {% macro script(this, kwargs) %}
            var {{ this.get_name() }} = new L.Control.Measure({{ this.options|tojson }});
            {{ this._parent.get_name() }}.addControl({{ this.get_name() }});

            // leaflet-measure capture marker with Leaflet >= 1.8
            L.Control.Measure.include({
                _setCaptureMarkerIcon: function () {
                    this._captureMarker.options.autoPanOnFocus = false;
                    this._captureMarker.setIcon(
                        L.divIcon({iconSize: this._map.getSize().multiplyBy(2)})
                    );
                },
            });

            {% if this.active_tool %}
            {{ this._parent.get_name() }}.getContainer().setAttribute(
                "data-measure-tool", {{ this.active_tool|tojson }});
            {{ this.get_name() }}._expand();
            {{ this.get_name() }}._startMeasure();
            {% endif %}
        {% endmacro %}
    """)

    def __init__(self, active_tool: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.active_tool = active_tool


class ScaleControl(MacroElement):
    """Leaflet scale control at an arbitrary position."""

    _template = Template("""
        {% macro script(this, kwargs) %}
            L.control.scale({{ this.options|tojson }}).addTo({{ this._parent.get_name() }});
        {% endmacro %}
    """)

    def __init__(self, position: str = "bottomleft", metric: bool = True, imperial: bool = True):
        super().__init__()
        self._name = "ScaleControl"
        self.options = {"position": position, "metric": metric, "imperial": imperial}


class ScaleBar(Widget):
    """Scale bar in metric, imperial or dual units."""

    UNITS = ("metric", "imperial", "dual")

    def __init__(self, view=None, unit: str = "metric"):
        super().__init__(view)
        if unit not in self.UNITS:
            raise ValueError(f"Unknown scale bar unit: {unit!r}")
        self.unit = unit

    def to_folium(self, position, view):
        return ScaleControl(
            position=LEAFLET_POSITIONS[position],
            metric=self.unit in ("metric", "dual"),
            imperial=self.unit in ("imperial", "dual"),
        )


class CoordinateConversion(Widget):
    """Live readout of the pointer's coordinates."""

    def to_folium(self, position, view):
        return plugins.MousePosition(
            position=LEAFLET_POSITIONS[position],
            separator=" | ",
            prefix="Lat/Lon:",
            num_digits=5,
        )
