"""
Map views bound to page containers.

A MapView owns a WebMap and the widgets placed on its UI, renders them to
a folium map document, dispatches view events and answers hit tests
against the features it has drawn.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import folium
import geopandas as gpd
from branca.element import MacroElement
from jinja2 import Template

from popmap.datasource import LayerLoadError
from popmap.layers import FeatureLayer, GroupLayer, Layer
from popmap.spatial_ops import hit_test_features, meters_per_pixel
from popmap.widgets import Widget


logger = logging.getLogger(__name__)

# Basemap identifiers mapped to folium tile providers
BASEMAP_TILES: Dict[str, str] = {
    "gray-vector": "CartoDB positron",
    "dark-gray-vector": "CartoDB dark_matter",
}

# Scale denominator of Web Mercator zoom level 0 at 96 dpi
ZOOM0_SCALE = 591657527.591555
MAX_ZOOM = 22

POINTER_MOVE = "pointer-move"
LAYER_ERROR = "layerview-create-error"


class ViewError(RuntimeError):
    """Raised on invalid view lifecycle operations."""


def scale_to_zoom(scale: float) -> int:
    """Nearest Web Mercator zoom level for a scale denominator."""
    zoom = round(math.log2(ZOOM0_SCALE / scale))
    return max(0, min(MAX_ZOOM, zoom))


def zoom_to_scale(zoom: float) -> float:
    return ZOOM0_SCALE / (2 ** zoom)


class Container:
    """Page element a view is drawn into.

    Attributes:
        id: Element id in the page
        cursor: Current cursor style over the element
        view: Live view bound to the element, if any
    """

    def __init__(self, element_id: str):
        self.id = element_id
        self.cursor = "default"
        self.view: Optional["MapView"] = None

    def __repr__(self):
        return f"Container(id={self.id!r})"


class ViewUI:
    """Widgets placed at the four corners of a view."""

    POSITIONS = ("top-left", "top-right", "bottom-left", "bottom-right")

    def __init__(self):
        self._positions: Dict[str, List[Widget]] = {p: [] for p in self.POSITIONS}

    def add(self, widget: Widget, position: Union[str, Dict[str, Any]] = "top-left"):
        """Place a widget on the UI.

        Args:
            widget: Widget to show
            position: Position name, or a dict with ``position`` and
                optional ``index`` keys

        Adding a widget that is already shown moves it.
        """
        index = None
        if isinstance(position, dict):
            index = position.get("index")
            position = position.get("position", "top-left")
        if position not in self._positions:
            raise ValueError(
                f"Unknown UI position: {position!r}. Available: {list(self.POSITIONS)}"
            )

        self.remove(widget)
        widgets = self._positions[position]
        if index is None:
            widgets.append(widget)
        else:
            widgets.insert(index, widget)

    def remove(self, widget: Widget):
        for widgets in self._positions.values():
            if widget in widgets:
                widgets.remove(widget)

    def find(self, widget: Widget) -> Optional[str]:
        """Position a widget is shown at, or None."""
        for position, widgets in self._positions.items():
            if widget in widgets:
                return position
        return None

    def empty(self):
        for widgets in self._positions.values():
            widgets.clear()

    @property
    def components(self) -> List[Tuple[str, Widget]]:
        return [(p, w) for p in self.POSITIONS for w in self._positions[p]]

    def __contains__(self, widget):
        return self.find(widget) is not None


class WebMap:
    """A basemap plus an ordered list of operational layers."""

    def __init__(self, basemap: str, layers: Optional[List[Layer]] = None):
        if basemap not in BASEMAP_TILES:
            raise ValueError(
                f"Unknown basemap: {basemap!r}. Available: {list(BASEMAP_TILES)}"
            )
        self.basemap = basemap
        self.layers: List[Layer] = list(layers or [])

    def add(self, layer: Layer) -> "WebMap":
        self.layers.append(layer)
        return self

    def visible_layers(self) -> List[Layer]:
        """Visible leaf layers in drawing order (bottom first)."""
        def walk(layers):
            for layer in layers:
                if not layer.visible:
                    continue
                if isinstance(layer, GroupLayer):
                    yield from walk(layer.layers)
                else:
                    yield layer
        return list(walk(self.layers))


@dataclass
class Graphic:
    """A drawn feature returned by a hit test."""
    attributes: Dict[str, Any]
    geometry: Any
    layer: Layer


@dataclass
class HitTestResult:
    """Graphics under a map point, topmost layer and nearest feature first."""
    results: List[Graphic] = field(default_factory=list)


@dataclass
class MapPoint:
    latitude: float
    longitude: float


@dataclass
class PointerEvent:
    point: MapPoint
    zoom: Optional[float] = None


@dataclass
class LayerViewErrorEvent:
    layer: Layer
    error: Exception


class PointerMoveHandler(MacroElement):
    """Posts pointer positions to a hit-test endpoint and applies the cursor it returns."""

    _template = Template("""
        {% macro script(this, kwargs) %}
        (function() {
            var map = {{ this._parent.get_name() }};
            var waiting = false;
            map.on("mousemove", function(e) {
                if (waiting) { return; }
                waiting = true;
                setTimeout(function() { waiting = false; }, {{ this.throttle_ms }});
                fetch({{ this.endpoint|tojson }}, {
                    method: "POST",
                    credentials: "same-origin",
                    headers: {"Content-Type": "application/json"},
                    body: JSON.stringify({lat: e.latlng.lat, lng: e.latlng.lng, zoom: map.getZoom()})
                }).then(function(response) {
                    return response.json();
                }).then(function(data) {
                    map.getContainer().style.cursor = data.cursor || "default";
                }).catch(function() {
                    map.getContainer().style.cursor = "default";
                });
            });
        })();
        {% endmacro %}
    """)

    def __init__(self, endpoint: str, throttle_ms: int = 100):
        super().__init__()
        self._name = "PointerMoveHandler"
        self.endpoint = endpoint
        self.throttle_ms = throttle_ms


class MapView:
    """A map drawn into a container.

    Only one live view may be bound to a container at a time; call
    ``destroy()`` before binding a new one.
    """

    def __init__(
        self,
        container: Container,
        map: WebMap,
        center: Tuple[float, float] = (0.0, 0.0),
        scale: float = 50_000_000,
        hit_tolerance_px: int = 6,
    ):
        """Initialize the view.

        Args:
            container: Container to draw into
            map: Map to display
            center: Initial (latitude, longitude)
            scale: Initial scale denominator
            hit_tolerance_px: Hit-test search radius in pixels

        Raises:
            ViewError: If the container already has a live view
        """
        if container.view is not None and not container.view.destroyed:
            raise ViewError(f"{container!r} is already bound to a live view")

        self.container = container
        self.map = map
        self.center = center
        self.scale = scale
        self.hit_tolerance_px = hit_tolerance_px
        self.ui = ViewUI()
        self.destroyed = False
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._rendered: Dict[int, Any] = {}

        container.view = self
        logger.debug("Created view on %r with basemap %s", container, map.basemap)

    @property
    def zoom(self) -> int:
        return scale_to_zoom(self.scale)

    def _check_alive(self):
        if self.destroyed:
            raise ViewError("View has been destroyed")

    def on(self, event: str, handler: Callable) -> Callable:
        """Register an event handler."""
        self._check_alive()
        self._handlers[event].append(handler)
        return handler

    def emit(self, event: str, payload: Any):
        for handler in list(self._handlers.get(event, [])):
            handler(payload)

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def rendered_layer(self, layer: Layer):
        """Folium object drawn for a layer in the last render."""
        return self._rendered.get(id(layer))

    def render(self, hit_test_url: Optional[str] = None) -> folium.Map:
        """Draw the map, its layers and UI widgets.

        Feature layers are (re)queried with their current definition
        expression. A layer that fails to load is drawn empty and reported
        through the ``layerview-create-error`` event.

        Args:
            hit_test_url: Endpoint pointer positions are posted to; pointer
                tracking is only wired when pointer-move handlers exist
        """
        self._check_alive()

        folium_map = folium.Map(
            location=list(self.center),
            zoom_start=self.zoom,
            tiles=BASEMAP_TILES[self.map.basemap],
            control_scale=False,
        )

        self._rendered = {}
        for layer in self.map.layers:
            self._add_layer(layer, folium_map)

        for position, widget in self.ui.components:
            element = widget.to_folium(position, self)
            if element is not None:
                element.add_to(folium_map)

        if hit_test_url and self.has_handlers(POINTER_MOVE):
            PointerMoveHandler(hit_test_url).add_to(folium_map)

        return folium_map

    def _add_layer(self, layer: Layer, folium_map: folium.Map):
        if isinstance(layer, GroupLayer):
            for child in layer.layers:
                self._add_layer(child, folium_map)
            return

        if isinstance(layer, FeatureLayer) and layer.visible:
            try:
                layer.load()
            except LayerLoadError as e:
                layer.features = None
                self.emit(LAYER_ERROR, LayerViewErrorEvent(layer, e))

        element = layer.to_folium()
        element.add_to(folium_map)
        self._rendered[id(layer)] = element

    def to_html(self, hit_test_url: Optional[str] = None) -> str:
        """Render the view as a standalone HTML document."""
        return self.render(hit_test_url).get_root().render()

    def pointer_move(self, latitude: float, longitude: float, zoom: Optional[float] = None):
        """Dispatch a pointer-move event to the registered handlers."""
        self._check_alive()
        self.emit(POINTER_MOVE, PointerEvent(MapPoint(latitude, longitude), zoom))

    def hit_test(self, point: MapPoint, zoom: Optional[float] = None) -> HitTestResult:
        """Find the graphics drawn under a map point.

        Args:
            point: Map location of the pointer
            zoom: Current zoom level of the client map (defaults to the
                view's initial scale)

        Raises:
            LayerLoadError: If a feature layer has to be loaded and fails
        """
        self._check_alive()
        scale = zoom_to_scale(zoom) if zoom is not None else self.scale
        tolerance = meters_per_pixel(scale) * self.hit_tolerance_px

        results: List[Graphic] = []
        for layer in reversed(self.map.visible_layers()):
            if not isinstance(layer, FeatureLayer):
                continue
            features = layer.features if layer.features is not None else layer.load()
            hits = hit_test_features(features, point.latitude, point.longitude, tolerance)
            results.extend(self._graphics(hits, layer))
        return HitTestResult(results)

    @staticmethod
    def _graphics(hits: gpd.GeoDataFrame, layer: Layer) -> List[Graphic]:
        if hits.empty:
            return []
        geometry_name = hits.geometry.name
        attributes = hits.drop(columns=geometry_name).to_dict("records")
        return [
            Graphic(attributes=attrs, geometry=geom, layer=layer)
            for attrs, geom in zip(attributes, hits.geometry)
        ]

    def destroy(self):
        """Release the container and drop widgets and handlers."""
        if self.destroyed:
            return
        self.ui.empty()
        self._handlers.clear()
        self._rendered = {}
        if self.container.view is self:
            self.container.view = None
        self.container.cursor = "default"
        self.destroyed = True
        logger.debug("Destroyed view on %r", self.container)
