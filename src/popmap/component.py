"""
The population map component.

MapComponent holds the page's state (theme flag, population range and the
measurement widget) and wires it to a MapView: it builds the view on mount,
rebuilds it when the theme changes, updates the feature filter in place and
drives the measurement tool and pointer cursor.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from popmap.config import Config, config as default_config
from popmap.datasource import DataSource, LayerLoadError, create_source
from popmap.layers import (
    FeatureLayer,
    GroupLayer,
    ImageLayer,
    PopupTemplate,
    SimpleMarkerSymbol,
    SimpleRenderer,
    VisibilityMode,
)
from popmap.spatial_ops import PopulationRange, build_definition_expression
from popmap.views import (
    LAYER_ERROR,
    POINTER_MOVE,
    Container,
    LayerViewErrorEvent,
    MapView,
    PointerEvent,
    WebMap,
)
from popmap.visualizer import render_snapshot
from popmap.widgets import CoordinateConversion, LayerList, Measurement, ScaleBar, Search


logger = logging.getLogger(__name__)

POPUP_CONTENT = "Name: {areaname} has a population of {pop2000} people."


@dataclass
class Notice:
    """A non-fatal message shown to the user."""
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"level": self.level, "message": self.message}


class MapComponent:
    """Interactive population map.

    Attributes:
        is_dark_mode: Current theme flag
        population_range: Current population filter range
        measurement_widget: Measurement widget of the current view
        view: Current map view (None while unmounted)
        feature_layer: Feature layer of the current view
    """

    def __init__(self, config: Optional[Config] = None, source: Optional[DataSource] = None):
        self.config = config or default_config
        self.source = source or create_source(self.config.feature_service)
        self.is_dark_mode = self.config.theme.start_dark
        self.population_range = PopulationRange(
            self.config.population.minimum, self.config.population.maximum
        )
        self.measurement_widget: Optional[Measurement] = None
        self.view: Optional[MapView] = None
        self.feature_layer: Optional[FeatureLayer] = None
        self.container: Optional[Container] = None
        self._notices: List[Notice] = []
        # Serializes concurrent requests of the same session
        self.lock = threading.RLock()

    @property
    def basemap(self) -> str:
        return self.config.theme.basemap(self.is_dark_mode)

    @property
    def stylesheet(self) -> str:
        return self.config.theme.stylesheet(self.is_dark_mode)

    @property
    def definition_expression(self) -> str:
        return build_definition_expression(
            self.config.population.field, self.population_range
        )

    @property
    def mounted(self) -> bool:
        return self.view is not None

    # Lifecycle

    def mount(self, container: Container) -> MapView:
        """Bind the component to a container and build its view."""
        self.container = container
        return self._rebuild_view()

    def unmount(self):
        """Tear down the current view."""
        self._teardown_view()
        self.container = None

    def _teardown_view(self):
        if self.view is not None:
            self.view.destroy()
            self.view = None
            self.feature_layer = None
            self.measurement_widget = None

    def _rebuild_view(self) -> MapView:
        if self.container is None:
            raise RuntimeError("Component is not mounted")

        self._teardown_view()

        webmap = WebMap(basemap=self.basemap)

        image_layer = ImageLayer(self.config.image_service)
        feature_layer = FeatureLayer(
            self.source,
            visible=True,
            definition_expression=self.definition_expression,
            renderer=SimpleRenderer(SimpleMarkerSymbol(size=10, color="white")),
            popup_template=PopupTemplate(content=POPUP_CONTENT),
        )
        self.feature_layer = feature_layer

        overlays = GroupLayer(
            title="Overlays",
            layers=[image_layer, feature_layer],
            visibility_mode=VisibilityMode.INDEPENDENT,
            opacity=1,
        )
        webmap.add(overlays)

        view_config = self.config.view
        view = MapView(
            container=self.container,
            map=webmap,
            center=view_config.center,
            scale=view_config.scale,
            hit_tolerance_px=view_config.hit_tolerance_px,
        )

        view.ui.add(
            Search(view=view, all_placeholder="Search for a location"),
            {"position": "top-left", "index": 0},
        )
        view.ui.add(LayerList(view=view), {"position": "top-right"})
        self.measurement_widget = Measurement(view=view)
        view.ui.add(ScaleBar(view=view, unit="metric"), {"position": "bottom-right"})
        view.ui.add(CoordinateConversion(view=view), {"position": "bottom-right"})

        view.on(POINTER_MOVE, self._on_pointer_move)
        view.on(LAYER_ERROR, self._on_layer_error)

        self.view = view
        logger.info(
            "Built %s view with filter '%s'",
            "dark" if self.is_dark_mode else "light", feature_layer.definition_expression,
        )
        return view

    # Handlers

    def toggle_theme(self) -> bool:
        """Switch between the light and dark theme and rebuild the view.

        Returns:
            The new theme flag
        """
        self.is_dark_mode = not self.is_dark_mode
        if self.container is not None:
            self._rebuild_view()
        return self.is_dark_mode

    mode_change = toggle_theme

    def handle_population_change(self, value: Sequence) -> str:
        """Store a new population range and filter the feature layer in place.

        Args:
            value: Slider value ``[min, max]``

        Returns:
            The feature layer's new definition expression

        Raises:
            InvalidRangeError: If the value is not a valid range
        """
        population = self.config.population
        self.population_range = PopulationRange.from_value(
            value, population.minimum, population.maximum
        )
        expression = self.definition_expression
        if self.feature_layer is not None:
            self.feature_layer.definition_expression = expression
        logger.debug("Population filter set to '%s'", expression)
        return expression

    def activate_measurement_tool(self, tool: str):
        """Set the measurement widget's active tool and show it."""
        widget = self.measurement_widget
        if widget is None:
            return
        widget.active_tool = tool
        widget.view.ui.add(widget, "bottom-left")

    def clear_measurement(self):
        """Reset the measurement widget and hide it."""
        widget = self.measurement_widget
        if widget is None:
            return
        widget.clear()
        widget.view.ui.remove(widget)

    def on_pointer_move(self, latitude: float, longitude: float, zoom: Optional[float] = None) -> str:
        """Forward a pointer position to the view and return the resulting cursor."""
        if self.view is None:
            return "default"
        self.view.pointer_move(latitude, longitude, zoom)
        return self.view.container.cursor

    def _on_pointer_move(self, event: PointerEvent):
        view = self.view
        try:
            response = view.hit_test(event.point, event.zoom)
        except LayerLoadError as e:
            logger.warning("Hit test failed: %s", e)
            self._notify("warning", f"Hit test failed: {e}")
            view.container.cursor = "default"
            return

        results = response.results
        if results and results[0].layer is self.feature_layer:
            view.container.cursor = "pointer"
        else:
            view.container.cursor = "default"

    def _on_layer_error(self, event: LayerViewErrorEvent):
        logger.warning("Layer '%s' failed to load: %s", event.layer.title, event.error)
        self._notify("warning", f"Layer '{event.layer.title}' could not be loaded: {event.error}")

    # Rendering

    def render_map(self, hit_test_url: Optional[str] = None) -> str:
        """Render the current view as an HTML document."""
        if self.view is None:
            raise RuntimeError("Component is not mounted")
        return self.view.to_html(hit_test_url)

    def snapshot(self, format: str = "png", dpi: int = 100) -> bytes:
        """Render the filtered feature set as a static image.

        Raises:
            LayerLoadError: If the features cannot be loaded
        """
        layer = self.feature_layer
        expression = (
            layer.definition_expression if layer is not None else self.definition_expression
        )
        features = self.source.query(expression)
        title = f"{self.source.get_config().title} ({expression})"
        return render_snapshot(
            features, is_dark_mode=self.is_dark_mode, title=title, format=format, dpi=dpi
        )

    def _notify(self, level: str, message: str):
        self._notices.append(Notice(level, message))

    def drain_notices(self) -> List[Notice]:
        """Return pending notices and clear them."""
        notices, self._notices = self._notices, []
        return notices

    def state(self) -> Dict[str, Any]:
        """Serializable snapshot of the component state."""
        population = self.config.population
        widget = self.measurement_widget
        return {
            "is_dark_mode": self.is_dark_mode,
            "basemap": self.basemap,
            "stylesheet": self.stylesheet,
            "population_range": self.population_range.as_list(),
            "definition_expression": (
                self.feature_layer.definition_expression
                if self.feature_layer is not None else self.definition_expression
            ),
            "measurement": {
                "active_tool": widget.active_tool if widget else None,
                "visible": bool(widget and widget.view.ui.find(widget)),
            },
            "slider": {
                "min": population.minimum,
                "max": population.maximum,
                "step": population.step,
                "marks": {str(k): v for k, v in population.marks.items()},
            },
            "mounted": self.mounted,
        }
