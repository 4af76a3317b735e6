"""
Layer definitions for the population map.

Layers describe what the map shows: a WMS image overlay, a feature layer
backed by a feature service, and groups of those. Each layer knows how to
turn itself into the folium objects that draw it.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import folium
import geopandas as gpd

from popmap.datasource import DataSource, ImageServiceConfig, WMSSublayer


logger = logging.getLogger(__name__)

POPUP_COLUMN = "_popup"


class VisibilityMode(Enum):
    """How a group layer toggles its children."""
    INDEPENDENT = "independent"
    EXCLUSIVE = "exclusive"
    INHERITED = "inherited"


@dataclass
class SimpleMarkerSymbol:
    """Point symbol drawn for every feature.

    Attributes:
        size: Marker diameter in pixels
        color: Fill color
        outline_color: Stroke color
        outline_width: Stroke width in pixels
    """
    size: float = 10
    color: str = "white"
    outline_color: str = "#333333"
    outline_width: float = 1.0


@dataclass
class SimpleRenderer:
    """Renderer that draws all features with the same symbol."""
    symbol: SimpleMarkerSymbol = field(default_factory=SimpleMarkerSymbol)

    def to_marker(self) -> folium.CircleMarker:
        symbol = self.symbol
        return folium.CircleMarker(
            radius=symbol.size / 2,
            color=symbol.outline_color,
            weight=symbol.outline_width,
            fill=True,
            fill_color=symbol.color,
            fill_opacity=1.0,
        )


_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class PopupTemplate:
    """Popup content with ``{field}`` placeholders.

    Field names are resolved case-insensitively; missing fields render as
    empty strings.
    """
    content: str
    title: Optional[str] = None

    def render(self, attributes: Dict[str, Any]) -> str:
        lookup = {str(k).lower(): v for k, v in attributes.items()}

        def substitute(match):
            value = lookup.get(match.group(1).lower())
            return "" if value is None else str(value)

        return _PLACEHOLDER.sub(substitute, self.content)


class Layer:
    """Base class for map layers."""

    def __init__(self, title: str, visible: bool = True, opacity: float = 1.0):
        self.title = title
        self.visible = visible
        self.opacity = opacity

    def to_folium(self):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(title={self.title!r})"


class ImageLayer(Layer):
    """WMS image overlay.

    The layer is visible on the map only when it and at least one of its
    sublayers are visible.
    """

    def __init__(self, config: ImageServiceConfig, visible: bool = True):
        super().__init__(config.title, visible=visible, opacity=config.opacity)
        self.url = config.url
        self.sublayers: List[WMSSublayer] = list(config.sublayers)
        self.format = config.mime_type
        self.version = config.version

    @property
    def layer_names(self) -> str:
        return ",".join(s.name for s in self.sublayers)

    def to_folium(self) -> folium.raster_layers.WmsTileLayer:
        show = self.visible and any(s.visible for s in self.sublayers)
        return folium.raster_layers.WmsTileLayer(
            url=self.url,
            layers=self.layer_names,
            fmt=self.format,
            transparent=True,
            version=self.version,
            name=self.title,
            overlay=True,
            show=show,
            opacity=self.opacity,
        )


class FeatureLayer(Layer):
    """Layer of discrete features from a feature service.

    Attributes:
        source: Data source the features are queried from
        definition_expression: Filter restricting which features are drawn
        renderer: How features are symbolized
        popup_template: Popup shown when a feature is clicked
        features: Last loaded feature set (None until loaded)
    """

    def __init__(
        self,
        source: DataSource,
        title: Optional[str] = None,
        visible: bool = True,
        definition_expression: Optional[str] = None,
        renderer: Optional[SimpleRenderer] = None,
        popup_template: Optional[PopupTemplate] = None,
    ):
        super().__init__(title or source.get_config().title, visible=visible)
        self.source = source
        self.features: Optional[gpd.GeoDataFrame] = None
        self._definition_expression = definition_expression
        self.renderer = renderer or SimpleRenderer()
        self.popup_template = popup_template

    @property
    def definition_expression(self) -> Optional[str]:
        return self._definition_expression

    @definition_expression.setter
    def definition_expression(self, expression: Optional[str]):
        # Loaded features belong to the previous filter
        if expression != self._definition_expression:
            self.features = None
        self._definition_expression = expression

    def load(self) -> gpd.GeoDataFrame:
        """Query the source with the current definition expression.

        Raises:
            LayerLoadError: If the source cannot provide the features
        """
        self.features = self.source.query(self.definition_expression)
        logger.debug(
            "Loaded %d features for %s (%s)",
            len(self.features), self.title, self.definition_expression,
        )
        return self.features

    def _with_popups(self, features: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        features = features.copy()
        attributes = features.drop(columns=features.geometry.name)
        features[POPUP_COLUMN] = [
            self.popup_template.render(row) for row in attributes.to_dict("records")
        ]
        return features

    def to_folium(self, features: Optional[gpd.GeoDataFrame] = None) -> folium.GeoJson:
        """Build the GeoJson overlay for a feature set."""
        if features is None:
            features = self.features
        if features is None or features.empty:
            return folium.GeoJson(
                {"type": "FeatureCollection", "features": []},
                name=self.title,
                show=self.visible,
            )

        popup = None
        if self.popup_template is not None:
            features = self._with_popups(features)
            popup = folium.GeoJsonPopup(fields=[POPUP_COLUMN], labels=False)

        return folium.GeoJson(
            features.to_json(),
            name=self.title,
            show=self.visible,
            marker=self.renderer.to_marker(),
            popup=popup,
        )


class GroupLayer(Layer):
    """A titled group of layers."""

    def __init__(
        self,
        title: str,
        layers: Optional[List[Layer]] = None,
        visibility_mode: Union[str, VisibilityMode] = VisibilityMode.INDEPENDENT,
        opacity: float = 1.0,
        visible: bool = True,
    ):
        super().__init__(title, visible=visible, opacity=opacity)
        self.layers: List[Layer] = list(layers or [])
        self.visibility_mode = VisibilityMode(visibility_mode)

    def add(self, layer: Layer) -> "GroupLayer":
        self.layers.append(layer)
        return self

    @property
    def exclusive(self) -> bool:
        return self.visibility_mode == VisibilityMode.EXCLUSIVE
