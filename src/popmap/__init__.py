"""
Interactive population map.

This package serves a web map with a WMS overlay and a feature layer of
US places, a population-range filter, a light/dark theme toggle and the
usual map widgets (search, layer list, measurement, scale bar and
coordinate readout).

Modules:
    datasource: Feature loading from a feature service or a local file
    spatial_ops: Filter expressions and hit testing
    layers: Image, feature and group layers
    widgets: Map widgets
    views: Map views bound to page containers
    component: The map component and its state
    visualizer: Static snapshots of the filtered features
    config: Service presets and environment configuration

Example:
    >>> from popmap import MapComponent, Container
    >>>
    >>> component = MapComponent()
    >>> component.mount(Container("mapDiv"))
    >>> component.handle_population_change([50000, 120000])
    'POP2000 >= 50000 AND POP2000 <= 120000'
"""

__version__ = "1.0.0"

from popmap.datasource import (
    DataSource,
    FeatureServiceConfig,
    FeatureServiceSource,
    FileDataSource,
    ImageServiceConfig,
    LayerLoadError,
    WMSSublayer,
    create_source,
)

from popmap.spatial_ops import (
    InvalidRangeError,
    PopulationRange,
    apply_definition_expression,
    build_definition_expression,
    hit_test_features,
    parse_definition_expression,
)

from popmap.layers import (
    FeatureLayer,
    GroupLayer,
    ImageLayer,
    PopupTemplate,
    SimpleMarkerSymbol,
    SimpleRenderer,
    VisibilityMode,
)

from popmap.widgets import (
    CoordinateConversion,
    LayerList,
    Measurement,
    ScaleBar,
    Search,
)

from popmap.views import (
    Container,
    HitTestResult,
    MapPoint,
    MapView,
    ViewError,
    ViewUI,
    WebMap,
)

from popmap.component import MapComponent, Notice

from popmap.visualizer import SnapshotRenderer, SnapshotStyle, render_snapshot

from popmap.config import (
    Config,
    config,
    load_config_from_env,
    GEOSERVER_WORLD,
    USA_POPULATION,
)

__all__ = [
    # Data loading
    "DataSource",
    "FeatureServiceConfig",
    "FeatureServiceSource",
    "FileDataSource",
    "ImageServiceConfig",
    "LayerLoadError",
    "WMSSublayer",
    "create_source",
    # Filters and spatial queries
    "InvalidRangeError",
    "PopulationRange",
    "apply_definition_expression",
    "build_definition_expression",
    "hit_test_features",
    "parse_definition_expression",
    # Layers
    "FeatureLayer",
    "GroupLayer",
    "ImageLayer",
    "PopupTemplate",
    "SimpleMarkerSymbol",
    "SimpleRenderer",
    "VisibilityMode",
    # Widgets
    "CoordinateConversion",
    "LayerList",
    "Measurement",
    "ScaleBar",
    "Search",
    # Views
    "Container",
    "HitTestResult",
    "MapPoint",
    "MapView",
    "ViewError",
    "ViewUI",
    "WebMap",
    # Component
    "MapComponent",
    "Notice",
    # Snapshots
    "SnapshotRenderer",
    "SnapshotStyle",
    "render_snapshot",
    # Configuration
    "Config",
    "config",
    "load_config_from_env",
    "GEOSERVER_WORLD",
    "USA_POPULATION",
]
