"""
Data source abstraction for the map's remote layers.

This module loads the feature set shown on the map, either from a remote
REST feature service or from a local geospatial file, always filtered by
a definition expression.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

import fiona
import geopandas as gpd

from popmap.spatial_ops import apply_definition_expression


logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"


class LayerLoadError(RuntimeError):
    """Raised when a layer's features cannot be loaded."""


@dataclass
class FeatureServiceConfig:
    """Configuration for a feature layer's backing service.

    Attributes:
        url: REST endpoint of the feature service layer
        title: Human-readable layer title
        filter_field: Numeric field the population filter applies to
        id_field: Column containing unique feature identifiers
        path: Local file to read instead of the remote service
        layer: Layer name for multi-layer local files
        out_fields: Fields requested from the service
    """
    url: str
    title: str
    filter_field: str = "POP2000"
    id_field: str = "OBJECTID"
    path: Optional[str] = None
    layer: Optional[str] = None
    out_fields: str = "*"


@dataclass
class WMSSublayer:
    """A named sublayer of a WMS service."""
    name: str
    title: Optional[str] = None
    visible: bool = True


@dataclass
class ImageServiceConfig:
    """Configuration for a WMS image service.

    Attributes:
        url: WMS endpoint
        title: Human-readable layer title
        sublayers: Sublayers requested from the service
        format: Image format of the tiles
        opacity: Layer opacity (0-1)
        version: WMS protocol version
    """
    url: str
    title: str
    sublayers: List[WMSSublayer] = field(default_factory=list)
    format: str = "png"
    opacity: float = 1.0
    version: str = "1.1.1"

    @property
    def mime_type(self) -> str:
        if "/" in self.format:
            return self.format
        return f"image/{self.format}"


class DataSource(ABC):
    """Abstract base class for feature data sources."""

    @abstractmethod
    def query(self, where: Optional[str] = None) -> gpd.GeoDataFrame:
        """Load the features matching a definition expression."""
        pass

    @abstractmethod
    def get_config(self) -> FeatureServiceConfig:
        """Return the source configuration."""
        pass


class FeatureServiceSource(DataSource):
    """Data source backed by a remote REST feature service.

    Queries are issued as GeoJSON requests against the layer's ``query``
    endpoint; results of the most recent expressions are cached.
    """

    def __init__(self, config: FeatureServiceConfig, cache_size: int = 16):
        """Initialize the data source.

        Args:
            config: Service configuration
            cache_size: Number of query results kept, least recently used
                evicted first
        """
        self.config = config
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, gpd.GeoDataFrame]" = OrderedDict()

    def query_url(self, where: Optional[str] = None) -> str:
        """Build the GeoJSON query URL for a definition expression."""
        params = {
            "where": where or "1=1",
            "outFields": self.config.out_fields,
            "returnGeometry": "true",
            "outSR": "4326",
            "f": "geojson",
        }
        return f"{self.config.url.rstrip('/')}/query?{urlencode(params)}"

    def query(self, where: Optional[str] = None) -> gpd.GeoDataFrame:
        """Load features from the service.

        Args:
            where: Definition expression restricting the features

        Returns:
            GeoDataFrame in WGS84

        Raises:
            LayerLoadError: If the service request fails
        """
        key = where or ""
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        url = self.query_url(where)
        logger.debug("Querying feature service: %s", url)
        try:
            data = gpd.read_file(url)
        except Exception as e:
            raise LayerLoadError(
                f"Failed to load '{self.config.title}' from {self.config.url}: {e}"
            ) from e

        if data.crs is None:
            data = data.set_crs(WGS84)
        self._cache[key] = data
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return data

    def clear_cache(self):
        """Drop cached query results."""
        self._cache.clear()

    def get_config(self) -> FeatureServiceConfig:
        """Return the service configuration."""
        return self.config


class FileDataSource(DataSource):
    """Data source that reads features from a local file.

    Supports the formats GeoPandas can read (GeoJSON, Shapefile,
    GeoPackage, ...). The definition expression is evaluated locally.
    """

    def __init__(self, config: FeatureServiceConfig):
        if not config.path:
            raise ValueError("FileDataSource requires a path in its config")
        self.config = config
        self._data: Optional[gpd.GeoDataFrame] = None

    def load(self) -> gpd.GeoDataFrame:
        """Load the whole file.

        Raises:
            LayerLoadError: If the file is missing or unreadable
        """
        if self._data is not None:
            return self._data

        path = Path(self.config.path)
        if not path.exists():
            raise LayerLoadError(f"Data file not found: {path}")

        layer = self.config.layer
        if layer is None and path.suffix.lower() in (".gpkg", ".gdb"):
            layer = self._single_layer(path)

        try:
            data = gpd.read_file(str(path), layer=layer)
        except Exception as e:
            raise LayerLoadError(f"Failed to read {path}: {e}") from e

        if data.crs is None:
            data = data.set_crs(WGS84)
        elif data.crs.to_epsg() != 4326:
            data = data.to_crs(WGS84)

        self._data = data
        return self._data

    def _single_layer(self, path: Path) -> str:
        available_layers = fiona.listlayers(str(path))
        if len(available_layers) != 1:
            raise LayerLoadError(
                f"{path} has multiple layers: {available_layers}. "
                "Please specify a layer in the config."
            )
        return available_layers[0]

    def query(self, where: Optional[str] = None) -> gpd.GeoDataFrame:
        data = self.load()
        if self.config.filter_field not in data.columns:
            raise LayerLoadError(
                f"Missing filter field '{self.config.filter_field}' in {self.config.path}. "
                f"Available columns: {list(data.columns)}"
            )
        if not where:
            return data
        try:
            return apply_definition_expression(data, where)
        except (KeyError, ValueError) as e:
            raise LayerLoadError(f"Cannot evaluate '{where}': {e}") from e

    def get_config(self) -> FeatureServiceConfig:
        return self.config


def create_source(config: FeatureServiceConfig) -> DataSource:
    """Pick the data source matching a service configuration."""
    if config.path:
        return FileDataSource(config)
    return FeatureServiceSource(config)
