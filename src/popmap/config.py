"""
Configuration for the population map.

Service presets for the map's remote layers plus environment-driven
settings for the server, theme, view and population filter.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from popmap.datasource import FeatureServiceConfig, ImageServiceConfig, WMSSublayer


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Pre-defined service configurations
USA_POPULATION = FeatureServiceConfig(
    url="https://sampleserver6.arcgisonline.com/arcgis/rest/services/USA/MapServer/0",
    title="USA Population Layer",
    filter_field="POP2000",
    id_field="OBJECTID",
)

GEOSERVER_WORLD = ImageServiceConfig(
    url="http://localhost/geoserver/wms",
    title="GeoServer World Layer",
    sublayers=[WMSSublayer(name="ne:world", title="Countries", visible=False)],
    format="png",
    opacity=0.7,
)


@dataclass
class ServerConfig:
    """Flask server settings."""

    host: str = field(default_factory=lambda: os.getenv("POPMAP_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("POPMAP_PORT", "5000")))
    debug: bool = field(default_factory=lambda: _env_flag("POPMAP_DEBUG"))
    session_ttl: float = field(
        default_factory=lambda: float(os.getenv("POPMAP_SESSION_TTL", "1800"))
    )
    secret_key: str = field(
        default_factory=lambda: os.getenv("POPMAP_SECRET_KEY", "popmap-dev-secret")
    )


@dataclass
class ThemeConfig:
    """Basemaps and stylesheets for the light and dark themes."""

    light_basemap: str = "gray-vector"
    dark_basemap: str = "dark-gray-vector"
    light_stylesheet: str = field(
        default_factory=lambda: os.getenv(
            "POPMAP_LIGHT_STYLESHEET", "/static/themes/light.css"
        )
    )
    dark_stylesheet: str = field(
        default_factory=lambda: os.getenv(
            "POPMAP_DARK_STYLESHEET", "/static/themes/dark.css"
        )
    )
    start_dark: bool = field(default_factory=lambda: _env_flag("POPMAP_DARK_MODE"))

    def basemap(self, is_dark_mode: bool) -> str:
        return self.dark_basemap if is_dark_mode else self.light_basemap

    def stylesheet(self, is_dark_mode: bool) -> str:
        return self.dark_stylesheet if is_dark_mode else self.light_stylesheet


@dataclass
class ViewConfig:
    """Initial view settings."""

    container_id: str = "mapDiv"
    # (latitude, longitude)
    center: Tuple[float, float] = (0.0, 0.0)
    scale: float = 50_000_000
    hit_tolerance_px: int = 6


@dataclass
class PopulationFilterConfig:
    """Population slider and filter settings."""

    field: str = "POP2000"
    minimum: int = 0
    maximum: int = 300000
    step: int = 1000
    marks: Dict[int, str] = dataclasses.field(
        default_factory=lambda: {
            0: "0",
            50000: "50K",
            100000: "100K",
            300000: "300K",
        }
    )


def _feature_service() -> FeatureServiceConfig:
    return FeatureServiceConfig(
        url=os.getenv("POPMAP_FEATURE_URL", USA_POPULATION.url),
        title=USA_POPULATION.title,
        filter_field=USA_POPULATION.filter_field,
        id_field=USA_POPULATION.id_field,
        path=os.getenv("POPMAP_FEATURE_PATH") or None,
        layer=os.getenv("POPMAP_FEATURE_LAYER") or None,
    )


def _image_service() -> ImageServiceConfig:
    return ImageServiceConfig(
        url=os.getenv("POPMAP_WMS_URL", GEOSERVER_WORLD.url),
        title=GEOSERVER_WORLD.title,
        sublayers=[
            WMSSublayer(s.name, s.title, s.visible) for s in GEOSERVER_WORLD.sublayers
        ],
        format=GEOSERVER_WORLD.format,
        opacity=GEOSERVER_WORLD.opacity,
    )


@dataclass
class Config:
    """Main configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    theme: ThemeConfig = field(default_factory=ThemeConfig)
    view: ViewConfig = field(default_factory=ViewConfig)
    population: PopulationFilterConfig = field(default_factory=PopulationFilterConfig)
    feature_service: FeatureServiceConfig = field(default_factory=_feature_service)
    image_service: ImageServiceConfig = field(default_factory=_image_service)


# Global config instance
config = Config()


def load_config_from_env(feature_path: Optional[str] = None) -> Config:
    """Load configuration from environment variables.

    Args:
        feature_path: Local feature file overriding ``POPMAP_FEATURE_PATH``
    """
    loaded = Config(
        server=ServerConfig(),
        theme=ThemeConfig(),
        view=ViewConfig(),
        population=PopulationFilterConfig(),
        feature_service=_feature_service(),
        image_service=_image_service(),
    )
    if feature_path:
        loaded.feature_service.path = feature_path
    return loaded
