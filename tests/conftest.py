"""Shared fixtures for popmap tests."""

from urllib.parse import parse_qs, urlparse

import geopandas as gpd
import pytest
from shapely.geometry import Point

from popmap import datasource
from popmap.app import app, clear_components, configure
from popmap.component import MapComponent
from popmap.config import Config
from popmap.spatial_ops import apply_definition_expression
from popmap.views import Container


@pytest.fixture()
def places() -> gpd.GeoDataFrame:
    """Five populated places in WGS84."""
    return gpd.GeoDataFrame(
        {
            "OBJECTID": [1, 2, 3, 4, 5],
            "AREANAME": ["Springfield", "Boulder", "Provo", "Smallville", "Largetown"],
            "POP2000": [111454, 94673, 105166, 1200, 290000],
        },
        geometry=[
            Point(-89.65, 39.78),
            Point(-105.27, 40.01),
            Point(-111.66, 40.23),
            Point(-90.0, 35.0),
            Point(-95.0, 30.0),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture()
def service_requests(monkeypatch, places):
    """Stub the feature service; records every requested URL."""
    requested = []

    def fake_read_file(url, *args, **kwargs):
        requested.append(url)
        where = parse_qs(urlparse(url).query)["where"][0]
        return apply_definition_expression(places, where)

    monkeypatch.setattr(datasource.gpd, "read_file", fake_read_file)
    return requested


@pytest.fixture()
def failing_service(monkeypatch):
    """Make every feature service request fail."""
    def fake_read_file(url, *args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(datasource.gpd, "read_file", fake_read_file)


@pytest.fixture()
def test_config() -> Config:
    config = Config()
    config.feature_service.path = None
    config.theme.start_dark = False
    return config


@pytest.fixture()
def component(test_config, service_requests) -> MapComponent:
    component = MapComponent(test_config)
    component.mount(Container("mapDiv"))
    yield component
    component.unmount()


@pytest.fixture()
def client(test_config, service_requests):
    configure(test_config)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
    clear_components()
