"""Tests for the datasource module."""

from urllib.parse import parse_qs, urlparse

import pytest

from popmap.datasource import (
    FeatureServiceConfig,
    FeatureServiceSource,
    FileDataSource,
    ImageServiceConfig,
    LayerLoadError,
    create_source,
)


SERVICE_URL = "https://example.test/arcgis/rest/services/USA/MapServer/0"


@pytest.fixture()
def service_config() -> FeatureServiceConfig:
    return FeatureServiceConfig(url=SERVICE_URL, title="Places")


@pytest.fixture()
def places_file(tmp_path, places) -> str:
    path = tmp_path / "places.geojson"
    places.to_file(path, driver="GeoJSON")
    return str(path)


class TestFeatureServiceSource:
    def test_query_url(self, service_config) -> None:
        source = FeatureServiceSource(service_config)
        url = urlparse(source.query_url("POP2000 >= 0 AND POP2000 <= 10"))
        params = parse_qs(url.query)
        assert f"{url.scheme}://{url.netloc}{url.path}" == f"{SERVICE_URL}/query"
        assert params["where"] == ["POP2000 >= 0 AND POP2000 <= 10"]
        assert params["outFields"] == ["*"]
        assert params["f"] == ["geojson"]

    def test_query_url_without_filter(self, service_config) -> None:
        params = parse_qs(urlparse(FeatureServiceSource(service_config).query_url()).query)
        assert params["where"] == ["1=1"]

    def test_query_filters_and_caches(self, service_config, service_requests) -> None:
        source = FeatureServiceSource(service_config)
        first = source.query("POP2000 < 100000")
        second = source.query("POP2000 < 100000")
        assert sorted(first["AREANAME"]) == ["Boulder", "Smallville"]
        assert first is second
        assert len(service_requests) == 1

    def test_cache_keeps_recent_expressions(self, service_config, service_requests) -> None:
        source = FeatureServiceSource(service_config, cache_size=2)
        source.query("POP2000 < 1000")
        source.query("POP2000 < 2000")
        source.query("POP2000 < 1000")
        source.query("POP2000 < 3000")
        assert len(service_requests) == 3

        source.query("POP2000 < 1000")
        assert len(service_requests) == 3
        source.query("POP2000 < 2000")
        assert len(service_requests) == 4

    def test_clear_cache(self, service_config, service_requests) -> None:
        source = FeatureServiceSource(service_config)
        source.query("POP2000 < 100000")
        source.clear_cache()
        source.query("POP2000 < 100000")
        assert len(service_requests) == 2

    def test_failure_raises_layer_load_error(self, service_config, failing_service) -> None:
        source = FeatureServiceSource(service_config)
        with pytest.raises(LayerLoadError, match="Places"):
            source.query("1=1")


class TestFileDataSource:
    def test_requires_path(self, service_config) -> None:
        with pytest.raises(ValueError):
            FileDataSource(service_config)

    def test_query_filters_locally(self, places_file) -> None:
        config = FeatureServiceConfig(url="", title="Places", path=places_file)
        source = FileDataSource(config)
        result = source.query("POP2000 >= 100000 AND POP2000 <= 300000")
        assert sorted(result["AREANAME"]) == ["Largetown", "Provo", "Springfield"]
        assert result.crs.to_epsg() == 4326

    def test_query_without_filter(self, places_file, places) -> None:
        source = FileDataSource(FeatureServiceConfig(url="", title="Places", path=places_file))
        assert len(source.query()) == len(places)

    def test_missing_file(self, tmp_path) -> None:
        config = FeatureServiceConfig(url="", title="Places", path=str(tmp_path / "nope.geojson"))
        with pytest.raises(LayerLoadError, match="not found"):
            FileDataSource(config).query()

    def test_missing_filter_field(self, places_file) -> None:
        config = FeatureServiceConfig(
            url="", title="Places", path=places_file, filter_field="POP2010"
        )
        with pytest.raises(LayerLoadError, match="POP2010"):
            FileDataSource(config).query()

    def test_unsupported_expression(self, places_file) -> None:
        source = FileDataSource(FeatureServiceConfig(url="", title="Places", path=places_file))
        with pytest.raises(LayerLoadError):
            source.query("AREANAME LIKE 'S%'")


class TestCreateSource:
    def test_remote_by_default(self, service_config) -> None:
        assert isinstance(create_source(service_config), FeatureServiceSource)

    def test_local_when_path_set(self, places_file) -> None:
        config = FeatureServiceConfig(url=SERVICE_URL, title="Places", path=places_file)
        assert isinstance(create_source(config), FileDataSource)


class TestImageServiceConfig:
    def test_mime_type(self) -> None:
        assert ImageServiceConfig(url="x", title="t", format="png").mime_type == "image/png"
        assert ImageServiceConfig(url="x", title="t", format="image/jpeg").mime_type == "image/jpeg"
