"""Tests for the Flask application."""

import time

import pytest

from popmap import app as app_module


class TestPages:
    def test_index(self, client) -> None:
        response = client.get("/")
        assert response.status_code == 200
        html = response.get_data(as_text=True)
        assert 'id="mapDiv"' in html
        assert "/static/themes/light.css" in html

    def test_map_document(self, client) -> None:
        response = client.get("/map")
        assert response.status_code == 200
        assert response.mimetype == "text/html"
        html = response.get_data(as_text=True)
        assert "Springfield" in html
        assert "/api/hit-test" in html

    def test_session_keeps_component(self, client) -> None:
        client.get("/")
        client.get("/api/state")
        assert len(app_module._components) == 1

    def test_sessions_are_separate(self, client) -> None:
        client.get("/")
        with app_module.app.test_client() as other:
            other.get("/")
        assert len(app_module._components) == 2


class TestState:
    def test_initial_state(self, client) -> None:
        data = client.get("/api/state").get_json()
        assert data["is_dark_mode"] is False
        assert data["population_range"] == [0, 300000]
        assert data["definition_expression"] == "POP2000 >= 0 AND POP2000 <= 300000"
        assert data["notices"] == []
        assert data["mounted"] is True

    def test_theme_toggle(self, client) -> None:
        data = client.post("/api/theme/toggle").get_json()
        assert data["is_dark_mode"] is True
        assert data["basemap"] == "dark-gray-vector"
        assert data["stylesheet"] == "/static/themes/dark.css"

        data = client.post("/api/theme/toggle").get_json()
        assert data["basemap"] == "gray-vector"


class TestPopulation:
    def test_update(self, client) -> None:
        response = client.post("/api/population", json={"value": [50000, 120000]})
        assert response.status_code == 200
        data = response.get_json()
        assert data["population_range"] == [50000, 120000]
        assert data["definition_expression"] == "POP2000 >= 50000 AND POP2000 <= 120000"

    def test_filter_reaches_map(self, client) -> None:
        client.post("/api/population", json={"value": [0, 2000]})
        html = client.get("/map").get_data(as_text=True)
        assert "Smallville" in html
        assert "Springfield" not in html

    def test_missing_value(self, client) -> None:
        response = client.post("/api/population", json={})
        assert response.status_code == 400
        assert "value" in response.get_json()["error"]

    @pytest.mark.parametrize("value", [[10, 5], [0, 400000], [0], "0,10"])
    def test_invalid_range(self, client, value) -> None:
        response = client.post("/api/population", json={"value": value})
        assert response.status_code == 400
        data = client.get("/api/state").get_json()
        assert data["population_range"] == [0, 300000]


class TestMeasurement:
    def test_activate_and_clear(self, client) -> None:
        data = client.post("/api/measurement/area").get_json()
        assert data["measurement"] == {"active_tool": "area", "visible": True}

        data = client.post("/api/measurement/clear").get_json()
        assert data["measurement"] == {"active_tool": None, "visible": False}

    def test_unknown_tool(self, client) -> None:
        response = client.post("/api/measurement/volume")
        assert response.status_code == 400
        assert response.get_json()["available"] == ["distance", "area"]


class TestHitTest:
    def test_pointer(self, client) -> None:
        response = client.post("/api/hit-test", json={"lat": 39.78, "lng": -89.65})
        assert response.get_json() == {"cursor": "pointer"}

    def test_default(self, client) -> None:
        response = client.post("/api/hit-test", json={"lat": 0, "lng": 0, "zoom": 3})
        assert response.get_json() == {"cursor": "default"}

    def test_missing_field(self, client) -> None:
        response = client.post("/api/hit-test", json={"lat": 39.78})
        assert response.status_code == 400
        assert "lng" in response.get_json()["error"]

    def test_bad_value(self, client) -> None:
        response = client.post("/api/hit-test", json={"lat": "north", "lng": 0})
        assert response.status_code == 400

    def test_not_json(self, client) -> None:
        response = client.post("/api/hit-test", data="lat=1")
        assert response.status_code == 400


class TestSnapshot:
    def test_png(self, client) -> None:
        response = client.get("/api/snapshot.png")
        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")

    def test_unknown_format(self, client) -> None:
        response = client.get("/api/snapshot.bmp")
        assert response.status_code == 404

    def test_service_failure(self, client, failing_service) -> None:
        response = client.get("/api/snapshot.png")
        assert response.status_code == 502


class TestUnmount:
    def test_unmount(self, client) -> None:
        client.get("/")
        component = next(iter(app_module._components.values()))
        container = component.view.container

        response = client.post("/api/unmount")
        assert response.get_json() == {"success": True}
        assert app_module._components == {}
        assert container.view is None
        assert not component.mounted

    def test_unmount_without_component(self, client) -> None:
        response = client.post("/api/unmount")
        assert response.status_code == 200


class TestSessions:
    def test_idle_component_evicted(self, client, test_config) -> None:
        client.get("/")
        component = next(iter(app_module._components.values()))

        later = time.monotonic() + test_config.server.session_ttl + 1
        assert app_module.evict_idle_components(now=later) == 1
        assert app_module._components == {}
        assert not component.mounted

        assert client.get("/api/state").get_json()["mounted"] is True
        assert len(app_module._components) == 1

    def test_active_component_kept(self, client) -> None:
        client.get("/")
        assert app_module.evict_idle_components() == 0
        assert len(app_module._components) == 1

    def test_routes_hold_component_lock(self, client) -> None:
        client.get("/")
        component = next(iter(app_module._components.values()))
        lock = RecordingLock()
        component.lock = lock

        client.post("/api/hit-test", json={"lat": 39.78, "lng": -89.65})
        client.post("/api/population", json={"value": [0, 2000]})
        client.get("/map")

        assert lock.entered >= 3
        assert lock.held == 0


class RecordingLock:
    """Context manager counting acquisitions."""

    def __init__(self):
        self.entered = 0
        self.held = 0

    def __enter__(self):
        self.entered += 1
        self.held += 1
        return self

    def __exit__(self, *exc):
        self.held -= 1
        return False
