"""
Flask application serving the population map.

Each browser session gets its own MapComponent. The page embeds the map
document and drives the component through small JSON endpoints: theme
toggle, population filter, measurement tool and pointer hit tests.
Components of sessions idle for longer than ``session_ttl`` seconds are
unmounted and forgotten.
"""

import logging
import threading
import time
import uuid
from typing import Dict, List, Optional

from flask import (
    Flask,
    Response,
    jsonify,
    render_template,
    request,
    session,
    url_for,
)

from popmap.component import MapComponent
from popmap.config import Config, config as default_config
from popmap.datasource import LayerLoadError
from popmap.spatial_ops import InvalidRangeError
from popmap.views import Container
from popmap.visualizer import SNAPSHOT_FORMATS
from popmap.widgets import MEASUREMENT_TOOLS


logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["POPMAP"] = default_config
app.secret_key = default_config.server.secret_key

# Mounted components by session id, with the time each was last used
_components: Dict[str, MapComponent] = {}
_last_seen: Dict[str, float] = {}
_registry_lock = threading.Lock()


def configure(config: Config) -> Flask:
    """Apply a configuration to the application and drop existing components."""
    app.config["POPMAP"] = config
    app.secret_key = config.server.secret_key
    clear_components()
    return app


def _unmount_all(components: List[MapComponent]):
    for component in components:
        with component.lock:
            component.unmount()


def clear_components():
    """Unmount and forget every component."""
    with _registry_lock:
        components = list(_components.values())
        _components.clear()
        _last_seen.clear()
    _unmount_all(components)


def evict_idle_components(now: Optional[float] = None) -> int:
    """Unmount components whose session has been idle past the TTL.

    Returns:
        Number of evicted components
    """
    ttl = app.config["POPMAP"].server.session_ttl
    now = time.monotonic() if now is None else now
    with _registry_lock:
        stale = [cid for cid, seen in _last_seen.items() if now - seen > ttl]
        components = [_components.pop(cid) for cid in stale]
        for cid in stale:
            del _last_seen[cid]
    _unmount_all(components)
    if stale:
        logger.info("Evicted %d idle components", len(stale))
    return len(stale)


def get_component() -> MapComponent:
    """Get the component of the current session, mounting one if needed."""
    evict_idle_components()
    config: Config = app.config["POPMAP"]
    with _registry_lock:
        component_id = session.get("component_id")
        component = _components.get(component_id) if component_id else None
        if component is None:
            component_id = uuid.uuid4().hex
            component = MapComponent(config)
            _components[component_id] = component
            session["component_id"] = component_id
            logger.info("Created component %s", component_id)
        _last_seen[component_id] = time.monotonic()

    with component.lock:
        if not component.mounted:
            component.mount(Container(config.view.container_id))
    return component


def _state_response(component: MapComponent, **extra):
    payload = component.state()
    payload["notices"] = [n.to_dict() for n in component.drain_notices()]
    payload.update(extra)
    return jsonify(payload)


def _json_body() -> Optional[dict]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@app.route("/")
def index():
    """Render the main page."""
    component = get_component()
    with component.lock:
        state = component.state()
        notices = [n.to_dict() for n in component.drain_notices()]
    return render_template("index.html", state=state, notices=notices, tools=MEASUREMENT_TOOLS)


@app.route("/map")
def map_document():
    """Render the map document embedded by the page."""
    component = get_component()
    with component.lock:
        html = component.render_map(hit_test_url=url_for("api_hit_test"))
    return Response(html, mimetype="text/html")


@app.route("/api/state")
def api_state():
    """API endpoint returning the component state and pending notices."""
    component = get_component()
    with component.lock:
        return _state_response(component)


@app.route("/api/theme/toggle", methods=["POST"])
def api_toggle_theme():
    """API endpoint to switch between the light and dark theme."""
    component = get_component()
    with component.lock:
        component.toggle_theme()
        return _state_response(component)


@app.route("/api/population", methods=["POST"])
def api_population():
    """API endpoint to update the population filter."""
    data = _json_body()
    if data is None or "value" not in data:
        return jsonify({"error": "Missing required field: value"}), 400

    component = get_component()
    with component.lock:
        try:
            component.handle_population_change(data["value"])
        except InvalidRangeError as e:
            return jsonify({"error": str(e)}), 400
        return _state_response(component)


@app.route("/api/measurement/clear", methods=["POST"])
def api_clear_measurement():
    """API endpoint to clear and hide the measurement tool."""
    component = get_component()
    with component.lock:
        component.clear_measurement()
        return _state_response(component)


@app.route("/api/measurement/<tool>", methods=["POST"])
def api_activate_measurement(tool: str):
    """API endpoint to activate a measurement tool."""
    if tool not in MEASUREMENT_TOOLS:
        return jsonify({
            "error": f"Unknown measurement tool: {tool}",
            "available": list(MEASUREMENT_TOOLS),
        }), 400

    component = get_component()
    with component.lock:
        component.activate_measurement_tool(tool)
        return _state_response(component)


@app.route("/api/hit-test", methods=["POST"])
def api_hit_test():
    """API endpoint mapping a pointer position to a cursor style."""
    data = _json_body()
    if data is None:
        return jsonify({"error": "Expected a JSON object"}), 400

    try:
        latitude = float(data["lat"])
        longitude = float(data["lng"])
        zoom = float(data["zoom"]) if data.get("zoom") is not None else None
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e.args[0]}"}), 400
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    component = get_component()
    with component.lock:
        cursor = component.on_pointer_move(latitude, longitude, zoom)
    return jsonify({"cursor": cursor})


@app.route("/api/snapshot.<format>")
def api_snapshot(format: str):
    """API endpoint rendering the filtered features as an image."""
    if format not in SNAPSHOT_FORMATS:
        return jsonify({
            "error": f"Unknown format: {format}",
            "available": list(SNAPSHOT_FORMATS),
        }), 404

    component = get_component()
    try:
        with component.lock:
            image = component.snapshot(format=format)
    except LayerLoadError as e:
        logger.warning("Snapshot failed: %s", e)
        return jsonify({"error": str(e)}), 502
    except Exception as e:
        logger.exception("Snapshot failed")
        return jsonify({"error": str(e)}), 500

    return Response(image, mimetype=SNAPSHOT_FORMATS[format])


@app.route("/api/unmount", methods=["POST"])
def api_unmount():
    """API endpoint tearing down the session's component."""
    component_id = session.pop("component_id", None)
    with _registry_lock:
        component = _components.pop(component_id, None) if component_id else None
        _last_seen.pop(component_id, None)
    if component is not None:
        _unmount_all([component])
        logger.info("Unmounted component %s", component_id)
    return jsonify({"success": True})


if __name__ == "__main__":
    server = default_config.server
    app.run(debug=server.debug, host=server.host, port=server.port)
