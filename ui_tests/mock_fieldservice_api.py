"""Mock field-service REST API for production-mode testing.

Implements the entity endpoints the production data provider talks to:
- GET    /api/v1/health
- GET    /api/v1/<category>?name=<exact name>
- GET    /api/v1/<category>/<id>
- POST   /api/v1/<category>          (409 if the name already exists)
- DELETE /api/v1/<category>/<id>

Categories are customers, routes and tickets. State lives in module-level
dicts so tests can seed and inspect it; ``inject_fault`` queues canned
responses (gateway errors, conflicts, empty lookups) for the next requests.
"""
from __future__ import annotations

import itertools
import threading
from typing import Any, Dict, List, Tuple, Union

from flask import Flask, jsonify, request

CATEGORIES = ("customers", "routes", "tickets")

# category -> id -> entity
ENTITIES: Dict[str, Dict[str, Dict[str, Any]]] = {category: {} for category in CATEGORIES}
# (method, path) for every handled request
REQUEST_LOG: List[Tuple[str, str]] = []
# "METHOD category" -> queued status codes, or "empty" for a lookup that finds nothing
FAULTS: Dict[str, List[Union[int, str]]] = {}

MOCK_API_TOKEN = "test-fieldservice-token"

_ids = itertools.count(1)
# Name check and insert happen under one lock, like a unique index
_create_lock = threading.Lock()


def create_mock_api_app() -> Flask:
    """Create and configure the mock field-service API Flask app."""
    app = Flask(__name__)
    app.config['TESTING'] = True

    def _authorized() -> bool:
        return request.headers.get('Authorization') == f"Bearer {MOCK_API_TOKEN}"

    def _error(status: int, message: str):
        return jsonify({"error": message}), status

    @app.before_request
    def log_and_authorize():
        REQUEST_LOG.append((request.method, request.path))
        if request.path.endswith('/health'):
            return None
        if not _authorized():
            return _error(401, "Invalid or missing token")
        return None

    @app.route('/api/v1/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok"}), 200

    @app.route('/api/v1/<category>', methods=['GET'])
    def list_entities(category: str):
        if category not in ENTITIES:
            return _error(404, f"Unknown collection '{category}'")
        fault = _next_fault('GET', category)
        if fault == 'empty':
            return jsonify({"items": [], "total": 0}), 200
        if isinstance(fault, int):
            return _error(fault, "Injected fault")

        items = list(ENTITIES[category].values())
        name = request.args.get('name')
        if name is not None:
            items = [item for item in items if item['name'] == name]
        return jsonify({"items": items, "total": len(items)}), 200

    @app.route('/api/v1/<category>/<entity_id>', methods=['GET'])
    def get_entity(category: str, entity_id: str):
        entity = ENTITIES.get(category, {}).get(entity_id)
        if entity is None:
            return _error(404, f"{category}/{entity_id} not found")
        return jsonify(entity), 200

    @app.route('/api/v1/<category>', methods=['POST'])
    def create_entity(category: str):
        if category not in ENTITIES:
            return _error(404, f"Unknown collection '{category}'")
        fault = _next_fault('POST', category)
        if isinstance(fault, int):
            return _error(fault, "Injected fault")

        data = request.get_json(silent=True)
        if not data or not data.get('name'):
            return _error(400, "Field 'name' is required")
        with _create_lock:
            if any(item['name'] == data['name'] for item in ENTITIES[category].values()):
                return _error(409, f"{category} '{data['name']}' already exists")
            entity = dict(data)
            entity['id'] = f"{category[:-1]}-{next(_ids)}"
            ENTITIES[category][entity['id']] = entity
        return jsonify(entity), 201

    @app.route('/api/v1/<category>/<entity_id>', methods=['DELETE'])
    def delete_entity(category: str, entity_id: str):
        fault = _next_fault('DELETE', category)
        if isinstance(fault, int):
            return _error(fault, "Injected fault")
        if ENTITIES.get(category, {}).pop(entity_id, None) is None:
            return _error(404, f"{category}/{entity_id} not found")
        return '', 204

    return app


def _next_fault(method: str, category: str) -> Union[int, str, None]:
    queue = FAULTS.get(f"{method} {category}")
    if queue:
        return queue.pop(0)
    return None


def inject_fault(method: str, category: str, *responses: Union[int, str]) -> None:
    """Queue canned responses for the next ``method`` requests on ``category``."""
    FAULTS.setdefault(f"{method.upper()} {category}", []).extend(responses)


def reset_mock_state():
    """Reset all mock API state (entities, faults, request log)."""
    for entities in ENTITIES.values():
        entities.clear()
    FAULTS.clear()
    REQUEST_LOG.clear()


def seed_entity(category: str, name: str, **fields: Any) -> Dict[str, Any]:
    """Insert an entity directly, bypassing the API."""
    entity = {"name": name, **fields}
    entity['id'] = f"{category[:-1]}-{next(_ids)}"
    ENTITIES[category][entity['id']] = entity
    return entity


def requests_matching(method: str, category: str) -> List[Tuple[str, str]]:
    prefix = f"/api/v1/{category}"
    return [(m, path) for m, path in REQUEST_LOG if m == method and path.startswith(prefix)]
