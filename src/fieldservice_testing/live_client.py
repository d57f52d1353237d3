"""Async client for the live field-service REST API.

Only the entity endpoints the production provider needs:

    GET    /api/v1/<kind>s?name=<exact name>
    POST   /api/v1/<kind>s
    DELETE /api/v1/<kind>s/<id>
    GET    /api/v1/health

Usage:
    async with FieldServiceClient("https://fieldservice.example.com", token="...") as client:
        customer = await client.find_by_name("customer", "Bugs Bunny - looneyTunesTest")
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from fieldservice_testing.errors import DuplicateEntityError, LiveSystemError
from fieldservice_testing.models import KIND_TO_CATEGORY

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Gateway errors are left as httpx.HTTPStatusError so the retry predicate sees them
_TRANSIENT_STATUS = {502, 503, 504}


class FieldServiceClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}{API_PREFIX}"
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def __aenter__(self) -> "FieldServiceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.api_url}{endpoint}"
        response = await self._client.request(method, url, **kwargs)
        if response.status_code in _TRANSIENT_STATUS:
            response.raise_for_status()
        if response.status_code == 409:
            raise DuplicateEntityError(_error_message(response), status_code=409, url=url)
        if response.status_code >= 400:
            raise LiveSystemError(_error_message(response), status_code=response.status_code, url=url)
        return response

    async def health(self) -> bool:
        try:
            response = await self._request("GET", "/health")
        except (httpx.HTTPError, LiveSystemError) as exc:
            logger.warning("[PRODUCTION] Health check against %s failed: %s", self.base_url, exc)
            return False
        return response.status_code == 200

    async def list(self, kind: str, **filters: Any) -> List[Dict[str, Any]]:
        params = {key: value for key, value in filters.items() if value is not None}
        response = await self._request("GET", _collection(kind), params=params)
        return _items(response.json())

    async def find_by_name(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the entity whose name matches exactly, or None."""
        for item in await self.list(kind, name=name):
            if item.get("name") == name:
                return item
        return None

    async def create(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create an entity.

        Raises:
            DuplicateEntityError: An entity with the same name already exists
            LiveSystemError: Any other client error
        """
        response = await self._request("POST", _collection(kind), json=payload)
        return response.json()

    async def delete(self, kind: str, entity_id: str) -> None:
        await self._request("DELETE", f"{_collection(kind)}/{entity_id}")

    def __repr__(self) -> str:
        return f"<FieldServiceClient {self.api_url}>"


def _collection(kind: str) -> str:
    return f"/{KIND_TO_CATEGORY.get(kind, kind + 's')}"


def _items(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("items", "data", "results"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return f"{response.status_code}: {body['error']}"
    return f"{response.status_code}: {response.reason_phrase}"
