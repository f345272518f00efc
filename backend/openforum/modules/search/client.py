"""
Algolia REST client.

Thin httpx wrapper over the hosted search API: multi-index queries,
batched object uploads and index settings.
"""

import json
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from openforum.core.config import settings


class SearchServiceError(Exception):
    """Hosted search request failed."""


class AlgoliaClient:
    """
    Async client for the Algolia REST API.

    Usage:
        client = AlgoliaClient()
        results = await client.multiple_queries([{"indexName": "threads", "query": "x"}])
    """

    def __init__(
        self,
        app_id: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Algolia client.

        Args:
            app_id: Application id (or from settings)
            api_key: Search or admin key (search key from settings by default)
            transport: Optional httpx transport (tests)
        """
        self.app_id = app_id if app_id is not None else settings.algolia_app_id
        self.api_key = api_key if api_key is not None else settings.algolia_search_api_key
        self.transport = transport

    @property
    def read_url(self) -> str:
        return f"https://{self.app_id}-dsn.algolia.net/1"

    @property
    def write_url(self) -> str:
        return f"https://{self.app_id}.algolia.net/1"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-Algolia-Application-Id": self.app_id,
            "X-Algolia-API-Key": self.api_key,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.app_id or not self.api_key:
            raise SearchServiceError("Search service not configured")

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self.headers,
                    json=payload,
                    timeout=settings.algolia_timeout,
                )
                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Algolia HTTP error: {e.response.status_code} {e.response.text}")
            raise SearchServiceError(
                f"Search service returned {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Algolia request error: {e}")
            raise SearchServiceError(str(e) or "Search request failed") from e

    @staticmethod
    def encode_params(request: dict[str, Any]) -> str:
        """Encode query parameters the way the REST API expects them."""
        params = {}
        for key, value in request.items():
            if key == "indexName" or value is None:
                continue
            params[key] = json.dumps(value) if isinstance(value, (list, dict, bool)) else value
        return urlencode(params)

    async def multiple_queries(self, requests: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Run several index queries in one round trip.

        Args:
            requests: [{"indexName", "query", "page", "hitsPerPage", ...}]

        Returns:
            One result object per request, in order
        """
        payload = {
            "requests": [
                {"indexName": r["indexName"], "params": self.encode_params(r)}
                for r in requests
            ]
        }
        data = await self._request("POST", f"{self.read_url}/indexes/*/queries", payload)
        return data.get("results", [])

    async def save_objects(self, index_name: str, objects: list[dict[str, Any]]) -> dict[str, Any]:
        """Add or replace records by objectID."""
        payload = {
            "requests": [{"action": "updateObject", "body": obj} for obj in objects]
        }
        return await self._request(
            "POST", f"{self.write_url}/indexes/{index_name}/batch", payload
        )

    async def set_settings(self, index_name: str, index_settings: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "PUT", f"{self.write_url}/indexes/{index_name}/settings", index_settings
        )
