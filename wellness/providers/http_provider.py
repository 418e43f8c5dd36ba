"""
HTTP Suggestion Provider

Talks to a JSON suggestion service over HTTP. One POST endpoint per
operation:

    POST /recommendations/personalized
    POST /recommendations/content
    POST /recommendations/peers
    POST /adaptations/contextual
    GET  /health

Configuration (args/learning.yaml, ``provider`` section):
    - base_url: Service root (or WELLNESS_PROVIDER_URL env)
    - api_key: Bearer token (or WELLNESS_PROVIDER_API_KEY env)
    - timeout_seconds: Per-request timeout
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import httpx

from .base import HealthStatus, ProviderUnavailable, SuggestionProvider


logger = logging.getLogger(__name__)


class HttpSuggestionProvider(SuggestionProvider):
    def __init__(self, config: dict[str, Any] | None = None):
        config = config or {}
        self._config = config

        self._base_url = config.get("base_url") or os.getenv("WELLNESS_PROVIDER_URL")
        self._api_key = config.get("api_key") or os.getenv("WELLNESS_PROVIDER_API_KEY")
        self._timeout = float(config.get("timeout_seconds", 5.0))

        # HTTP client (lazy init)
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def _get_client(self) -> httpx.AsyncClient:
        if not self._base_url:
            raise ProviderUnavailable("Suggestion service URL not configured")

        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
            )
        return self._client

    async def _make_request(
        self, method: str, endpoint: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make API request, mapping transport failures to ProviderUnavailable."""
        client = await self._get_client()

        try:
            if method.upper() == "GET":
                response = await client.get(endpoint, params=data)
            elif method.upper() == "POST":
                response = await client.post(endpoint, json=data)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            logger.error(f"Suggestion API error: {e.response.status_code} - {e.response.text}")
            raise ProviderUnavailable(f"Suggestion API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Suggestion request error: {e}")
            raise ProviderUnavailable(f"Suggestion request error: {e}") from e

    async def generate_personalized_recommendations(self, user_id, patterns, context):
        return await self._make_request(
            "POST",
            "/recommendations/personalized",
            {"user_id": user_id, "patterns": patterns, "context": context},
        )

    async def generate_content_recommendations(self, user_id, preferences, context):
        return await self._make_request(
            "POST",
            "/recommendations/content",
            {"user_id": user_id, "preferences": preferences, "context": context},
        )

    async def generate_peer_recommendations(self, user_id, profile, candidates):
        return await self._make_request(
            "POST",
            "/recommendations/peers",
            {"user_id": user_id, "profile": profile, "candidates": candidates},
        )

    async def generate_contextual_adaptations(self, user_id, context, recommendations):
        return await self._make_request(
            "POST",
            "/adaptations/contextual",
            {"user_id": user_id, "context": context, "recommendations": recommendations},
        )

    async def health_check(self) -> HealthStatus:
        start = time.time()

        try:
            result = await self._make_request("GET", "/health")
            return HealthStatus(
                healthy=result.get("status") == "ok",
                provider=self.name,
                latency_ms=(time.time() - start) * 1000,
                details=result,
            )
        except Exception as e:
            return HealthStatus(
                healthy=False,
                provider=self.name,
                latency_ms=(time.time() - start) * 1000,
                details={"error": str(e)},
            )

    async def teardown(self) -> bool:
        if self._client:
            await self._client.aclose()
            self._client = None
        return True
