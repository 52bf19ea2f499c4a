from __future__ import annotations

import logging

import httpx

from speechflow.errors import ConfigurationError, ProviderRejected, ProviderUnavailable

logger = logging.getLogger(__name__)


class CredentialIssuer:
    """Exchanges the long-lived API key for a short-lived realtime key."""

    def __init__(
        self,
        api_key: str,
        auth_url: str = "https://mp.speechmatics.com/v1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.auth_url = auth_url.rstrip("/")
        self._client = client

    async def issue(self, ttl_seconds: int = 3600) -> str:
        if not self.api_key:
            raise ConfigurationError("Speechmatics API key not configured")

        url = f"{self.auth_url}/api_keys"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(url, params={"type": "rt"}, headers=headers, json={"ttl": ttl_seconds})
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(url, params={"type": "rt"}, headers=headers, json={"ttl": ttl_seconds})
        except httpx.HTTPError as exc:
            raise ProviderUnavailable("credential issue", exc) from exc

        if not response.is_success:
            raise ProviderRejected("credential issue", response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderRejected("credential issue", response.status_code, response.text) from exc
        key_value = payload.get("key_value") if isinstance(payload, dict) else None
        if not key_value:
            raise ProviderRejected("credential issue", response.status_code, "response missing key_value")

        logger.info("Issued realtime credential (ttl=%ss)", ttl_seconds)
        return str(key_value)
