import logging
from typing import Optional
from urllib.parse import quote

import httpx

from errors import StoreError, Unauthenticated

logger = logging.getLogger("QuotaClient")


class QuotaClient:
    """Client for the remote per-user, per-period generation counter"""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 30,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, transport=transport)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def get_count(self, user_id: str, period_key: str) -> int:
        return await self._call("GET", self._url(user_id, period_key))

    async def increment(self, user_id: str, period_key: str) -> int:
        """Increment the counter; returns the authoritative post-increment value"""
        return await self._call("POST", self._url(user_id, period_key) + "/increment")

    def _url(self, user_id: str, period_key: str) -> str:
        return f"{self.base_url}/{quote(user_id, safe='')}/{quote(period_key, safe='')}"

    async def _call(self, method: str, url: str) -> int:
        if self._client.is_closed:
            raise StoreError("Quota client is closed")
        try:
            response = await self._client.request(method, url, headers=self._headers)
        except httpx.HTTPError as e:
            raise StoreError(f"Quota service unreachable: {e}") from e
        if response.status_code in (401, 403):
            raise Unauthenticated("Quota service rejected credentials")
        if response.status_code != 200:
            raise StoreError(f"Quota service error: {response.status_code} - {response.text[:200]}", response.status_code)
        try:
            count = int(response.json()["count"])
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(f"Malformed quota response: {e}") from e
        logger.debug(f"{method} {url} -> count={count}")
        return count
