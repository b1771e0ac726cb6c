"""
Raw binding that forwards ``fetch(url, init)`` exchanges to an HTTP service.

Useful locally, where a pre-release binding is served by a sidecar process
instead of the platform: the binding's synthetic origin (``http://d1``) is
rewritten onto ``base_url``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)


class HTTPBinding:
    """Thin ``fetch``-shaped binding backed by ``httpx.AsyncClient``."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _resolve_url(self, url: str) -> str:
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        return f"{self.base_url}{path}"

    async def fetch(self, url: str, init: Optional[Dict[str, Any]] = None) -> httpx.Response:
        init = init or {}
        method = str(init.get("method", "GET")).upper()
        target = self._resolve_url(url)
        try:
            return await self.client.request(
                method,
                target,
                headers=init.get("headers"),
                content=init.get("body"),
            )
        except httpx.RequestError:
            logger.error("Binding exchange failed", exc_info=True, extra={"url": target, "method": method})
            raise

    async def close(self) -> None:
        if self._client is not None:
            client = self._client
            self._client = None
            await client.aclose()
