"""Sentinel — Base HTTP Collector."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger("sentinel.collector")


class BaseCollector:
    """Base class for upstream intelligence sources reached over HTTP.

    Owns one lazily-created httpx.AsyncClient. Pass `transport` to route
    every request through a custom httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        name: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def aclose(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("[%s] Collector closed", self.name)

    async def post_json(
        self,
        url: str,
        payload: dict,
        headers: dict = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """POST a JSON body; the caller inspects the status code."""
        return await self.http_client.post(
            url,
            json=payload,
            headers=headers,
            timeout=timeout if timeout is not None else self.timeout,
        )
