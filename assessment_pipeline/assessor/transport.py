"""
HTTP transport for the assessor backend.

Provides a blocking single-request call and a blocking fan-out call built
on httpx. The fan-out runs its requests concurrently on a private event
loop; callers only ever see a synchronous call that returns once every
request has settled.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

import httpx

from assessment_pipeline.models import RequestDescriptor

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Blocking HTTP primitives used by the dispatcher."""

    def fetch(self, request: RequestDescriptor) -> httpx.Response:
        """Send one request. Raises httpx.HTTPError on network failure."""
        ...

    def fetch_all(self, requests: Sequence[RequestDescriptor]) -> list[httpx.Response | None]:
        """Send requests together; ``None`` marks a request that never got a response."""
        ...


class HttpTransport:
    """
    httpx-backed Transport.

    Non-2xx responses are returned, never raised, so the dispatcher can
    classify them.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        transport: httpx.MockTransport | None = None,
    ):
        """
        Initialize the transport.

        Args:
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, used by tests to stub the network.
        """
        self._timeout = timeout
        self._mock_transport = transport
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def fetch(self, request: RequestDescriptor) -> httpx.Response:
        return self._client.request(
            request.method.upper(),
            request.url,
            content=request.payload,
            headers=self._build_headers(request),
        )

    def fetch_all(self, requests: Sequence[RequestDescriptor]) -> list[httpx.Response | None]:
        if not requests:
            return []
        return asyncio.run(self._fetch_all(requests))

    async def _fetch_all(
        self, requests: Sequence[RequestDescriptor]
    ) -> list[httpx.Response | None]:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._mock_transport
        ) as client:
            # gather preserves input order
            return list(
                await asyncio.gather(*(self._fetch_async(client, r) for r in requests))
            )

    async def _fetch_async(
        self, client: httpx.AsyncClient, request: RequestDescriptor
    ) -> httpx.Response | None:
        try:
            return await client.request(
                request.method.upper(),
                request.url,
                content=request.payload,
                headers=self._build_headers(request),
            )
        except httpx.RequestError as e:
            logger.warning("Batch request to %s failed: %s", request.url, e)
            return None

    @staticmethod
    def _build_headers(request: RequestDescriptor) -> dict[str, str]:
        return {"Content-Type": request.content_type, **request.headers}

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
