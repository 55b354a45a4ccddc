"""HTTP transport: POST a payload and hand back a response or a byte stream."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from llm_relay.constants import DEFAULT_PROXY_URL
from llm_relay.errors import UpstreamHTTPError
from llm_relay.llm.client_cache import ClientCache
from llm_relay.llm.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES, with_retry

_logger = logging.getLogger(__name__)


class HttpTransport:
    """POSTs JSON payloads, retrying transient failures.

    Requests go to ``{proxy_url}/{endpoint}`` unless an explicit
    ``base_url`` is given.  Clients come from the shared
    :class:`ClientCache`; the transport itself holds no per-request state.
    """

    def __init__(
        self,
        cache: ClientCache | None = None,
        proxy_url: str = DEFAULT_PROXY_URL,
        timeout: float = 120,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
    ) -> None:
        self.cache = cache if cache is not None else ClientCache(timeout=timeout)
        self.proxy_url = proxy_url
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def open(
        self,
        endpoint: str,
        payload: dict[str, Any],
        *,
        base_url: str | None = None,
        credential: str = "",
        auth_headers: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Send one request and return the successful response.

        With ``stream=True`` the body is left unread; consume it with
        :meth:`iter_bytes`, which closes the response.  Non-2xx answers
        raise :class:`UpstreamHTTPError` (retried when 429 or 5xx).
        """
        client = self.cache.get(base_url or self.proxy_url, credential, auth_headers)
        path = endpoint.lstrip("/")

        async def _send() -> httpx.Response:
            request = client.build_request(
                "POST", path, json=payload, headers=headers, params=params,
            )
            response = await client.send(request, stream=stream)
            if response.is_success:
                return response
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise UpstreamHTTPError(response.status_code, response.reason_phrase, body)

        _logger.debug("POST %s (stream=%s)", path, stream)
        return await with_retry(_send, self.max_retries, self.base_delay)

    async def post_json(self, endpoint: str, payload: dict[str, Any], **kwargs: Any) -> Any:
        """Non-streaming request; returns the parsed JSON body."""
        response = await self.open(endpoint, payload, stream=False, **kwargs)
        return response.json()

    @staticmethod
    async def iter_bytes(response: httpx.Response) -> AsyncIterator[bytes]:
        """Yield raw body chunks, closing the response when done or abandoned."""
        try:
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk
        finally:
            await response.aclose()
