"""Explicitly owned cache of ``httpx.AsyncClient`` instances."""

from __future__ import annotations

import logging

import httpx

_logger = logging.getLogger(__name__)


class ClientCache:
    """HTTP clients keyed by ``(base_url, credential)``.

    A changed credential or base URL yields a fresh client; call
    :meth:`invalidate` when configuration changes so stale clients are
    closed instead of lingering.  One cache may be shared by concurrent
    streams: clients are only created, never mutated.
    """

    def __init__(
        self,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[tuple[str, str], httpx.AsyncClient] = {}
        self._retired: list[httpx.AsyncClient] = []

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, key: object) -> bool:
        return key in self._clients

    def get(
        self,
        base_url: str,
        credential: str = "",
        headers: dict[str, str] | None = None,
    ) -> httpx.AsyncClient:
        """Return the client for *base_url* / *credential*, creating it once.

        *headers* are only applied when the client is created.
        """
        key = (base_url.rstrip("/"), credential)
        client = self._clients.get(key)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                base_url=key[0],
                headers={"Content-Type": "application/json", **(headers or {})},
                timeout=httpx.Timeout(self._timeout, connect=30),
                transport=self._transport,
            )
            self._clients[key] = client
            _logger.debug("Created HTTP client for %s", key[0])
        return client

    def invalidate(self, base_url: str | None = None) -> int:
        """Drop cached clients (all, or those for *base_url*).

        Dropped clients are closed by the next :meth:`aclose`.  Returns the
        number of clients dropped.
        """
        if base_url is None:
            keys = list(self._clients)
        else:
            target = base_url.rstrip("/")
            keys = [k for k in self._clients if k[0] == target]
        for key in keys:
            self._retired.append(self._clients.pop(key))
        if keys:
            _logger.debug("Invalidated %d HTTP client(s)", len(keys))
        return len(keys)

    async def aclose(self) -> None:
        """Close every client, cached or retired."""
        self.invalidate()
        retired, self._retired = self._retired, []
        for client in retired:
            await client.aclose()
