"""HTTP transport for the intake API.

Owns connection reuse and proxy routing. One :class:`httpx.AsyncClient` is
kept per distinct proxy URL in a :class:`ClientCache` whose lifetime is a
single batch run::

    async with ClientCache(timeout=60) as clients:
        request = RequestBuilder(config, clients)
        response = await request("POST", url="v1/input", headers=..., content=...)

Non-2xx responses are raised as :class:`UploadHTTPError` carrying the
status code and reason phrase.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from typing import Any

import httpx

from srcmap.config import ConfigurationError, get_proxy_url
from srcmap.constants import API_KEY_HEADER, APP_KEY_HEADER
from srcmap.models import UploadConfig

logger = logging.getLogger(__name__)


class UploadHTTPError(Exception):
    """Raised when the intake API answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int, status_text: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text


def build_path(*parts: str) -> str:
    """Join URL or filesystem path fragments with single slashes.

    The first fragment keeps its leading slashes (absolute paths, URL
    schemes); empty fragments are dropped.
    """
    cleaned = []
    for i, part in enumerate(parts):
        part = part.strip()
        part = part.rstrip("/") if i == 0 else part.strip("/")
        if part:
            cleaned.append(part)
    return "/".join(cleaned)


class ClientCache:
    """Reusable HTTP clients keyed by normalized proxy URL.

    The empty key is the client that discovers proxies from the environment
    (``HTTPS_PROXY`` and friends). Clients are created lazily on first use
    and closed together when the cache is closed. Lookup and insertion
    happen without a suspension point, so concurrent first use from several
    tasks yields a single client.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    def get(self, proxy_url: str = "") -> httpx.AsyncClient:
        client = self._clients.get(proxy_url)
        if client is None:
            client = self._create_client(proxy_url)
            self._clients[proxy_url] = client
            logger.debug("Created HTTP client for proxy %r", proxy_url or "<env>")
        return client

    def _create_client(self, proxy_url: str) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(self._timeout)}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        if proxy_url:
            kwargs["proxy"] = proxy_url
            kwargs["trust_env"] = False
        return httpx.AsyncClient(**kwargs)

    def __len__(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> ClientCache:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        await self.aclose()


class RequestBuilder:
    """Issues one HTTP request against the intake API.

    Adds the credential headers and any configured extra headers, applies
    the override URL when set and routes through the client matching the
    configured proxy.

    Args:
        config: Upload configuration (base URL, keys, proxy, headers).
        clients: Client cache shared by every request of the batch.
    """

    def __init__(self, config: UploadConfig, clients: ClientCache) -> None:
        self._config = config
        self._clients = clients
        self._proxy_url = get_proxy_url(config.proxy)
        # Build the proxy client now so a bad proxy aborts before any upload.
        try:
            clients.get(self._proxy_url)
        except (ValueError, ImportError) as exc:
            raise ConfigurationError(
                f"Unusable proxy configuration {self._proxy_url!r}: {exc}"
            ) from exc

    def _build_headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged: dict[str, str] = {"User-Agent": f"srcmap/{self._config.cli_version}"}
        if self._config.api_key:
            merged[API_KEY_HEADER] = self._config.api_key
        if self._config.app_key:
            merged[APP_KEY_HEADER] = self._config.app_key
        merged.update(headers or {})
        merged.update(self._config.headers)
        return merged

    def _build_url(self, url: str | None) -> str:
        if self._config.override_url is not None:
            url = self._config.override_url
        return build_path(self._config.base_url, url or "")

    async def __call__(
        self,
        method: str,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        content: bytes | AsyncIterable[bytes] | None = None,
    ) -> httpx.Response:
        """Send the request and return the response.

        The body is streamed as-is; no client-side size limit is applied,
        the server answers 413 for oversized payloads.

        Raises:
            UploadHTTPError: On any non-2xx response.
            httpx.TransportError: On network failures and timeouts.
        """
        client = self._clients.get(self._proxy_url)
        full_url = self._build_url(url)
        logger.debug("%s %s", method, full_url)
        response = await client.request(
            method,
            full_url,
            headers=self._build_headers(headers),
            content=content,
        )
        if response.is_success:
            return response

        await response.aread()
        status_text = response.reason_phrase
        raise UploadHTTPError(
            f"Request failed with status code {response.status_code}",
            status_code=response.status_code,
            status_text=status_text,
        )
