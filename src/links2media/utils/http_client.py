"""Shared async HTTP transport built on httpx."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

import httpx
import structlog

from ..config import settings
from .url_utils import get_host, host_matches

logger = structlog.get_logger(__name__)


class HttpTransport:
    """
    One pooled httpx.AsyncClient shared by parsers, probes and downloads.

    Cookies supplied by callers are attached per request as a Cookie header
    and only for the hosts they are scoped to. They are never written into
    the client's own jar, so one platform's login never leaks to another.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if client is None:
            timeout = httpx.Timeout(
                settings.request_timeout_seconds,
                connect=settings.connect_timeout_seconds,
            )
            client = httpx.AsyncClient(
                transport=transport,
                timeout=timeout,
                follow_redirects=True,
                max_redirects=settings.max_redirects,
                headers={
                    "User-Agent": settings.user_agent,
                    "Accept-Language": settings.accept_language,
                },
            )
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def scoped_headers(
        url: str,
        headers: Optional[dict[str, str]] = None,
        cookie: Optional[str] = None,
        cookie_domains: Optional[Iterable[str]] = None,
    ) -> dict[str, str]:
        """
        Merge a request-scoped Cookie header into headers.

        With cookie_domains given, the cookie is attached only when the URL's
        host is one of them (or a subdomain).
        """
        merged = dict(headers or {})
        if not cookie:
            return merged
        if cookie_domains is not None:
            host = get_host(url)
            if not any(host_matches(host, domain.lstrip(".")) for domain in cookie_domains):
                return merged
        merged["Cookie"] = cookie
        return merged

    async def get(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        cookie: Optional[str] = None,
        cookie_domains: Optional[Iterable[str]] = None,
        follow_redirects: bool = True,
    ) -> httpx.Response:
        """GET with optional scoped cookie. Raises httpx errors to the caller."""
        return await self._client.get(
            url,
            headers=self.scoped_headers(url, headers, cookie, cookie_domains),
            follow_redirects=follow_redirects,
        )

    async def get_no_redirect(self, url: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        """GET that returns 3xx responses as-is (for reading Location headers)."""
        return await self._client.get(url, headers=headers, follow_redirects=False)

    async def head(self, url: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        return await self._client.head(url, headers=headers)

    @asynccontextmanager
    async def stream(self, url: str, headers: Optional[dict[str, str]] = None) -> AsyncIterator[httpx.Response]:
        """Streaming GET; the body is read by the caller inside the context."""
        async with self._client.stream("GET", url, headers=headers) as response:
            yield response

    async def probe_content_length(self, url: str) -> Optional[int]:
        """
        Byte size of a resource via HEAD, falling back to a one-byte Range GET.

        For the Range fallback the total size comes from Content-Range when
        present. Any failure yields None.
        """
        try:
            response = await self.head(url)
            length = _content_length(response)
            if response.is_success and length is not None:
                return length
        except httpx.HTTPError as e:
            logger.debug("HEAD probe failed", url=url, error=str(e))

        try:
            async with self.stream(url, headers={"Range": "bytes=0-0"}) as response:
                if not response.is_success:
                    return None
                total = _content_range_total(response)
                return total if total is not None else _content_length(response)
        except httpx.HTTPError as e:
            logger.debug("Range probe failed", url=url, error=str(e))
            return None


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    if value and value.strip().isdigit():
        return int(value.strip())
    return None


def _content_range_total(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Content-Range", "")
    _, _, total = value.rpartition("/")
    total = total.strip()
    return int(total) if total.isdigit() else None
