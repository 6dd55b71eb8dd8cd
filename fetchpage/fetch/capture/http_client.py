"""Plain HTTP retrieval with aiohttp.

One GET per call, a fixed total timeout and no redirect following: a 3xx
response is returned as-is so the classifier can inspect where it points.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from ..errors import NetworkError

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

DEFAULT_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7',
}


class HttpResponse(BaseModel):
    """Response of one plain fetch."""

    status_code: int = Field(description="HTTP status code")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")
    body: str = Field(default="", description="Decoded response body")
    url: str = Field(description="URL that was requested")
    elapsed_ms: float = Field(default=0.0, description="Request duration in milliseconds")


class HttpFetchClient:
    """Single-request HTTP client.

    Usable directly (a session is opened per call) or as an async context
    manager to reuse one session.
    """

    def __init__(
        self,
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        extra_headers: Optional[Dict[str, str]] = None
    ):
        """Initialize client.

        Args:
            timeout_s: Total request timeout in seconds
            user_agent: User-Agent header value
            extra_headers: Headers added to every request
        """
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.extra_headers = extra_headers or {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
        return self._session

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def build_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        request_headers = {'User-Agent': self.user_agent}
        request_headers.update(DEFAULT_HEADERS)
        request_headers.update(self.extra_headers)
        if headers:
            request_headers.update(headers)
        return request_headers

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        """Fetch a URL once.

        Args:
            url: URL to request
            headers: Extra request headers (e.g. ``Cookie``)

        Returns:
            HttpResponse for any status, including 3xx and errors

        Raises:
            NetworkError: On timeout or connection failure
        """
        owns_session = self._session is None
        session = await self._ensure_session()
        start = time.monotonic()

        try:
            async with session.get(
                url,
                headers=self.build_headers(headers),
                allow_redirects=False
            ) as response:
                raw = await response.read()
                body = self._decode(raw, response.charset)
                elapsed_ms = (time.monotonic() - start) * 1000

                logger.debug(f"GET {url} -> {response.status} ({len(raw)} bytes, {elapsed_ms:.0f}ms)")

                return HttpResponse(
                    status_code=response.status,
                    headers={k: v for k, v in response.headers.items()},
                    body=body,
                    url=url,
                    elapsed_ms=elapsed_ms,
                )

        except asyncio.TimeoutError:
            raise NetworkError(f"Request timed out after {self.timeout_s}s: {url}")
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed for {url}: {e}")
        finally:
            if owns_session:
                await self.close()

    @staticmethod
    def _decode(raw: bytes, charset: Optional[str]) -> str:
        if charset:
            try:
                return raw.decode(charset, errors='replace')
            except LookupError:
                logger.debug(f"Unknown charset {charset!r}, decoding as UTF-8")
        return raw.decode('utf-8', errors='replace')
