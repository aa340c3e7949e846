"""
aiohttp transport for the ELLA API client.

Sends one request and hands back status, headers and body. HTTP error
statuses are ordinary responses here; only the absence of a response raises.
The session's cookie jar carries the HTTP-only refresh cookie set by the
server between calls.
"""

import asyncio
import logging
from typing import Optional, Dict

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError
from aiohttp.abc import AbstractCookieJar

from ella_shared.interfaces import ITransport
from ella_shared.models import RequestDescriptor, TransportResponse

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base exception for transport failures (no HTTP response received)."""
    pass


class TransportTimeoutError(TransportError):
    """The request did not complete within its timeout."""
    pass


class TransportConnectionError(TransportError):
    """The server could not be reached."""
    pass


class AiohttpTransport(ITransport):
    """
    Transport backed by a lazily created aiohttp ClientSession.

    Relative URLs are resolved against the API base URL.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        user_agent: str = "EllaClient/1.0",
        cookie_jar: Optional[AbstractCookieJar] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.user_agent = user_agent
        self._cookie_jar = cookie_jar
        self._session: Optional[ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
            )
            self._session = ClientSession(
                connector=connector,
                cookie_jar=self._cookie_jar or aiohttp.CookieJar(unsafe=True),
                timeout=ClientTimeout(total=self.timeout),
                headers={
                    'User-Agent': self.user_agent,
                    'Accept': 'application/json',
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def resolve_url(self, url: str) -> str:
        if url.startswith('http://') or url.startswith('https://'):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    async def send(self, request: RequestDescriptor, timeout: Optional[float] = None) -> TransportResponse:
        """
        Send a request.

        Args:
            request: Request to send
            timeout: Total timeout in seconds; defaults to the transport timeout

        Returns:
            The response, whatever its status

        Raises:
            TransportTimeoutError: When the timeout elapses
            TransportConnectionError: When no response is received
        """
        await self._ensure_session()

        url = self.resolve_url(request.url)
        headers: Dict[str, str] = dict(request.headers)
        request_timeout = ClientTimeout(total=timeout if timeout is not None else self.timeout)

        logger.debug(f"Sending {request.method} {url}")

        try:
            async with self._session.request(
                method=request.method,
                url=url,
                json=request.json,
                data=request.data,
                params=request.params,
                headers=headers,
                timeout=request_timeout
            ) as response:
                body = await response.read()
                return TransportResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=body,
                    url=str(response.url)
                )

        except asyncio.TimeoutError as e:
            logger.warning(f"{request.method} {url} timed out")
            raise TransportTimeoutError(f"Request to {url} timed out") from e
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {request.method} {url}: {e}")
            raise TransportConnectionError(f"Request to {url} failed: {e}") from e
