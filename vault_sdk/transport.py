"""
HTTP Transport — thin aiohttp wrapper consumed by the client and token manager.

Non-2xx responses are raised as :class:`HTTPResponseError` carrying the
status code and raw body; connection, DNS and timeout failures propagate as
the native aiohttp / asyncio exceptions. Mapping either onto the SDK error
taxonomy is the job of :mod:`vault_sdk.handlers`.
"""
import logging
from http.cookies import CookieError, SimpleCookie
from typing import Any, Mapping, Optional

import aiohttp
import orjson

logger = logging.getLogger("vault_sdk.transport")

API_PREFIX = "api/v1"


class HTTPResponse:
    """Buffered HTTP response."""

    def __init__(self, status: int, headers: Optional[Mapping[str, str]] = None, body: bytes = b""):
        self.status = status
        self.headers = headers if headers is not None else {}
        self.body = body

    def __repr__(self) -> str:
        return f"<HTTPResponse status={self.status} bytes={len(self.body)}>"

    def json(self) -> Any:
        """Parse the body as JSON; None for an empty body.

        Raises:
            orjson.JSONDecodeError: If the body is not valid JSON.
        """
        if not self.body:
            return None
        return orjson.loads(self.body)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def set_cookies(self) -> list[str]:
        """All ``Set-Cookie`` header values."""
        getall = getattr(self.headers, "getall", None)
        if getall is not None:
            return list(getall("Set-Cookie", []))
        value = self.headers.get("Set-Cookie") or self.headers.get("set-cookie")
        return [value] if value else []

    def cookie(self, name: str) -> Optional[str]:
        """Value of cookie ``name`` from the ``Set-Cookie`` headers, if any."""
        for header in self.set_cookies():
            jar = SimpleCookie()
            try:
                jar.load(header)
            except CookieError:
                continue
            if name in jar:
                return jar[name].value
        return None


class HTTPResponseError(Exception):
    """The server answered with a non-2xx status."""

    def __init__(
        self,
        status: int,
        reason: str = "",
        body: bytes = b"",
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.status = status
        self.reason = reason
        self.body = body
        self.headers = headers if headers is not None else {}
        super().__init__(f"HTTP {status}: {reason}")

    def json(self) -> Any:
        """Parse the error body as JSON.

        Raises:
            orjson.JSONDecodeError: If the body is empty or not valid JSON.
        """
        return orjson.loads(self.body)


class HTTPTransport:
    """Async HTTP transport rooted at ``<base_url>/api/v1``.

    The aiohttp session is created lazily on first use so the transport can
    be built outside a running event loop.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = dict(headers or {})
        self._session = session
        self._owns_session = session is None

    @property
    def prefix_url(self) -> str:
        return f"{self.base_url}/{API_PREFIX}"

    def url_for(self, path: str) -> str:
        return f"{self.prefix_url}/{path.lstrip('/')}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        *,
        data: Optional[bytes] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HTTPResponse:
        """Send a request and buffer the response.

        Raises:
            HTTPResponseError: For status codes >= 400.
            aiohttp.ClientError: On connection failures.
            asyncio.TimeoutError: When the request exceeds the timeout.
        """
        session = self._get_session()
        url = self.url_for(path)
        async with session.request(
            method.upper(), url, data=data, params=params, headers=headers,
        ) as resp:
            body = await resp.read()
            if resp.status >= 400:
                logger.debug("%s %s -> %d", method.upper(), url, resp.status)
                raise HTTPResponseError(
                    resp.status, resp.reason or "", body, resp.headers,
                )
            return HTTPResponse(resp.status, resp.headers, body)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
