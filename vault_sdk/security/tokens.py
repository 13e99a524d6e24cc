"""
Token Lifecycle — JWT access/refresh token tracking with coalesced refresh.

Trust boundary:
    Only the JWT payload is decoded, the signature is never verified here.
    Claims are used solely to decide *when* to refresh; authorization
    decisions stay with the issuing server.

Security Note:
    Never log access or refresh tokens.
"""
import time
import asyncio
import inspect
import logging
import threading
import concurrent.futures
from typing import Any, Awaitable, Callable, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import NetworkError, NoRefreshTokenError, SDKError, TokenDecodeError
from ..handlers import classify_error
from .codec import b64url_decode

logger = logging.getLogger("vault_sdk.security")

DEFAULT_REFRESH_BUFFER_MS = 60_000
REFRESH_PATH = "auth/refresh"
REFRESH_COOKIE = "lsv_refresh"
REQUESTED_WITH = "LifestreamVaultSDK"


class AuthTokens(BaseModel):
    """Tokens returned from login and refresh calls."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    access_token: str = Field(alias="accessToken")
    user: dict[str, Any]
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")


OnTokenRefresh = Callable[[AuthTokens], Union[None, Awaitable[None]]]


# ---------------------------------------------------------------------------
# JWT inspection
# ---------------------------------------------------------------------------

def _parse_jwt_payload(token: str) -> dict[str, Any]:
    """Decode the payload segment of a JWT.

    Raises:
        TokenDecodeError: On any structural or decode failure.
    """
    if not isinstance(token, str):
        raise TokenDecodeError("JWT must be a string")
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenDecodeError(
            f"JWT must have exactly 3 segments, got {len(parts)}"
        )
    try:
        claims = orjson.loads(b64url_decode(parts[1]))
    except ValueError as err:
        raise TokenDecodeError(f"JWT payload is not decodable: {err}") from err
    if not isinstance(claims, dict):
        raise TokenDecodeError("JWT payload is not a JSON object")
    return claims


def decode_jwt_payload(token: str) -> Optional[dict[str, Any]]:
    """Decode a JWT payload without verification.

    Returns:
        The claims mapping, or None when the token cannot be decoded.
    """
    try:
        return _parse_jwt_payload(token)
    except TokenDecodeError as err:
        logger.debug("Treating undecodable JWT as unusable: %s", err)
        return None


def is_token_expired(token: str, buffer_ms: int = DEFAULT_REFRESH_BUFFER_MS) -> bool:
    """Check if a JWT is expired or will expire within buffer_ms.

    Undecodable tokens and tokens without a numeric ``exp`` claim are
    always expired, whatever the buffer.
    """
    claims = decode_jwt_payload(token)
    if claims is None:
        return True
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return True
    now_ms = time.time() * 1000
    return exp * 1000 - now_ms <= buffer_ms


# ---------------------------------------------------------------------------
# Token manager
# ---------------------------------------------------------------------------

class TokenManager:
    """Manages the JWT access token lifecycle with deduplicated refresh.

    At most one refresh call is outstanding at any time: concurrent
    ``refresh()`` callers, from any thread or event loop, attach to the
    in-flight refresh and all observe its result, success or failure. The
    handle is cleared before the result is delivered, so the next call after
    completion performs a new round trip.
    """

    def __init__(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        *,
        refresh_buffer_ms: int = DEFAULT_REFRESH_BUFFER_MS,
        on_token_refresh: Optional[OnTokenRefresh] = None,
    ):
        self._lock = threading.Lock()
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._refresh_buffer_ms = refresh_buffer_ms
        self._on_token_refresh = on_token_refresh
        self._refresh_future: Optional[concurrent.futures.Future] = None
        self._refresh_runner: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_access_token(self) -> str:
        with self._lock:
            return self._access_token

    def set_access_token(self, token: str) -> None:
        with self._lock:
            self._access_token = token

    def get_refresh_token(self) -> Optional[str]:
        with self._lock:
            return self._refresh_token

    def set_refresh_token(self, token: Optional[str]) -> None:
        """Replace the refresh token; None disables future refreshes."""
        with self._lock:
            self._refresh_token = token

    @property
    def access_token(self) -> str:
        return self.get_access_token()

    @property
    def refresh_token(self) -> Optional[str]:
        return self.get_refresh_token()

    @property
    def refresh_buffer_ms(self) -> int:
        return self._refresh_buffer_ms

    @property
    def is_refreshing(self) -> bool:
        with self._lock:
            return self._refresh_future is not None

    def needs_refresh(self) -> bool:
        """Check whether the current access token needs refreshing."""
        return is_token_expired(self.get_access_token(), self._refresh_buffer_ms)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, http: Any) -> str:
        """Refresh the access token via the ``auth/refresh`` endpoint.

        The in-flight handle is a :class:`concurrent.futures.Future`, so
        callers running on other event loops (other threads) join the same
        refresh instead of starting a second one.

        Args:
            http: Transport exposing ``async request(method, path, headers=...)``.
                Must not carry auth hooks of its own.

        Returns:
            The new access token.

        Raises:
            NoRefreshTokenError: If no refresh token is held; no call is made.
            SDKError: Classified failure of the refresh call, shared by every
                concurrent caller.
        """
        with self._lock:
            refresh_token = self._refresh_token
            if not refresh_token:
                raise NoRefreshTokenError()
            future = self._refresh_future
            if future is None:
                future = concurrent.futures.Future()
                # a running future cannot be cancelled by a waiter
                future.set_running_or_notify_cancel()
                self._refresh_future = future
                self._refresh_runner = asyncio.ensure_future(
                    self._run_refresh(http, refresh_token, future)
                )
            else:
                logger.debug("Joining in-flight token refresh")
        return await asyncio.shield(asyncio.wrap_future(future))

    async def _run_refresh(
        self,
        http: Any,
        refresh_token: str,
        future: concurrent.futures.Future,
    ) -> None:
        try:
            token = await self._perform_refresh(http, refresh_token)
        except asyncio.CancelledError:
            self._clear_refresh()
            future.set_exception(NetworkError("Token refresh was cancelled"))
            raise
        except Exception as err:
            self._clear_refresh()
            future.set_exception(err)
        else:
            self._clear_refresh()
            future.set_result(token)

    def _clear_refresh(self) -> None:
        with self._lock:
            self._refresh_future = None
            self._refresh_runner = None

    async def _perform_refresh(self, http: Any, refresh_token: str) -> str:
        try:
            response = await http.request(
                "POST",
                REFRESH_PATH,
                headers={
                    "X-Requested-With": REQUESTED_WITH,
                    "Cookie": f"{REFRESH_COOKIE}={refresh_token}",
                },
            )
        except Exception as err:
            logger.warning("Token refresh failed: %s", type(err).__name__)
            raise classify_error(err, "Session", "refresh") from err

        try:
            tokens = AuthTokens.model_validate(response.json())
        except (ValueError, PydanticValidationError) as err:
            raise SDKError(
                "Malformed token refresh response", response.status
            ) from err

        rotated = tokens.refresh_token or response.cookie(REFRESH_COOKIE)
        with self._lock:
            self._access_token = tokens.access_token
            if rotated:
                self._refresh_token = rotated
        logger.info(
            "Access token refreshed (refresh token rotated: %s)", bool(rotated)
        )

        if self._on_token_refresh is not None:
            try:
                result = self._on_token_refresh(tokens)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # the new token is already stored
                logger.exception("on_token_refresh callback failed")
        return tokens.access_token
