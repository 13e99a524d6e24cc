"""
VaultClient — authenticated async client for the Lifestream Vault API.

Wraps every request with the security layer:
- API-key mode: static bearer header plus HMAC signing of mutating requests.
- JWT mode: proactive refresh before expiry, one reactive refresh-and-retry
  on a 401 response.
- Failures are classified into the typed SDK errors.

Per-resource wrappers (vaults, documents, search, ...) are built on top of
:meth:`VaultClient.request` and are not part of this package.

Security Note:
    Never log API keys, tokens or request bodies. Only log methods, paths
    and status codes.
"""
import time
import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import orjson
from yarl import URL
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .audit import AuditEntry, AuditLogger
from .config import DEFAULT_TIMEOUT, ClientConfig, normalize_base_url
from .exceptions import SDKError, ValidationError, VaultSDKError
from .handlers import classify_error
from .security.signature import sign_request
from .security.tokens import REFRESH_COOKIE, AuthTokens, OnTokenRefresh, TokenManager
from .transport import HTTPResponse, HTTPResponseError, HTTPTransport

logger = logging.getLogger("vault_sdk.client")

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
RETRY_HEADER = "X-Retry-After-Refresh"

MFA_ENDPOINTS = {
    "totp": "auth/mfa/totp",
    "backup_code": "auth/mfa/backup-code",
}


class MfaChallenge(BaseModel):
    """Returned by the login endpoint when the account has MFA enabled."""

    methods: list[str] = Field(default_factory=list)
    mfa_token: str


MfaResponder = Callable[
    [MfaChallenge],
    Union[tuple[str, str], Awaitable[tuple[str, str]]],
]


def _first_error(err: PydanticValidationError) -> str:
    errors = err.errors()
    if not errors:
        return str(err)
    return errors[0]["msg"].removeprefix("Value error, ")


class VaultClient:
    """Main client for the Lifestream Vault API.

    Either pass a :class:`ClientConfig` or the same fields as keyword
    arguments::

        async with VaultClient(api_key="lsv_k_...") as client:
            vaults = await client.get("vaults")
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        on_token_refresh: Optional[OnTokenRefresh] = None,
        transport: Optional[HTTPTransport] = None,
        **options,
    ):
        try:
            if config is None:
                config = ClientConfig(**options)
            elif options:
                config = ClientConfig(**{**config.model_dump(), **options})
        except PydanticValidationError as err:
            raise ValidationError(_first_error(err), err.errors()) from err

        self.config = config
        self.base_url = config.base_url
        self._transport = transport or HTTPTransport(config.base_url, config.timeout)
        self._sign = config.should_sign

        self.token_manager: Optional[TokenManager] = None
        if not config.uses_api_key:
            self.token_manager = TokenManager(
                config.access_token,
                config.refresh_token,
                refresh_buffer_ms=config.refresh_buffer_ms,
                on_token_refresh=on_token_refresh,
            )

        self.audit_logger: Optional[AuditLogger] = None
        if config.enable_audit_logging:
            self.audit_logger = AuditLogger(config.audit_log_path)

        logger.debug(
            "VaultClient created: url=%s auth=%s signing=%s",
            self.base_url,
            "api_key" if config.uses_api_key else "jwt",
            self._sign,
        )

    async def __aenter__(self) -> "VaultClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._transport.close()
        if self.audit_logger is not None:
            self.audit_logger.close()

    @property
    def transport(self) -> HTTPTransport:
        return self._transport

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    def _wire_path(self, path: str) -> str:
        """Percent-encoded request path, as aiohttp puts it on the wire."""
        return URL(self._transport.url_for(path)).raw_path

    async def _audit(self, method: str, path: str, status: int, started: float) -> None:
        if self.audit_logger is None:
            return
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            method=method,
            path=self._wire_path(path),
            status=status,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        try:
            await asyncio.to_thread(self.audit_logger.log, entry)
        except OSError as err:
            logger.warning("Audit log write failed: %s", err)

    async def _send_with_api_key(
        self,
        method: str,
        path: str,
        body: Optional[bytes],
        params: Optional[Mapping[str, Any]],
        headers: dict[str, str],
    ) -> HTTPResponse:
        api_key = self.config.api_key
        headers["Authorization"] = f"Bearer {api_key}"
        if self._sign and method in MUTATING_METHODS:
            headers.update(
                sign_request(api_key, method, self._wire_path(path), body or b"")
            )
        return await self._transport.request(
            method, path, data=body, params=params, headers=headers,
        )

    async def _send_with_token(
        self,
        method: str,
        path: str,
        body: Optional[bytes],
        params: Optional[Mapping[str, Any]],
        headers: dict[str, str],
    ) -> HTTPResponse:
        tm = self.token_manager
        if tm.needs_refresh() and tm.get_refresh_token():
            try:
                await tm.refresh(self._transport)
            except VaultSDKError as err:
                # the 401 path below gets another chance
                logger.warning("Proactive token refresh failed: %s", err)
        headers["Authorization"] = f"Bearer {tm.get_access_token()}"
        try:
            return await self._transport.request(
                method, path, data=body, params=params, headers=headers,
            )
        except HTTPResponseError as err:
            if err.status != 401 or RETRY_HEADER in headers or not tm.get_refresh_token():
                raise
            try:
                new_token = await tm.refresh(self._transport)
            except VaultSDKError as refresh_err:
                logger.warning("Token refresh after 401 failed: %s", refresh_err)
                new_token = None
            if new_token is None:
                raise
        logger.debug("Retrying %s %s after token refresh", method, path)
        retry_headers = {
            **headers,
            "Authorization": f"Bearer {new_token}",
            RETRY_HEADER: "1",
        }
        return await self._transport.request(
            method, path, data=body, params=params, headers=retry_headers,
        )

    async def request_raw(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        resource: str = "Resource",
        identifier: str = "",
    ) -> HTTPResponse:
        """Send an authenticated request and return the buffered response.

        Args:
            method: HTTP method.
            path: Path relative to ``/api/v1``.
            json: JSON-serializable body.
            params: Query string parameters (never part of the signature).
            headers: Extra request headers.
            resource: Resource name used in NotFoundError messages.
            identifier: Resource identifier used in NotFoundError messages.

        Raises:
            SDKError: Classified failure (see :mod:`vault_sdk.handlers`).
        """
        method = method.upper()
        body = orjson.dumps(json) if json is not None else None
        request_headers = dict(headers or {})
        if body is not None:
            request_headers.setdefault("Content-Type", "application/json")

        started = time.monotonic()
        status = 0
        try:
            if self.token_manager is None:
                response = await self._send_with_api_key(
                    method, path, body, params, request_headers,
                )
            else:
                response = await self._send_with_token(
                    method, path, body, params, request_headers,
                )
            status = response.status
            return response
        except HTTPResponseError as err:
            status = err.status
            raise classify_error(err, resource, identifier) from err
        except VaultSDKError:
            raise
        except Exception as err:
            raise classify_error(err, resource, identifier) from err
        finally:
            if status:
                await self._audit(method, path, status, started)

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """Send an authenticated request and return the decoded JSON body."""
        response = await self.request_raw(method, path, **kwargs)
        try:
            return response.json()
        except orjson.JSONDecodeError as err:
            raise SDKError("Invalid JSON in API response", response.status) from err

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @classmethod
    async def login(
        cls,
        email: str,
        password: str,
        *,
        base_url: Optional[str] = None,
        mfa_code: Optional[str] = None,
        mfa_method: str = "totp",
        on_mfa_required: Optional[MfaResponder] = None,
        transport: Optional[HTTPTransport] = None,
        on_token_refresh: Optional[OnTokenRefresh] = None,
        **options,
    ) -> tuple["VaultClient", AuthTokens, Optional[str]]:
        """Authenticate with email and password and build a JWT client.

        When the account has MFA enabled, either pass ``mfa_code`` (with
        ``mfa_method`` "totp" or "backup_code") or an ``on_mfa_required``
        callback returning ``(method, code)``.

        Returns:
            Tuple of (client, tokens, refresh_token); refresh_token is read
            from the ``lsv_refresh`` cookie and may be None.

        Raises:
            ValidationError: If MFA is required and neither a code nor a
                callback was provided, or the MFA method is unknown.
            SDKError: Classified failure of the login call.
        """
        base = normalize_base_url(base_url)
        http = transport or HTTPTransport(base, options.get("timeout", DEFAULT_TIMEOUT))
        json_headers = {"Content-Type": "application/json"}
        try:
            response = await http.request(
                "POST", "auth/login",
                data=orjson.dumps({"email": email, "password": password}),
                headers=json_headers,
            )
            data = response.json()

            if isinstance(data, dict) and data.get("mfaRequired") is True:
                challenge = MfaChallenge(
                    methods=data.get("mfaMethods") or [],
                    mfa_token=data.get("mfaToken", ""),
                )
                if mfa_code:
                    method, code = mfa_method, mfa_code
                elif on_mfa_required is not None:
                    result = on_mfa_required(challenge)
                    if inspect.isawaitable(result):
                        result = await result
                    method, code = result
                else:
                    raise ValidationError(
                        "MFA is required but no MFA code or callback provided. "
                        f"Available methods: {', '.join(challenge.methods)}"
                    )
                endpoint = MFA_ENDPOINTS.get(method)
                if endpoint is None:
                    raise ValidationError(f"Unsupported MFA method: {method}")
                logger.debug("Completing MFA login via %s", method)
                response = await http.request(
                    "POST", endpoint,
                    data=orjson.dumps({"mfaToken": challenge.mfa_token, "code": code}),
                    headers=json_headers,
                )
                data = response.json()
        except VaultSDKError:
            raise
        except Exception as err:
            raise classify_error(err, "Session", email) from err
        finally:
            if transport is None:
                await http.close()

        try:
            tokens = AuthTokens.model_validate(data)
        except PydanticValidationError as err:
            raise SDKError("Malformed login response", response.status) from err
        if "displayName" in tokens.user and "name" not in tokens.user:
            tokens.user["name"] = tokens.user["displayName"]

        refresh_token = response.cookie(REFRESH_COOKIE) or tokens.refresh_token
        client = cls(
            base_url=base,
            access_token=tokens.access_token,
            refresh_token=refresh_token,
            transport=transport,
            on_token_refresh=on_token_refresh,
            **options,
        )
        logger.info("Logged in (refresh token: %s)", bool(refresh_token))
        return client, tokens, refresh_token
