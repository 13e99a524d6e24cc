"""
Error Classifier — the single place HTTP outcomes become typed SDK errors.
"""
import logging
from typing import Any, NoReturn

from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    SDKError,
    ValidationError,
)
from .transport import HTTPResponseError

logger = logging.getLogger("vault_sdk.client")


def _error_body(error: HTTPResponseError) -> dict[str, Any]:
    try:
        body = error.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def classify_error(
    error: BaseException,
    resource: str = "Resource",
    identifier: str = "",
) -> SDKError:
    """Convert a transport failure into the matching SDK error.

    Args:
        error: The caught exception, typically an HTTPResponseError or a
            connection failure from aiohttp.
        resource: Human-readable resource name for 404 messages.
        identifier: Resource identifier for 404 messages.

    Returns:
        The typed error; callers are expected to raise it.
    """
    if isinstance(error, SDKError):
        return error

    if isinstance(error, HTTPResponseError):
        status = error.status
        body = _error_body(error)
        message = body.get("message")
        if not isinstance(message, str) or not message:
            message = None

        if status == 400:
            return ValidationError(message or "Invalid request", body.get("details"))
        if status == 401:
            return AuthenticationError(message or "Authentication required")
        if status == 403:
            return AuthorizationError(message or "Permission denied")
        if status == 404:
            return NotFoundError(resource, identifier)
        if status == 409:
            return ConflictError(message or "Resource conflict")
        if status == 429:
            return RateLimitError(message or "Rate limit exceeded")
        return SDKError(message or f"Request failed with status {status}", status)

    logger.debug("Request failed without a response: %r", error)
    return NetworkError("Network request failed", cause=error)


def handle_error(
    error: BaseException,
    resource: str = "Resource",
    identifier: str = "",
) -> NoReturn:
    """Raise the classified form of error, chained to the original."""
    raise classify_error(error, resource, identifier) from error
