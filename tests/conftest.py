"""Shared fixtures: fake JWTs and an in-memory transport."""
import time
import base64

import orjson
import pytest

from vault_sdk.transport import HTTPResponse, HTTPResponseError

TEST_USER = {"id": "u1", "email": "test@example.com", "role": "user"}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def create_fake_jwt(payload: dict) -> str:
    """Build header.payload.signature with a fake signature."""
    header = _b64url(orjson.dumps({"alg": "HS256", "typ": "JWT"}))
    body = _b64url(orjson.dumps(payload))
    return f"{header}.{body}.{_b64url(b'fake-signature')}"


def json_response(data, status: int = 200, headers=None) -> HTTPResponse:
    return HTTPResponse(status, headers or {}, orjson.dumps(data))


def error_response(status: int, body=None) -> HTTPResponseError:
    raw = orjson.dumps(body) if body is not None else b""
    return HTTPResponseError(status, "error", raw)


class FakeTransport:
    """Records requests and replays queued responses in order.

    Queued items may be an HTTPResponse, an exception to raise, or an async
    callable producing either.
    """

    def __init__(self, base_url: str = "https://vault.test"):
        self.base_url = base_url
        self.calls: list[dict] = []
        self.responses: list = []
        self.closed = False

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/api/v1/{path.lstrip('/')}"

    def queue(self, *items) -> None:
        self.responses.extend(items)

    async def request(self, method, path, *, data=None, params=None, headers=None):
        self.calls.append({
            "method": method,
            "path": path,
            "data": data,
            "params": params,
            "headers": dict(headers or {}),
        })
        if not self.responses:
            raise AssertionError(f"unexpected request: {method} {path}")
        item = self.responses.pop(0)
        if callable(item):
            item = await item()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_jwt():
    """Factory for fake JWTs; ``make_jwt(exp_in=600)`` expires in 10 minutes."""
    def _make(exp_in=None, **claims):
        if exp_in is not None:
            claims["exp"] = int(time.time()) + exp_in
        return create_fake_jwt(claims)
    return _make


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def refresh_ok(make_jwt):
    """Factory for a successful refresh response carrying a fresh token."""
    def _make(token=None, **extra):
        token = token or make_jwt(exp_in=900)
        return json_response({"accessToken": token, "user": TEST_USER, **extra})
    return _make
