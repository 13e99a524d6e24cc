"""
Tests for VaultClient.

Tests cover:
- API-key mode: bearer header and request signing of mutating methods
- JWT mode: proactive refresh and one refresh-and-retry on 401
- Error classification at the client boundary
- Audit logging
- Email/password login, with and without MFA
"""
import asyncio
import threading

import aiohttp
import orjson
import pytest

from conftest import TEST_USER, error_response, json_response
from vault_sdk.audit import AuditLogger
from vault_sdk.client import RETRY_HEADER, VaultClient
from vault_sdk.exceptions import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    SDKError,
    ValidationError,
)
from vault_sdk.security.signature import (
    SIGNATURE_HEADER,
    SIGNATURE_NONCE_HEADER,
    SIGNATURE_TIMESTAMP_HEADER,
    build_signature_payload,
    verify_signature,
)
from vault_sdk.transport import HTTPResponse

API_KEY = "lsv_k_test_0123456789"


def _is_refresh(call: dict) -> bool:
    return call["path"] == "auth/refresh"


class TestConstruction:

    def test_requires_credentials(self):
        with pytest.raises(ValidationError, match="api_key or access_token"):
            VaultClient()

    def test_invalid_timeout(self):
        with pytest.raises(ValidationError):
            VaultClient(api_key=API_KEY, timeout=0)

    def test_api_key_mode_has_no_token_manager(self, transport):
        client = VaultClient(api_key=API_KEY, transport=transport)
        assert client.token_manager is None
        assert client.transport is transport

    def test_jwt_mode_has_token_manager(self, transport, make_jwt):
        token = make_jwt(exp_in=900)
        client = VaultClient(access_token=token, refresh_token="r1", transport=transport)
        assert client.token_manager.get_access_token() == token
        assert client.token_manager.get_refresh_token() == "r1"

    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, transport):
        async with VaultClient(api_key=API_KEY, transport=transport):
            pass
        assert transport.closed is True


class TestApiKeyMode:

    @pytest.mark.asyncio
    async def test_get_is_not_signed(self, transport):
        transport.queue(json_response({"vaults": []}))
        client = VaultClient(api_key=API_KEY, transport=transport)

        assert await client.get("vaults") == {"vaults": []}

        call = transport.calls[0]
        assert call["method"] == "GET"
        assert call["headers"]["Authorization"] == f"Bearer {API_KEY}"
        assert SIGNATURE_HEADER not in call["headers"]

    @pytest.mark.asyncio
    async def test_post_is_signed_over_exact_body(self, transport):
        transport.queue(json_response({"id": "v1"}, status=201))
        client = VaultClient(api_key=API_KEY, transport=transport)

        await client.post("vaults", json={"name": "Notes", "description": None})

        call = transport.calls[0]
        headers = call["headers"]
        assert call["data"] == orjson.dumps({"name": "Notes", "description": None})
        assert headers["Content-Type"] == "application/json"
        payload = build_signature_payload(
            "POST",
            "/api/v1/vaults",
            headers[SIGNATURE_TIMESTAMP_HEADER],
            headers[SIGNATURE_NONCE_HEADER],
            call["data"],
        )
        assert verify_signature(API_KEY, payload, headers[SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_delete_without_body_signs_empty_body(self, transport):
        transport.queue(json_response(None, status=204))
        client = VaultClient(api_key=API_KEY, transport=transport)

        await client.delete("vaults/v1")

        headers = transport.calls[0]["headers"]
        payload = build_signature_payload(
            "DELETE",
            "/api/v1/vaults/v1",
            headers[SIGNATURE_TIMESTAMP_HEADER],
            headers[SIGNATURE_NONCE_HEADER],
        )
        assert verify_signature(API_KEY, payload, headers[SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_query_string_not_part_of_signature(self, transport):
        transport.queue(json_response({}))
        client = VaultClient(api_key=API_KEY, transport=transport)

        await client.put("vaults/v1", json={"name": "x"}, params={"force": "true"})

        call = transport.calls[0]
        assert call["params"] == {"force": "true"}
        payload = build_signature_payload(
            "PUT",
            "/api/v1/vaults/v1",
            call["headers"][SIGNATURE_TIMESTAMP_HEADER],
            call["headers"][SIGNATURE_NONCE_HEADER],
            call["data"],
        )
        assert verify_signature(API_KEY, payload, call["headers"][SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_signs_percent_encoded_path(self, transport):
        transport.queue(json_response({}))
        client = VaultClient(api_key=API_KEY, transport=transport)

        await client.put("vaults/abc/documents/my notes/résumé.md", json={"content": "x"})

        call = transport.calls[0]
        payload = build_signature_payload(
            "PUT",
            "/api/v1/vaults/abc/documents/my%20notes/r%C3%A9sum%C3%A9.md",
            call["headers"][SIGNATURE_TIMESTAMP_HEADER],
            call["headers"][SIGNATURE_NONCE_HEADER],
            call["data"],
        )
        assert verify_signature(API_KEY, payload, call["headers"][SIGNATURE_HEADER])

    @pytest.mark.asyncio
    async def test_signing_can_be_disabled(self, transport):
        transport.queue(json_response({}))
        client = VaultClient(
            api_key=API_KEY, enable_request_signing=False, transport=transport,
        )

        await client.post("vaults", json={"name": "x"})

        assert SIGNATURE_HEADER not in transport.calls[0]["headers"]


class TestJwtMode:

    @pytest.mark.asyncio
    async def test_valid_token_used_as_is(self, transport, make_jwt):
        token = make_jwt(exp_in=900)
        transport.queue(json_response({"ok": True}))
        client = VaultClient(access_token=token, refresh_token="r1", transport=transport)

        await client.get("vaults")

        assert len(transport.calls) == 1
        headers = transport.calls[0]["headers"]
        assert headers["Authorization"] == f"Bearer {token}"
        assert SIGNATURE_HEADER not in headers

    @pytest.mark.asyncio
    async def test_proactive_refresh(self, transport, make_jwt, refresh_ok):
        fresh = make_jwt(exp_in=900)
        transport.queue(refresh_ok(fresh), json_response({"ok": True}))
        client = VaultClient(
            access_token=make_jwt(exp_in=30), refresh_token="r1", transport=transport,
        )

        await client.get("vaults")

        assert [c["path"] for c in transport.calls] == ["auth/refresh", "vaults"]
        assert transport.calls[1]["headers"]["Authorization"] == f"Bearer {fresh}"

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_sends_stale_token(self, transport, make_jwt):
        stale = make_jwt(exp_in=-10)
        transport.queue(json_response({"ok": True}))
        client = VaultClient(access_token=stale, transport=transport)

        await client.get("vaults")

        assert len(transport.calls) == 1
        assert transport.calls[0]["headers"]["Authorization"] == f"Bearer {stale}"

    @pytest.mark.asyncio
    async def test_failed_proactive_refresh_still_sends(self, transport, make_jwt):
        stale = make_jwt(exp_in=30)
        transport.queue(error_response(500), json_response({"ok": True}))
        client = VaultClient(access_token=stale, refresh_token="r1", transport=transport)

        assert await client.get("vaults") == {"ok": True}
        assert transport.calls[1]["headers"]["Authorization"] == f"Bearer {stale}"

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, transport, make_jwt, refresh_ok):
        fresh = make_jwt(exp_in=900)
        transport.queue(
            error_response(401, {"message": "expired"}),
            refresh_ok(fresh),
            json_response({"ok": True}),
        )
        client = VaultClient(
            access_token=make_jwt(exp_in=900), refresh_token="r1", transport=transport,
        )

        assert await client.post("vaults", json={"name": "x"}) == {"ok": True}

        first, refresh, retry = transport.calls
        assert RETRY_HEADER not in first["headers"]
        assert _is_refresh(refresh)
        assert retry["headers"][RETRY_HEADER] == "1"
        assert retry["headers"]["Authorization"] == f"Bearer {fresh}"
        assert retry["data"] == first["data"]

    @pytest.mark.asyncio
    async def test_401_on_retry_is_authentication_error(self, transport, make_jwt, refresh_ok):
        transport.queue(
            error_response(401),
            refresh_ok(),
            error_response(401, {"message": "still unauthorized"}),
        )
        client = VaultClient(
            access_token=make_jwt(exp_in=900), refresh_token="r1", transport=transport,
        )

        with pytest.raises(AuthenticationError, match="still unauthorized"):
            await client.get("vaults")
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_401_without_refresh_token(self, transport, make_jwt):
        transport.queue(error_response(401))
        client = VaultClient(access_token=make_jwt(exp_in=900), transport=transport)

        with pytest.raises(AuthenticationError):
            await client.get("vaults")
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_401_with_failed_refresh_raises_original(self, transport, make_jwt):
        transport.queue(
            error_response(401, {"message": "token revoked"}),
            error_response(401, {"message": "refresh rejected"}),
        )
        client = VaultClient(
            access_token=make_jwt(exp_in=900), refresh_token="r1", transport=transport,
        )

        with pytest.raises(AuthenticationError, match="token revoked"):
            await client.get("vaults")

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_refresh(self, transport, make_jwt, refresh_ok):
        async def slow_refresh():
            await asyncio.sleep(0.01)
            return refresh_ok()

        transport.queue(
            slow_refresh,
            json_response({"n": 1}),
            json_response({"n": 2}),
            json_response({"n": 3}),
        )
        client = VaultClient(
            access_token=make_jwt(exp_in=-10), refresh_token="r1", transport=transport,
        )

        results = await asyncio.gather(
            client.get("a"), client.get("b"), client.get("c"),
        )

        assert sorted(r["n"] for r in results) == [1, 2, 3]
        assert sum(_is_refresh(c) for c in transport.calls) == 1

    @pytest.mark.asyncio
    async def test_on_token_refresh_callback(self, transport, make_jwt, refresh_ok):
        seen = []
        transport.queue(refresh_ok(), json_response({}))
        client = VaultClient(
            access_token=make_jwt(exp_in=10),
            refresh_token="r1",
            on_token_refresh=seen.append,
            transport=transport,
        )

        await client.get("vaults")

        assert len(seen) == 1
        assert seen[0].user == TEST_USER

    @pytest.mark.asyncio
    async def test_failing_refresh_callback_does_not_fail_request(
        self, transport, make_jwt, refresh_ok,
    ):
        def on_refresh(tokens):
            raise RuntimeError("cannot persist tokens")

        fresh = make_jwt(exp_in=900)
        transport.queue(refresh_ok(fresh), json_response({"ok": True}))
        client = VaultClient(
            access_token=make_jwt(exp_in=10),
            refresh_token="r1",
            on_token_refresh=on_refresh,
            transport=transport,
        )

        assert await client.get("vaults") == {"ok": True}
        assert transport.calls[1]["headers"]["Authorization"] == f"Bearer {fresh}"


class TestErrors:

    @pytest.mark.asyncio
    async def test_not_found_carries_resource(self, transport):
        transport.queue(error_response(404, {"message": "nope"}))
        client = VaultClient(api_key=API_KEY, transport=transport)

        with pytest.raises(NotFoundError) as exc_info:
            await client.get("documents/notes/a.md", resource="Document", identifier="notes/a.md")
        assert str(exc_info.value) == "Document not found: notes/a.md"

    @pytest.mark.asyncio
    async def test_network_failure(self, transport):
        cause = aiohttp.ClientConnectionError("connection refused")
        transport.queue(cause)
        client = VaultClient(api_key=API_KEY, transport=transport)

        with pytest.raises(NetworkError) as exc_info:
            await client.get("vaults")
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause

    @pytest.mark.asyncio
    async def test_invalid_json_response(self, transport):
        transport.queue(HTTPResponse(200, {}, b"<html>"))
        client = VaultClient(api_key=API_KEY, transport=transport)

        with pytest.raises(SDKError, match="Invalid JSON"):
            await client.get("vaults")

    @pytest.mark.asyncio
    async def test_request_raw_returns_response(self, transport):
        transport.queue(json_response({"a": 1}, headers={"X-Thing": "1"}))
        client = VaultClient(api_key=API_KEY, transport=transport)

        response = await client.request_raw("get", "vaults")

        assert response.status == 200
        assert response.headers == {"X-Thing": "1"}
        assert transport.calls[0]["method"] == "GET"


class TestAuditLogging:

    @pytest.mark.asyncio
    async def test_requests_are_audited(self, transport, tmp_path):
        log_path = tmp_path / "audit.log"
        transport.queue(json_response({}), error_response(404))
        client = VaultClient(
            api_key=API_KEY,
            enable_audit_logging=True,
            audit_log_path=str(log_path),
            transport=transport,
        )
        try:
            await client.get("vaults")
            with pytest.raises(NotFoundError):
                await client.delete("vaults/v9")
        finally:
            await client.close()

        entries = AuditLogger(log_path).read_entries()
        assert [(e.method, e.path, e.status) for e in entries] == [
            ("GET", "/api/v1/vaults", 200),
            ("DELETE", "/api/v1/vaults/v9", 404),
        ]
        assert all(e.duration_ms >= 0 for e in entries)

    @pytest.mark.asyncio
    async def test_network_failures_are_not_audited(self, transport, tmp_path):
        log_path = tmp_path / "audit.log"
        transport.queue(aiohttp.ClientConnectionError("down"))
        client = VaultClient(
            api_key=API_KEY,
            enable_audit_logging=True,
            audit_log_path=str(log_path),
            transport=transport,
        )
        try:
            with pytest.raises(NetworkError):
                await client.get("vaults")
        finally:
            await client.close()

        assert AuditLogger(log_path).read_entries() == []

    @pytest.mark.asyncio
    async def test_audit_path_is_encoded_and_written_off_the_loop(self, transport, tmp_path):
        log_path = tmp_path / "audit.log"
        transport.queue(json_response({}))
        client = VaultClient(
            api_key=API_KEY,
            enable_audit_logging=True,
            audit_log_path=str(log_path),
            transport=transport,
        )
        writer_threads = []
        write = client.audit_logger.log

        def recording_log(entry):
            writer_threads.append(threading.get_ident())
            write(entry)

        client.audit_logger.log = recording_log
        try:
            await client.get("vaults/abc/documents/my notes.md")
        finally:
            await client.close()

        assert writer_threads and writer_threads[0] != threading.get_ident()
        entries = AuditLogger(log_path).read_entries()
        assert entries[0].path == "/api/v1/vaults/abc/documents/my%20notes.md"


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_without_mfa(self, transport, make_jwt):
        token = make_jwt(exp_in=900)
        transport.queue(json_response(
            {"accessToken": token, "user": {**TEST_USER, "displayName": "Test"}},
            headers={"Set-Cookie": "lsv_refresh=rt-123; Path=/; HttpOnly; Secure"},
        ))

        client, tokens, refresh_token = await VaultClient.login(
            "test@example.com", "hunter2", transport=transport,
        )

        login_call = transport.calls[0]
        assert login_call["path"] == "auth/login"
        assert orjson.loads(login_call["data"]) == {
            "email": "test@example.com", "password": "hunter2",
        }
        assert refresh_token == "rt-123"
        assert tokens.access_token == token
        assert tokens.user["name"] == "Test"
        assert client.token_manager.get_access_token() == token
        assert client.token_manager.get_refresh_token() == "rt-123"
        assert transport.closed is False

    @pytest.mark.asyncio
    async def test_mfa_required_without_code(self, transport):
        transport.queue(json_response({
            "mfaRequired": True, "mfaMethods": ["totp", "backup_code"], "mfaToken": "m1",
        }))

        with pytest.raises(ValidationError, match="Available methods: totp, backup_code"):
            await VaultClient.login("test@example.com", "pw", transport=transport)

    @pytest.mark.asyncio
    async def test_mfa_code(self, transport, make_jwt):
        token = make_jwt(exp_in=900)
        transport.queue(
            json_response({"mfaRequired": True, "mfaMethods": ["totp"], "mfaToken": "m1"}),
            json_response({"accessToken": token, "user": TEST_USER, "refreshToken": "rt-9"}),
        )

        _, tokens, refresh_token = await VaultClient.login(
            "test@example.com", "pw", mfa_code="123456", transport=transport,
        )

        mfa_call = transport.calls[1]
        assert mfa_call["path"] == "auth/mfa/totp"
        assert orjson.loads(mfa_call["data"]) == {"mfaToken": "m1", "code": "123456"}
        assert tokens.access_token == token
        assert refresh_token == "rt-9"

    @pytest.mark.asyncio
    async def test_mfa_callback(self, transport, make_jwt):
        challenges = []

        async def responder(challenge):
            challenges.append(challenge)
            return "backup_code", "abcd-efgh"

        transport.queue(
            json_response({"mfaRequired": True, "mfaMethods": ["backup_code"], "mfaToken": "m2"}),
            json_response({"accessToken": make_jwt(exp_in=900), "user": TEST_USER}),
        )

        await VaultClient.login(
            "test@example.com", "pw", on_mfa_required=responder, transport=transport,
        )

        assert challenges[0].methods == ["backup_code"]
        assert transport.calls[1]["path"] == "auth/mfa/backup-code"

    @pytest.mark.asyncio
    async def test_unknown_mfa_method(self, transport):
        transport.queue(json_response({"mfaRequired": True, "mfaToken": "m1"}))

        with pytest.raises(ValidationError, match="Unsupported MFA method"):
            await VaultClient.login(
                "test@example.com", "pw", mfa_code="1", mfa_method="sms", transport=transport,
            )

    @pytest.mark.asyncio
    async def test_bad_credentials(self, transport):
        transport.queue(error_response(401, {"message": "Invalid credentials"}))

        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            await VaultClient.login("test@example.com", "wrong", transport=transport)
