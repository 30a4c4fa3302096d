"""Tests for PKCE sign-in and the credential lifecycle (app/auth.py)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from app.auth import (
    BrowserSession,
    CredentialManager,
    CredentialState,
    OAuthProvider,
    call_with_sign_in,
    generate_code_challenge,
    generate_code_verifier,
    spotify_provider,
)
from app.config import Settings
from app.secret_store import MemorySecretStore
from core.errors import (
    AuthorizationFailed,
    InvalidCallback,
    RefreshFailed,
    SessionInProgress,
    SignedOut,
)
from core.models import CredentialRecord

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
KEY = "test.spotify"
REDIRECT = "playlisttransfer://callback"

PROVIDER = OAuthProvider(
    service="spotify",
    client_id="test_client_id",
    authorize_url="https://accounts.example.com/authorize",
    token_url="https://accounts.example.com/api/token",
    redirect_uri=REDIRECT,
    store_key=KEY,
    scopes=("playlist-read-private", "playlist-modify-private"),
)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class TokenTransport(httpx.AsyncBaseTransport):
    """Token endpoint stand-in: scripted responses, optional latency."""

    def __init__(self, responses: list[httpx.Response] | None = None, delay: float = 0.0):
        self._responses = list(responses or [])
        self._delay = delay
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request):
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._responses.pop(0)

    def form(self, index: int = 0) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


class FakeSession:
    """Interactive session that immediately 'redirects' to *callback*."""

    def __init__(self, callback: str):
        self.callback = callback
        self.urls: list[str] = []

    async def authenticate(self, authorize_url: str, redirect_uri: str) -> str:
        self.urls.append(authorize_url)
        return self.callback


class BlockingSession:
    """Interactive session that never completes on its own."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def authenticate(self, authorize_url: str, redirect_uri: str) -> str:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ""


def _token(access: str = "new_access", refresh: str | None = None, expires_in: int = 3600) -> httpx.Response:
    body = {"access_token": access, "token_type": "Bearer", "expires_in": expires_in}
    if refresh is not None:
        body["refresh_token"] = refresh
    return httpx.Response(200, json=body)


async def _store_with(record: CredentialRecord | None) -> MemorySecretStore:
    store = MemorySecretStore()
    if record is not None:
        await store.set(KEY, record.model_dump_json().encode("utf-8"))
    return store


def _manager(store, transport, session=None) -> CredentialManager:
    return CredentialManager(
        PROVIDER,
        store,
        session or FakeSession(f"{REDIRECT}?code=abc"),
        httpx.AsyncClient(transport=transport),
        clock=lambda: NOW,
    )


async def _stored(store) -> CredentialRecord | None:
    raw = await store.get(KEY)
    return CredentialRecord.model_validate_json(raw) if raw else None


# ---------------------------------------------------------------------------
# PKCE helpers
# ---------------------------------------------------------------------------

def test_code_verifier_is_url_safe_without_padding():
    v = generate_code_verifier()
    assert len(v) >= 43
    assert "=" not in v
    for ch in v:
        assert ch.isalnum() or ch in "-_"


def test_code_verifier_is_random():
    assert generate_code_verifier() != generate_code_verifier()


def test_code_verifier_rejects_short_entropy():
    with pytest.raises(ValueError):
        generate_code_verifier(16)


def test_code_challenge_known_vector():
    # RFC 7636, appendix B
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_spotify_provider_authorize_url():
    provider = spotify_provider(Settings(spotify_client_id="cid"))
    manager = CredentialManager(provider, MemorySecretStore(), FakeSession(""), httpx.AsyncClient())
    query = parse_qs(urlsplit(manager.authorize_url("chal")).query)
    assert query["client_id"] == ["cid"]
    assert query["response_type"] == ["code"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["code_challenge"] == ["chal"]
    assert query["show_dialog"] == ["true"]
    assert "playlist-modify-private" in query["scope"][0].split()


# ---------------------------------------------------------------------------
# Silent path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_signed_out_raises_without_network():
    transport = TokenTransport()
    manager = _manager(await _store_with(None), transport)
    with pytest.raises(SignedOut):
        await manager.provide_valid_access_token()
    assert transport.requests == []
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_fresh_token_returned_without_refresh():
    record = CredentialRecord(access_token="old", refresh_token="r1", expires_at=NOW + timedelta(hours=1))
    transport = TokenTransport()
    manager = _manager(await _store_with(record), transport)

    assert await manager.provide_valid_access_token() == "old"
    assert transport.requests == []
    assert manager.state is CredentialState.SIGNED_IN


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    record = CredentialRecord(access_token="old", refresh_token="r1", expires_at=NOW + timedelta(seconds=30))
    store = await _store_with(record)
    transport = TokenTransport([_token("new_access")], delay=0.01)
    manager = _manager(store, transport)

    a, b = await asyncio.gather(
        manager.provide_valid_access_token(),
        manager.provide_valid_access_token(),
    )

    assert a == b == "new_access"
    assert len(transport.requests) == 1
    assert transport.form() == {
        "client_id": "test_client_id",
        "grant_type": "refresh_token",
        "refresh_token": "r1",
    }
    stored = await _stored(store)
    assert stored.access_token == "new_access"
    # Not rotated, so the old refresh token is kept.
    assert stored.refresh_token == "r1"
    assert stored.expires_at == NOW + timedelta(seconds=3600)
    assert manager.state is CredentialState.SIGNED_IN


@pytest.mark.asyncio
async def test_refresh_stores_rotated_refresh_token():
    record = CredentialRecord(access_token="old", refresh_token="r1", expires_at=NOW - timedelta(minutes=5))
    store = await _store_with(record)
    manager = _manager(store, TokenTransport([_token("new_access", refresh="r2")]))

    await manager.provide_valid_access_token()
    assert (await _stored(store)).refresh_token == "r2"


@pytest.mark.asyncio
async def test_rejected_refresh_keeps_record():
    record = CredentialRecord(access_token="old", refresh_token="r1", expires_at=NOW + timedelta(seconds=10))
    store = await _store_with(record)
    manager = _manager(store, TokenTransport([httpx.Response(400, json={"error": "invalid_grant"})]))

    with pytest.raises(RefreshFailed) as exc_info:
        await manager.provide_valid_access_token()
    assert exc_info.value.status_code == 400
    assert (await _stored(store)).access_token == "old"
    assert manager.state is CredentialState.SIGNED_IN


@pytest.mark.asyncio
async def test_expiring_without_refresh_token_signs_out():
    record = CredentialRecord(access_token="old", refresh_token=None, expires_at=NOW)
    store = await _store_with(record)
    transport = TokenTransport()
    manager = _manager(store, transport)

    with pytest.raises(SignedOut):
        await manager.provide_valid_access_token()
    assert await store.get(KEY) is None
    assert transport.requests == []
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_authorization_headers_use_bearer():
    record = CredentialRecord(access_token="tok", expires_at=NOW + timedelta(hours=1))
    manager = _manager(await _store_with(record), TokenTransport())
    assert await manager.authorization_headers() == {"Authorization": "Bearer tok"}


# ---------------------------------------------------------------------------
# Interactive path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sign_in_exchanges_code_with_verifier():
    store = await _store_with(None)
    session = FakeSession(f"{REDIRECT}?code=abc")
    transport = TokenTransport([_token("a1", refresh="r1")])
    manager = _manager(store, transport, session)

    record = await manager.sign_in()

    form = transport.form()
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "abc"
    assert form["redirect_uri"] == REDIRECT
    authorize = parse_qs(urlsplit(session.urls[0]).query)
    assert authorize["code_challenge"] == [generate_code_challenge(form["code_verifier"])]
    assert authorize["redirect_uri"] == [REDIRECT]

    assert record.access_token == "a1"
    assert record.expires_at == NOW + timedelta(seconds=3600)
    assert (await _stored(store)).refresh_token == "r1"
    assert manager.state is CredentialState.SIGNED_IN


@pytest.mark.asyncio
async def test_callback_without_code_is_invalid():
    transport = TokenTransport()
    manager = _manager(
        await _store_with(None), transport, FakeSession(f"{REDIRECT}?error=access_denied")
    )
    with pytest.raises(InvalidCallback, match="access_denied"):
        await manager.sign_in()
    assert transport.requests == []
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_rejected_code_exchange_fails_authorization():
    manager = _manager(await _store_with(None), TokenTransport([httpx.Response(400, json={})]))
    with pytest.raises(AuthorizationFailed):
        await manager.sign_in()
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_second_sign_in_while_pending_fails():
    session = BlockingSession()
    manager = _manager(await _store_with(None), TokenTransport(), session)

    first = asyncio.create_task(manager.sign_in())
    await session.started.wait()
    assert manager.state is CredentialState.AUTHORIZING

    with pytest.raises(SessionInProgress):
        await manager.sign_in()

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    assert session.cancelled
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_sign_in_requires_client_id():
    provider = OAuthProvider(
        service="spotify",
        client_id="",
        authorize_url=PROVIDER.authorize_url,
        token_url=PROVIDER.token_url,
        redirect_uri=REDIRECT,
        store_key=KEY,
    )
    session = FakeSession(f"{REDIRECT}?code=abc")
    manager = CredentialManager(provider, MemorySecretStore(), session, httpx.AsyncClient())
    with pytest.raises(AuthorizationFailed):
        await manager.sign_in()
    assert session.urls == []


@pytest.mark.asyncio
async def test_sign_out_deletes_record():
    record = CredentialRecord(access_token="tok", expires_at=NOW + timedelta(hours=1))
    store = await _store_with(record)
    manager = _manager(store, TokenTransport())
    await manager.load()
    await manager.sign_out()
    assert await store.get(KEY) is None
    assert manager.state is CredentialState.SIGNED_OUT


@pytest.mark.asyncio
async def test_sign_out_during_refresh_stays_signed_out():
    record = CredentialRecord(access_token="old", refresh_token="r1", expires_at=NOW + timedelta(seconds=30))
    store = await _store_with(record)
    transport = TokenTransport([_token("fresh")], delay=0.05)
    manager = _manager(store, transport)

    pending = asyncio.ensure_future(manager.provide_valid_access_token())
    await asyncio.sleep(0.01)
    await manager.sign_out()

    with pytest.raises(SignedOut):
        await pending
    assert len(transport.requests) == 1
    assert await store.get(KEY) is None
    with pytest.raises(SignedOut):
        await manager.provide_valid_access_token()
    assert manager.state is CredentialState.SIGNED_OUT


# ---------------------------------------------------------------------------
# call_with_sign_in
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_call_with_sign_in_escalates_once():
    session = FakeSession(f"{REDIRECT}?code=abc")
    transport = TokenTransport([_token("a1", refresh="r1")])
    manager = _manager(await _store_with(None), transport, session)

    result = await call_with_sign_in(manager, manager.provide_valid_access_token)

    assert result == "a1"
    assert len(session.urls) == 1


@pytest.mark.asyncio
async def test_call_with_sign_in_skips_prompt_when_valid():
    record = CredentialRecord(access_token="tok", expires_at=NOW + timedelta(hours=1))
    session = FakeSession(f"{REDIRECT}?code=abc")
    manager = _manager(await _store_with(record), TokenTransport(), session)

    assert await call_with_sign_in(manager, manager.provide_valid_access_token) == "tok"
    assert session.urls == []


# ---------------------------------------------------------------------------
# BrowserSession
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_browser_session_delivers_matching_callback():
    opened: list[str] = []
    session = BrowserSession(opener=lambda url: opened.append(url) or True)

    task = asyncio.create_task(session.authenticate("https://auth/x", REDIRECT))
    await asyncio.sleep(0)
    assert opened == ["https://auth/x"]
    assert session.pending

    assert not session.deliver("otherapp://callback?code=1")
    assert session.deliver("PlaylistTransfer://callback?code=1")
    assert await task == "PlaylistTransfer://callback?code=1"
    assert not session.pending


@pytest.mark.asyncio
async def test_browser_session_cancel_tears_down():
    session = BrowserSession(opener=lambda url: True)
    task = asyncio.create_task(session.authenticate("https://auth/x", REDIRECT))
    await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not session.pending
    assert not session.deliver(f"{REDIRECT}?code=late")


@pytest.mark.asyncio
async def test_browser_session_open_failure():
    session = BrowserSession(opener=lambda url: False)
    with pytest.raises(AuthorizationFailed):
        await session.authenticate("https://auth/x", REDIRECT)
    assert not session.pending
