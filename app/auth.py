"""OAuth 2.0 with PKCE: no client secret needed.

Flow:
  1. ``sign_in()`` builds the /authorize URL with a code_challenge and hands
     it to an ``InteractiveSession`` (system browser)
  2. The provider redirects to ``playlisttransfer://callback?code=...``; the
     host delivers that deep link back to the waiting session
  3. The code is exchanged for tokens at /api/token
  4. Tokens live in the secret store as one JSON ``CredentialRecord``

``provide_valid_access_token()`` is the silent path every adapter uses. It
refreshes near expiry but never opens a browser; escalating to ``sign_in()``
is the caller's decision (see ``call_with_sign_in``).
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import webbrowser
from base64 import urlsafe_b64encode
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ValidationError

from app.config import Settings
from app.deps import get_services
from app.secret_store import SecretStore
from core.errors import (
    AuthError,
    AuthorizationFailed,
    DecodeFailure,
    InvalidCallback,
    NetworkFailure,
    RefreshFailed,
    SessionInProgress,
    SignedOut,
)
from core.models import CredentialRecord, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Scopes needed to read the source playlist and write the new one.
_SPOTIFY_SCOPES = (
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
)

_SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
_SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

SPOTIFY_STORE_KEY = "com.playlisttransfer.spotify"


# ---------------------------------------------------------------------------
# PKCE helpers
# ---------------------------------------------------------------------------

def generate_code_verifier(nbytes: int = 32) -> str:
    """Random URL-safe verifier from *nbytes* of entropy (RFC 7636)."""
    if nbytes < 32:
        raise ValueError("PKCE verifier needs at least 32 random bytes")
    return secrets.token_urlsafe(nbytes)


def generate_code_challenge(verifier: str) -> str:
    """S256 code challenge = BASE64URL(SHA256(verifier))."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


# ---------------------------------------------------------------------------
# Provider config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OAuthProvider:
    service: str
    client_id: str
    authorize_url: str
    token_url: str
    redirect_uri: str
    store_key: str
    scopes: Tuple[str, ...] = ()
    extra_params: Dict[str, str] = field(default_factory=dict)


def spotify_provider(settings: Settings) -> OAuthProvider:
    return OAuthProvider(
        service="spotify",
        client_id=settings.spotify_client_id,
        authorize_url=_SPOTIFY_AUTH_URL,
        token_url=_SPOTIFY_TOKEN_URL,
        redirect_uri=settings.spotify_redirect_uri,
        store_key=SPOTIFY_STORE_KEY,
        scopes=_SPOTIFY_SCOPES,
        extra_params={"show_dialog": "true"},
    )


class _TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


# ---------------------------------------------------------------------------
# Interactive sessions
# ---------------------------------------------------------------------------

class InteractiveSession(Protocol):
    async def authenticate(self, authorize_url: str, redirect_uri: str) -> str:
        """Show *authorize_url* to the user and return the callback URL."""
        ...


class BrowserSession:
    """Opens the system browser and waits for the callback deep link.

    The host application passes every inbound ``<scheme>://callback`` link
    to ``deliver()``; the matching pending ``authenticate()`` call returns
    it. Cancelling ``authenticate()`` drops the pending entry.
    """

    def __init__(self, opener: Callable[[str], bool] = webbrowser.open):
        self._opener = opener
        self._pending: dict[str, asyncio.Future[str]] = {}

    async def authenticate(self, authorize_url: str, redirect_uri: str) -> str:
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[redirect_uri] = future
        try:
            if not self._opener(authorize_url):
                raise AuthorizationFailed("Could not open a browser for sign-in")
            return await future
        finally:
            self._pending.pop(redirect_uri, None)
            future.cancel()

    def deliver(self, callback_url: str) -> bool:
        """Resolve the session waiting on *callback_url*. Returns False if none is."""
        for redirect_uri, future in self._pending.items():
            if callback_url.lower().startswith(redirect_uri.lower()) and not future.done():
                future.set_result(callback_url)
                return True
        return False

    @property
    def pending(self) -> bool:
        return bool(self._pending)


# ---------------------------------------------------------------------------
# Credential manager
# ---------------------------------------------------------------------------

class CredentialState(str, Enum):
    SIGNED_OUT = "signed_out"
    AUTHORIZING = "authorizing"
    SIGNED_IN = "signed_in"
    REFRESHING = "refreshing"


Clock = Callable[[], datetime]


class CredentialManager:
    """Owns one service's tokens: sign-in, sign-out, silent refresh."""

    def __init__(
        self,
        provider: OAuthProvider,
        store: SecretStore,
        session: InteractiveSession,
        http: httpx.AsyncClient,
        *,
        refresh_margin: timedelta = timedelta(seconds=60),
        clock: Clock = utcnow,
    ):
        self.provider = provider
        self._store = store
        self._session = session
        self._http = http
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._authorizing = False
        self._refresh_task: asyncio.Task[CredentialRecord] | None = None
        self._has_record = False
        # Bumped on sign-out so an in-flight refresh cannot resurrect the record.
        self._generation = 0

    @property
    def service(self) -> str:
        return self.provider.service

    @property
    def state(self) -> CredentialState:
        if self._authorizing:
            return CredentialState.AUTHORIZING
        if self._refresh_task is not None:
            return CredentialState.REFRESHING
        return CredentialState.SIGNED_IN if self._has_record else CredentialState.SIGNED_OUT

    # ── Storage ─────────────────────────────────────────────────

    async def load(self) -> CredentialRecord | None:
        raw = await self._store.get(self.provider.store_key)
        if raw is None:
            self._has_record = False
            return None
        try:
            record = CredentialRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable %s credential record", self.service)
            self._has_record = False
            return None
        self._has_record = True
        return record

    async def _persist(self, record: CredentialRecord) -> None:
        await self._store.set(self.provider.store_key, record.model_dump_json().encode("utf-8"))
        self._has_record = True

    # ── Interactive path ────────────────────────────────────────

    def authorize_url(self, challenge: str) -> str:
        params = {
            "client_id": self.provider.client_id,
            "response_type": "code",
            "redirect_uri": self.provider.redirect_uri,
            "code_challenge_method": "S256",
            "code_challenge": challenge,
        }
        if self.provider.scopes:
            params["scope"] = " ".join(self.provider.scopes)
        params.update(self.provider.extra_params)
        return f"{self.provider.authorize_url}?{urlencode(params)}"

    async def sign_in(self) -> CredentialRecord:
        """Run the interactive PKCE flow and store the resulting tokens."""
        if self._authorizing:
            raise SessionInProgress(service=self.service)
        if not self.provider.client_id:
            raise AuthorizationFailed("Client id is not configured", service=self.service)

        self._authorizing = True
        try:
            verifier = generate_code_verifier()
            challenge = generate_code_challenge(verifier)
            callback_url = await self._session.authenticate(
                self.authorize_url(challenge), self.provider.redirect_uri
            )
            code = self._extract_code(callback_url)
            token = await self._token_request(
                {
                    "client_id": self.provider.client_id,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.provider.redirect_uri,
                    "code_verifier": verifier,
                },
                failure=AuthorizationFailed,
            )
            record = CredentialRecord(
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                expires_at=self._clock() + timedelta(seconds=token.expires_in),
            )
            await self._persist(record)
            logger.info("Signed in to %s", self.service)
            return record
        finally:
            self._authorizing = False

    def _extract_code(self, callback_url: str) -> str:
        query = parse_qs(urlsplit(callback_url).query)
        code = query.get("code", [""])[0]
        if code:
            return code
        error = query.get("error", [""])[0]
        detail = f"Authorization denied: {error}" if error else None
        raise InvalidCallback(detail, service=self.service)

    async def sign_out(self) -> None:
        self._generation += 1
        await self._store.delete(self.provider.store_key)
        self._has_record = False
        logger.info("Signed out of %s", self.service)

    # ── Silent path ─────────────────────────────────────────────

    async def provide_valid_access_token(self) -> str:
        """Return a usable access token, refreshing it if it is about to expire.

        Raises ``SignedOut`` without touching the network when nothing is
        stored, and ``RefreshFailed`` when the provider rejects the refresh.
        """
        record = await self.load()
        if record is None:
            raise SignedOut(service=self.service)
        if not record.expires_within(self._refresh_margin, self._clock()):
            return record.access_token

        # One refresh at a time; late arrivals await the same task.
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh(record, self._generation))
            self._refresh_task.add_done_callback(self._refresh_finished)
        refreshed = await asyncio.shield(self._refresh_task)
        return refreshed.access_token

    async def authorization_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.provide_valid_access_token()}"}

    def _refresh_finished(self, task: asyncio.Task[CredentialRecord]) -> None:
        self._refresh_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("%s token refresh failed: %s", self.service, task.exception())

    async def _refresh(self, record: CredentialRecord, generation: int) -> CredentialRecord:
        if not record.refresh_token:
            # Nothing to refresh with: the record is dead.
            await self.sign_out()
            raise SignedOut("Session expired, sign in again", service=self.service)

        token = await self._token_request(
            {
                "client_id": self.provider.client_id,
                "grant_type": "refresh_token",
                "refresh_token": record.refresh_token,
            },
            failure=RefreshFailed,
        )
        updated = CredentialRecord(
            access_token=token.access_token,
            # The provider may or may not rotate the refresh token.
            refresh_token=token.refresh_token or record.refresh_token,
            expires_at=self._clock() + timedelta(seconds=token.expires_in),
        )
        if generation != self._generation:
            logger.info("Discarding %s refresh that finished after sign-out", self.service)
            raise SignedOut(service=self.service)
        await self._persist(updated)
        logger.info("Refreshed %s access token", self.service)
        return updated

    async def _token_request(self, data: dict[str, str], *, failure: type[AuthError]) -> _TokenResponse:
        try:
            resp = await self._http.post(self.provider.token_url, data=data)
        except httpx.HTTPError as exc:
            raise NetworkFailure(f"Token endpoint unreachable: {exc}", service=self.service) from exc

        if resp.status_code != 200:
            raise failure(
                f"Token endpoint rejected the request: {resp.text[:200]}",
                service=self.service,
                status_code=resp.status_code,
            )
        try:
            return _TokenResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise DecodeFailure("Malformed token response", service=self.service) from exc


async def call_with_sign_in(manager: CredentialManager, operation: Callable[[], Awaitable[T]]) -> T:
    """Run *operation*, signing in interactively first if the silent path fails.

    The interactive prompt happens at most once; a failure after it
    propagates to the caller.
    """
    try:
        await manager.provide_valid_access_token()
    except AuthError as exc:
        logger.info("Silent %s auth failed (%s), starting interactive sign-in", manager.service, exc)
        await manager.sign_in()
    return await operation()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("")
async def accounts(services=Depends(get_services)):
    """Sign-in state per service."""
    await services.spotify_auth.load()
    return {
        "spotify": services.spotify_auth.state.value,
        "apple": "signed_in" if await services.apple_auth.is_signed_in() else "signed_out",
    }


@router.post("/spotify/sign-in")
async def spotify_sign_in(services=Depends(get_services)):
    """Start the Spotify PKCE flow; completes when the callback deep link arrives."""
    await services.spotify_auth.sign_in()
    return {"spotify": services.spotify_auth.state.value}


@router.post("/spotify/sign-out")
async def spotify_sign_out(services=Depends(get_services)):
    await services.spotify_auth.sign_out()
    return {"spotify": services.spotify_auth.state.value}


class AppleUserToken(BaseModel):
    user_token: str


@router.post("/apple/sign-in")
async def apple_sign_in(body: AppleUserToken, services=Depends(get_services)):
    """Cache the Music-User-Token produced by a MusicKit sign-in on the client."""
    await services.apple_auth.sign_in(body.user_token)
    return {"apple": "signed_in" if await services.apple_auth.is_signed_in() else "signed_out"}


@router.post("/apple/sign-out")
async def apple_sign_out(services=Depends(get_services)):
    await services.apple_auth.sign_out()
    return {"apple": "signed_out"}
