"""Apple Music catalog import.

Catalog reads need the app's developer token (a JWT from settings). A user
token obtained through MusicKit sign-in is optional for public catalog
playlists; when one is cached in the secret store it is sent along as
``Music-User-Token``.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ValidationError

from app.http import ApiClient
from app.secret_store import SecretStore
from core.errors import DecodeFailure, InvalidIdentifier, NotAPlaylistURL, NotFound, Unauthorized
from core.models import InterchangePlaylist, SourceService, Track

logger = logging.getLogger(__name__)

API_ORIGIN = "https://api.music.apple.com"
API_BASE = f"{API_ORIGIN}/v1"
APPLE_HOST = "music.apple.com"
PLAYLIST_ID_PREFIX = "pl."
USER_TOKEN_KEY = "com.playlisttransfer.applemusic"
ARTWORK_SIZE = "600x600"


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------

def extract_playlist_id(url: str) -> str:
    """Catalog playlist id from a share URL.

    ``https://music.apple.com/us/playlist/road-trip/pl.u-abc123`` → ``pl.u-abc123``
    """
    parts = urlsplit(url.strip())
    if APPLE_HOST not in (parts.hostname or ""):
        raise InvalidIdentifier("Not an Apple Music URL", service="apple")
    for segment in reversed([s for s in parts.path.split("/") if s]):
        if segment.startswith(PLAYLIST_ID_PREFIX):
            return segment
    raise NotAPlaylistURL(service="apple")


def storefront_from_url(url: str, default: str) -> str:
    """Two-letter storefront code from the first path segment, else *default*."""
    segments = [s for s in urlsplit(url.strip()).path.split("/") if s]
    if segments and len(segments[0]) == 2 and segments[0].isalpha():
        return segments[0].lower()
    return default


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class AppleMusicAuth:
    """Developer token plus an optional cached Music-User-Token."""

    service = "apple"

    def __init__(self, store: SecretStore, developer_token: str):
        self._store = store
        self._developer_token = developer_token

    async def sign_in(self, user_token: str) -> None:
        """Cache a Music-User-Token obtained from an interactive MusicKit sign-in."""
        if not user_token.strip():
            raise Unauthorized("Empty Music-User-Token", service=self.service)
        await self._store.set(USER_TOKEN_KEY, user_token.strip().encode("utf-8"))
        logger.info("Stored Apple Music user token")

    async def sign_out(self) -> None:
        await self._store.delete(USER_TOKEN_KEY)

    async def is_signed_in(self) -> bool:
        return bool(self._developer_token) and await self._store.get(USER_TOKEN_KEY) is not None

    async def authorization_headers(self) -> dict[str, str]:
        if not self._developer_token:
            raise Unauthorized("Apple Music developer token is not configured", service=self.service)
        headers = {"Authorization": f"Bearer {self._developer_token}"}
        user_token = await self._store.get(USER_TOKEN_KEY)
        if user_token:
            headers["Music-User-Token"] = user_token.decode("utf-8")
        return headers


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------

class _Artwork(BaseModel):
    url: Optional[str] = None


class _SongAttributes(BaseModel):
    name: str = ""
    artistName: Optional[str] = None
    albumName: Optional[str] = None
    isrc: Optional[str] = None
    artwork: Optional[_Artwork] = None


class _Song(BaseModel):
    id: str = ""
    attributes: Optional[_SongAttributes] = None


class _TrackPage(BaseModel):
    data: List[_Song] = Field(default_factory=list)
    next: Optional[str] = None


class _Relationships(BaseModel):
    tracks: _TrackPage = Field(default_factory=_TrackPage)


class _PlaylistAttributes(BaseModel):
    name: str


class _PlaylistResource(BaseModel):
    id: str
    attributes: _PlaylistAttributes
    relationships: _Relationships = Field(default_factory=_Relationships)


class _PlaylistResponse(BaseModel):
    data: List[_PlaylistResource]


def _absolute(next_url: Optional[str]) -> Optional[str]:
    """Apple returns ``next`` as a root-relative path (``/v1/catalog/...``)."""
    if next_url and next_url.startswith("/"):
        return f"{API_ORIGIN}{next_url}"
    return next_url


def _to_track(song: _Song) -> Track | None:
    attrs = song.attributes
    if attrs is None or not attrs.name.strip():
        return None
    artwork = attrs.artwork.url if attrs.artwork else None
    if artwork:
        artwork = artwork.replace("{w}x{h}", ARTWORK_SIZE)
    return Track(
        title=attrs.name,
        artist=attrs.artistName,
        album=attrs.albumName,
        isrc=attrs.isrc,
        artwork_url=artwork,
    )


# ---------------------------------------------------------------------------
# Importer
# ---------------------------------------------------------------------------

class AppleMusicImporter:
    def __init__(self, client: ApiClient, *, default_storefront: str = "us"):
        self._client = client
        self._default_storefront = default_storefront

    async def import_playlist(self, identifier: str) -> InterchangePlaylist:
        """Read every track of a public catalog playlist."""
        playlist_id = extract_playlist_id(identifier)
        storefront = storefront_from_url(identifier, self._default_storefront)

        data = await self._client.get_json(
            f"/catalog/{storefront}/playlists/{playlist_id}", params={"include": "tracks"}
        )
        try:
            response = _PlaylistResponse.model_validate(data)
        except ValidationError as exc:
            raise DecodeFailure("Unexpected playlist payload", service="apple") from exc
        if not response.data:
            raise NotFound(f"Playlist {playlist_id} not found", service="apple")

        resource = response.data[0]
        songs = list(resource.relationships.tracks.data)
        url = _absolute(resource.relationships.tracks.next)
        while url:
            try:
                page = _TrackPage.model_validate(await self._client.get_json(url))
            except ValidationError as exc:
                raise DecodeFailure("Unexpected track page", service="apple") from exc
            songs.extend(page.data)
            url = _absolute(page.next)

        tracks = [t for t in (_to_track(s) for s in songs) if t is not None]
        logger.info("Imported %d tracks from Apple Music playlist %s", len(tracks), playlist_id)
        try:
            return InterchangePlaylist(
                source=SourceService.APPLE,
                name=resource.attributes.name,
                tracks=tracks,
            )
        except ValidationError as exc:
            raise DecodeFailure("Playlist has no name", service="apple") from exc
