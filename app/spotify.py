"""Spotify Web API helpers: all calls strictly sequential.

Methods:
- current_user_id     → the token holder's id
- get_playlist        → name + every track item (follows ``next`` pages)
- search_track_uri    → first ``spotify:track:…`` URI for a query, or None
- create_playlist     → {id, url}
- add_tracks_batch    → add URIs in ≤100-item chunks, in order
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from app.http import ApiClient
from core.errors import AddTracksFailed, DecodeFailure, PlaylistCreationFailed
from core.resolver import batched

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"
PLAYLIST_WEB_URL = "https://open.spotify.com/playlist/{id}"

# Spotify accepts at most 100 URIs per add-items request.
MAX_BATCH_SIZE = 100


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------

class _Image(BaseModel):
    url: str


class _Artist(BaseModel):
    name: str = ""


class _Album(BaseModel):
    name: str = ""
    images: List[_Image] = Field(default_factory=list)


class SpotifyTrack(BaseModel):
    name: str = ""
    uri: Optional[str] = None
    artists: List[_Artist] = Field(default_factory=list)
    album: Optional[_Album] = None
    external_ids: dict = Field(default_factory=dict)
    is_local: bool = False
    type: str = "track"


class _TrackItem(BaseModel):
    track: Optional[SpotifyTrack] = None


class _TrackPage(BaseModel):
    items: List[_TrackItem]
    next: Optional[str] = None


class _Playlist(BaseModel):
    id: str = ""
    name: str
    tracks: _TrackPage


class SpotifyPlaylist(BaseModel):
    id: str
    name: str
    tracks: List[Optional[SpotifyTrack]]


def _validate(model: type[BaseModel], data: Any, what: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise DecodeFailure(f"Unexpected {what} payload", service="spotify") from exc


# ---------------------------------------------------------------------------
# API wrapper
# ---------------------------------------------------------------------------

class SpotifyAPI:
    def __init__(self, client: ApiClient):
        self._client = client

    async def current_user_id(self) -> str:
        """Return the Spotify user id for the token holder."""
        data = await self._client.get_json("/me")
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise DecodeFailure("Profile has no id", service="spotify")
        return user_id

    async def get_playlist(self, playlist_id: str) -> SpotifyPlaylist:
        """Fetch a playlist's name and all track entries.

        Entries whose track is null (removed or unavailable) are kept as
        ``None`` so callers can see and skip them.
        """
        first = _validate(_Playlist, await self._client.get_json(f"/playlists/{playlist_id}"), "playlist")
        tracks: List[Optional[SpotifyTrack]] = [item.track for item in first.tracks.items]

        url = first.tracks.next
        while url:
            page = _validate(_TrackPage, await self._client.get_json(url), "track page")
            tracks.extend(item.track for item in page.items)
            url = page.next

        return SpotifyPlaylist(id=first.id or playlist_id, name=first.name, tracks=tracks)

    async def search_track_uri(self, query: str) -> Optional[str]:
        """First track URI for *query*, or None."""
        data = await self._client.get_json("/search", params={"q": query, "type": "track", "limit": 1})
        try:
            items = data["tracks"]["items"]
        except (KeyError, TypeError) as exc:
            raise DecodeFailure("Unexpected search payload", service="spotify") from exc
        for item in items or []:
            if isinstance(item, dict) and item.get("uri"):
                return item["uri"]
        return None

    async def create_playlist(
        self,
        user_id: str,
        name: str,
        *,
        public: bool = False,
        description: str = "",
    ) -> dict:
        """Create a new Spotify playlist.

        Returns ``{"id": str, "url": str}``.
        """
        resp = await self._client.request(
            "POST",
            f"/users/{user_id}/playlists",
            json={"name": name, "public": public, "description": description},
            check=False,
        )
        if not 200 <= resp.status_code < 300:
            raise PlaylistCreationFailed(service="spotify", status_code=resp.status_code)

        data = self._client.json(resp)
        playlist_id = data.get("id") if isinstance(data, dict) else None
        if not playlist_id:
            raise DecodeFailure("Created playlist has no id", service="spotify")
        return {
            "id": playlist_id,
            "url": data.get("external_urls", {}).get("spotify") or self.playlist_url(playlist_id),
        }

    async def add_tracks_batch(
        self,
        playlist_id: str,
        uris: List[str],
        *,
        batch_size: int = MAX_BATCH_SIZE,
    ) -> int:
        """Add *uris* to *playlist_id* in sequential batches.

        Returns the number of API calls made. The first failed batch stops
        the run with ``AddTracksFailed``; earlier batches stay applied.
        """
        calls = 0
        for index, chunk in enumerate(batched(uris, min(batch_size, MAX_BATCH_SIZE))):
            resp = await self._client.request(
                "POST",
                f"/playlists/{playlist_id}/tracks",
                json={"uris": chunk},
                check=False,
            )
            calls += 1
            if not 200 <= resp.status_code < 300:
                raise AddTracksFailed(
                    f"Batch {index + 1} ({len(chunk)} tracks) was rejected",
                    service="spotify",
                    status_code=resp.status_code,
                )
            logger.debug("Added batch %d (%d URIs) to %s", index + 1, len(chunk), playlist_id)
        return calls

    @staticmethod
    def playlist_url(playlist_id: str) -> str:
        return PLAYLIST_WEB_URL.format(id=playlist_id)
