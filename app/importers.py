"""Import adapters and the service that saves their results to history.

Every adapter turns its input into an ``InterchangePlaylist``; the
``ImportService`` picks the adapter, handles sign-in escalation and writes
the result through the history store.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Tuple
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.apple_music import AppleMusicImporter
from app.auth import CredentialManager, call_with_sign_in
from app.deeplink import service_for_url
from app.history import HistoryStore
from app.spotify import SpotifyAPI, SpotifyTrack
from core.errors import DecodeFailure, EmptyResult, InvalidIdentifier
from core.models import InterchangePlaylist, SourceService, Track
from core.plaintext import parse_lines

logger = logging.getLogger(__name__)


class PlaylistImporter(Protocol):
    async def import_playlist(self, identifier: str) -> InterchangePlaylist: ...


# ---------------------------------------------------------------------------
# Spotify
# ---------------------------------------------------------------------------

def spotify_playlist_id(url: str) -> str:
    """Last path segment of an ``open.spotify.com/playlist/<id>`` URL."""
    if "spotify.com/playlist/" not in url:
        raise InvalidIdentifier("Invalid Spotify playlist URL", service="spotify")
    segments = [s for s in urlsplit(url.strip()).path.split("/") if s]
    if not segments or segments[-1] == "playlist":
        raise InvalidIdentifier("Spotify URL has no playlist id", service="spotify")
    return segments[-1]


def _to_track(remote: Optional[SpotifyTrack]) -> Track | None:
    if remote is None or not remote.name.strip():
        return None
    album = remote.album
    return Track(
        title=remote.name,
        artist=remote.artists[0].name if remote.artists else None,
        album=album.name if album else None,
        isrc=remote.external_ids.get("isrc"),
        artwork_url=album.images[0].url if album and album.images else None,
    )


class SpotifyImporter:
    def __init__(self, api: SpotifyAPI):
        self._api = api

    async def import_playlist(self, identifier: str) -> InterchangePlaylist:
        playlist_id = spotify_playlist_id(identifier)
        remote = await self._api.get_playlist(playlist_id)

        tracks = [t for t in (_to_track(r) for r in remote.tracks) if t is not None]
        skipped = len(remote.tracks) - len(tracks)
        if skipped:
            logger.info("Skipped %d unavailable entries in %s", skipped, playlist_id)
        try:
            return InterchangePlaylist(source=SourceService.SPOTIFY, name=remote.name, tracks=tracks)
        except ValidationError as exc:
            raise DecodeFailure("Playlist has no name", service="spotify") from exc


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

class PlainTextImporter:
    """``Artist - Title`` lines; no network, no auth."""

    def import_text(self, text: str, name: str) -> InterchangePlaylist:
        tracks = parse_lines(text)
        if not tracks:
            raise EmptyResult("No valid 'Artist - Title' lines found", service="plaintext")
        return InterchangePlaylist(source=SourceService.PLAINTEXT, name=name, tracks=tracks)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ImportService:
    def __init__(
        self,
        history: HistoryStore,
        spotify_auth: CredentialManager,
        spotify: SpotifyImporter,
        apple: AppleMusicImporter,
        plaintext: PlainTextImporter,
    ):
        self._history = history
        self._spotify_auth = spotify_auth
        self._spotify = spotify
        self._apple = apple
        self._plaintext = plaintext

    async def import_url(self, url: str) -> Tuple[InterchangePlaylist, Path]:
        """Import a shared playlist URL, picking the adapter by host."""
        service = service_for_url(url)
        if service is SourceService.SPOTIFY:
            playlist = await call_with_sign_in(
                self._spotify_auth, lambda: self._spotify.import_playlist(url)
            )
        else:
            playlist = await self._apple.import_playlist(url)
        return playlist, self._history.save(playlist)

    def import_text(self, text: str, name: str) -> Tuple[InterchangePlaylist, Path]:
        """Import pasted or uploaded text under *name*, timestamping the file."""
        playlist = self._plaintext.import_text(text, name)
        return playlist, self._history.save(playlist, timestamped=True)
