"""Export an interchange playlist to Spotify.

1. Valid access token (silent path only)
2. Current user id
3. New private playlist named after the source
4. Resolve every track: ISRC → title/artist/album → title/artist
5. Add resolved URIs in ≤100-item batches, in playlist order
6. Return the playlist URL and the resolved/unresolved split

Unresolved tracks are left out and reported; a failed batch write aborts.
"""

from __future__ import annotations

import logging

from app.auth import CredentialManager
from app.spotify import MAX_BATCH_SIZE, SpotifyAPI
from core.models import ExportResult, InterchangePlaylist
from core.resolver import resolve_tracks

logger = logging.getLogger(__name__)


class SpotifyExporter:
    def __init__(
        self,
        auth: CredentialManager,
        api: SpotifyAPI,
        *,
        batch_size: int = MAX_BATCH_SIZE,
        concurrency: int = 1,
    ):
        self._auth = auth
        self._api = api
        self._batch_size = batch_size
        self._concurrency = concurrency

    async def export(self, playlist: InterchangePlaylist) -> ExportResult:
        await self._auth.provide_valid_access_token()
        user_id = await self._api.current_user_id()
        created = await self._api.create_playlist(user_id, playlist.name, public=False)

        resolutions = await resolve_tracks(
            playlist.tracks, self._api.search_track_uri, concurrency=self._concurrency
        )
        uris = [r.uri for r in resolutions if r.uri is not None]
        unresolved = [r.track for r in resolutions if r.uri is None]

        if uris:
            await self._api.add_tracks_batch(created["id"], uris, batch_size=self._batch_size)

        logger.info(
            "Exported %r to Spotify: %d/%d tracks resolved",
            playlist.name,
            len(uris),
            len(playlist.tracks),
        )
        return ExportResult(
            playlist_id=created["id"],
            url=created["url"],
            resolved_uris=uris,
            unresolved=unresolved,
        )
