"""Tests for Spotify API helpers (app/spotify.py).

All HTTP calls are mocked via httpx transport.
"""

from __future__ import annotations

import json

import httpx
import pytest

from app.http import ApiClient
from app.spotify import API_BASE, SpotifyAPI
from core.errors import AddTracksFailed, DecodeFailure, PlaylistCreationFailed, Unauthorized


# ---------------------------------------------------------------------------
# Helpers for mocking httpx
# ---------------------------------------------------------------------------

class MockTransport(httpx.AsyncBaseTransport):
    """Programmable transport returning canned responses per URL path.

    ``routes`` maps ``"METHOD /path/prefix"`` to a list of responses, popped
    in order. A response is either an ``httpx.Response`` or a JSON body.
    """

    def __init__(self, routes: dict[str, list]):
        self._routes = routes
        self.calls: list[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request):
        self.calls.append(request)
        key = f"{request.method} {request.url.path}"
        for prefix, responses in self._routes.items():
            if key.startswith(prefix):
                body = responses.pop(0) if responses else {}
                if isinstance(body, httpx.Response):
                    return body
                return httpx.Response(200, json=body)
        return httpx.Response(404, json={"error": {"status": 404, "message": "not found"}})


def _make_api(routes):
    transport = MockTransport(routes)
    client = ApiClient(httpx.AsyncClient(transport=transport), API_BASE, service="spotify", max_attempts=1)
    return SpotifyAPI(client), transport


def _item(i: int) -> dict:
    return {
        "track": {
            "name": f"Song {i}",
            "uri": f"spotify:track:{i}",
            "artists": [{"name": f"Artist {i}"}],
            "album": {"name": "Album", "images": [{"url": f"https://img/{i}.jpg"}]},
            "external_ids": {"isrc": f"ISRC{i}"},
        }
    }


# ---------------------------------------------------------------------------
# current_user_id
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_current_user_id():
    api, transport = _make_api({"GET /v1/me": [{"id": "user_1", "display_name": "Me"}]})
    assert await api.current_user_id() == "user_1"
    assert str(transport.calls[0].url) == "https://api.spotify.com/v1/me"


@pytest.mark.asyncio
async def test_current_user_id_unauthorized():
    api, _ = _make_api({"GET /v1/me": [httpx.Response(401, json={"error": {"status": 401, "message": "expired"}})]})
    with pytest.raises(Unauthorized):
        await api.current_user_id()


# ---------------------------------------------------------------------------
# get_playlist paging
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_playlist_follows_next_pages():
    first = {
        "id": "pl1",
        "name": "Road Trip",
        "tracks": {
            "items": [_item(i) for i in range(100)],
            "next": "https://api.spotify.com/v1/playlists/pl1/tracks?offset=100&limit=100",
        },
    }
    second = {"items": [_item(100), {"track": None}], "next": None}
    api, transport = _make_api({
        "GET /v1/playlists/pl1/tracks": [second],
        "GET /v1/playlists/pl1": [first],
    })

    playlist = await api.get_playlist("pl1")

    assert playlist.name == "Road Trip"
    assert len(playlist.tracks) == 102
    assert playlist.tracks[100].name == "Song 100"
    assert playlist.tracks[101] is None
    assert transport.calls[1].url.params["offset"] == "100"


@pytest.mark.asyncio
async def test_get_playlist_bad_schema():
    api, _ = _make_api({"GET /v1/playlists/": [{"unexpected": True}]})
    with pytest.raises(DecodeFailure):
        await api.get_playlist("pl1")


# ---------------------------------------------------------------------------
# search_track_uri
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_returns_first_uri():
    api, transport = _make_api({
        "GET /v1/search": [{"tracks": {"items": [{"uri": "spotify:track:a"}, {"uri": "spotify:track:b"}]}}],
    })
    assert await api.search_track_uri('track:"Song" artist:X') == "spotify:track:a"
    params = transport.calls[0].url.params
    assert params["q"] == 'track:"Song" artist:X'
    assert params["type"] == "track"
    assert params["limit"] == "1"


@pytest.mark.asyncio
async def test_search_no_results():
    api, _ = _make_api({"GET /v1/search": [{"tracks": {"items": []}}]})
    assert await api.search_track_uri("isrc:NOPE") is None


@pytest.mark.asyncio
async def test_search_unexpected_payload():
    api, _ = _make_api({"GET /v1/search": [{"artists": {}}]})
    with pytest.raises(DecodeFailure):
        await api.search_track_uri("q")


# ---------------------------------------------------------------------------
# create_playlist
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_playlist_is_private():
    api, transport = _make_api({
        "POST /v1/users/u1/playlists": [
            httpx.Response(201, json={"id": "new_pl", "external_urls": {"spotify": "https://open.spotify.com/playlist/new_pl"}}),
        ],
    })
    result = await api.create_playlist("u1", "Road Trip")
    assert result == {"id": "new_pl", "url": "https://open.spotify.com/playlist/new_pl"}
    body = json.loads(transport.calls[0].content)
    assert body["name"] == "Road Trip"
    assert body["public"] is False


@pytest.mark.asyncio
async def test_create_playlist_rejected():
    api, _ = _make_api({"POST /v1/users/u1/playlists": [httpx.Response(403, json={})]})
    with pytest.raises(PlaylistCreationFailed) as exc_info:
        await api.create_playlist("u1", "X")
    assert exc_info.value.status_code == 403


# ---------------------------------------------------------------------------
# add_tracks_batch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_tracks_batch_splits_in_order():
    uris = [f"spotify:track:{i}" for i in range(250)]
    api, transport = _make_api({
        "POST /v1/playlists/pl/tracks": [httpx.Response(201, json={"snapshot_id": str(i)}) for i in range(3)],
    })

    calls = await api.add_tracks_batch("pl", uris)

    # 250 tracks → 3 batches (100, 100, 50)
    assert calls == 3
    sent = [json.loads(r.content)["uris"] for r in transport.calls]
    assert [len(s) for s in sent] == [100, 100, 50]
    assert sum(sent, []) == uris


@pytest.mark.asyncio
async def test_add_tracks_batch_stops_at_first_failure():
    uris = [f"spotify:track:{i}" for i in range(250)]
    api, transport = _make_api({
        "POST /v1/playlists/pl/tracks": [httpx.Response(201, json={}), httpx.Response(400, json={})],
    })
    with pytest.raises(AddTracksFailed, match="Batch 2"):
        await api.add_tracks_batch("pl", uris)
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_writes_are_not_resent_on_server_error():
    async def no_sleep(_delay):
        return None

    transport = MockTransport({
        "POST /v1/users/u1/playlists": [httpx.Response(502), httpx.Response(201, json={"id": "dup"})],
        "POST /v1/playlists/pl/tracks": [httpx.Response(502), httpx.Response(201, json={})],
    })
    client = ApiClient(httpx.AsyncClient(transport=transport), API_BASE, service="spotify", sleep=no_sleep)
    api = SpotifyAPI(client)

    with pytest.raises(PlaylistCreationFailed):
        await api.create_playlist("u1", "Road Trip")
    with pytest.raises(AddTracksFailed) as exc_info:
        await api.add_tracks_batch("pl", ["spotify:track:1"])
    assert exc_info.value.status_code == 502
    assert [r.method for r in transport.calls] == ["POST", "POST"]


def test_playlist_url():
    assert SpotifyAPI.playlist_url("abc") == "https://open.spotify.com/playlist/abc"
