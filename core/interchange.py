"""Interchange file codec: ``.xplaylist`` JSON documents.

Wire format (version 1)::

    {
      "version": 1,
      "source": "spotify",
      "generated_at": "2025-11-26T10:00:00.000000Z",
      "playlist_name": "Road Trip",
      "tracks": [
        {"title": "...", "artist": "...", "album": null,
         "isrc": null, "artwork": {"url": null}}
      ]
    }

Absent optional fields are written as explicit ``null``; on read, a missing
key and ``null`` mean the same thing.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from core.errors import DecodeFailure
from core.models import SCHEMA_VERSION, InterchangePlaylist, SourceService, Track

FILE_EXTENSION = ".xplaylist"


class DecodeError(DecodeFailure):
    default_detail = "Not a valid interchange playlist"


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------

class _Artwork(BaseModel):
    url: Optional[str] = None


class _WireTrack(BaseModel):
    title: str
    artist: Optional[str] = None
    album: Optional[str] = None
    isrc: Optional[str] = None
    artwork: Optional[_Artwork] = None


class _WirePlaylist(BaseModel):
    version: int
    source: SourceService
    generated_at: datetime
    playlist_name: str
    tracks: List[_WireTrack]

    @field_validator("source", mode="before")
    @classmethod
    def _legacy_source(cls, value):
        # Goes through SourceService._missing_ for names written by older builds.
        return SourceService(value) if isinstance(value, str) else value


def _format_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------

def encode(playlist: InterchangePlaylist) -> bytes:
    """Serialize *playlist* to pretty-printed UTF-8 JSON."""
    payload = {
        "version": playlist.schema_version,
        "source": playlist.source.value,
        "generated_at": _format_timestamp(playlist.generated_at),
        "playlist_name": playlist.name,
        "tracks": [
            {
                "title": t.title,
                "artist": t.artist,
                "album": t.album,
                "isrc": t.isrc,
                "artwork": {"url": t.artwork_url},
            }
            for t in playlist.tracks
        ],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def decode(raw: bytes | str) -> InterchangePlaylist:
    """Parse an interchange document.

    Raises ``DecodeError`` for anything that is not a version-1 playlist
    with a ``tracks`` array whose entries all have a title.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("File is not UTF-8 text") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError("Top-level value must be an object")
    if data.get("version") != SCHEMA_VERSION:
        raise DecodeError(f"Unsupported version: {data.get('version')!r}")
    if not isinstance(data.get("tracks"), list):
        raise DecodeError("'tracks' must be an array")

    try:
        wire = _WirePlaylist.model_validate(data)
        return InterchangePlaylist(
            schema_version=wire.version,
            source=wire.source,
            generated_at=wire.generated_at,
            name=wire.playlist_name,
            tracks=[
                Track(
                    title=t.title,
                    artist=t.artist,
                    album=t.album,
                    isrc=t.isrc,
                    artwork_url=t.artwork.url if t.artwork else None,
                )
                for t in wire.tracks
            ],
        )
    except ValidationError as exc:
        raise DecodeError(f"Schema mismatch: {exc.error_count()} error(s)") from exc


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

def sanitize_filename(name: str) -> str:
    """Make a playlist name safe to use as a filename."""
    return name.replace("/", "-")


def interchange_filename(name: str, stamp: datetime | None = None) -> str:
    """``<name>.xplaylist``, or ``<name>-YYYYMMDD_HHMMSS.xplaylist`` when *stamp* is given."""
    base = sanitize_filename(name)
    if stamp is not None:
        base = f"{base}-{stamp.strftime('%Y%m%d_%H%M%S')}"
    return f"{base}{FILE_EXTENSION}"
