"""Pydantic models shared across the application."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SourceService(str, Enum):
    SPOTIFY = "spotify"
    APPLE = "apple"
    PLAINTEXT = "plaintext"

    @classmethod
    def _missing_(cls, value):
        # Values written by earlier releases of the app.
        legacy = {"applemusic": cls.APPLE, "txt": cls.PLAINTEXT}
        if isinstance(value, str):
            return legacy.get(value.lower())
        return None


class Track(BaseModel):
    """One song. Position in the playlist is its only identity."""

    title: str = Field(min_length=1)
    artist: Optional[str] = None
    album: Optional[str] = None
    isrc: Optional[str] = None
    artwork_url: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("artist", "album", "isrc", "artwork_url")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class InterchangePlaylist(BaseModel):
    """Service-agnostic playlist, persisted as a ``.xplaylist`` file."""

    schema_version: int = SCHEMA_VERSION
    source: SourceService
    generated_at: datetime = Field(default_factory=utcnow)
    name: str = Field(min_length=1)
    tracks: List[Track] = Field(default_factory=list)

    @field_validator("generated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value


class CredentialRecord(BaseModel):
    """Stored OAuth tokens for one service."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        return self.expires_at <= now + margin


class Resolution(BaseModel):
    """Outcome of matching one track against a target catalog."""

    track: Track
    uri: Optional[str] = None
    matched_by: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.uri is not None


class ExportResult(BaseModel):
    """What an export produced. Unresolved tracks are a discrepancy, not an error."""

    playlist_id: str
    url: str
    resolved_uris: List[str] = Field(default_factory=list)
    unresolved: List[Track] = Field(default_factory=list)

    @property
    def resolved_count(self) -> int:
        return len(self.resolved_uris)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)


class HistoryEntry(BaseModel):
    name: str
    generated_at: datetime
    path: Path
