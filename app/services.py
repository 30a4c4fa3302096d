"""Service container: every collaborator built once, explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import httpx

from app import apple_music, spotify
from app.apple_music import AppleMusicAuth, AppleMusicImporter
from app.auth import BrowserSession, CredentialManager, spotify_provider
from app.config import Settings
from app.exporter import SpotifyExporter
from app.history import HistoryStore
from app.http import ApiClient
from app.importers import ImportService, PlainTextImporter, SpotifyImporter
from app.secret_store import SecretStore


@dataclass
class Services:
    settings: Settings
    http: httpx.AsyncClient
    secrets: SecretStore
    browser: BrowserSession
    spotify_auth: CredentialManager
    apple_auth: AppleMusicAuth
    history: HistoryStore
    importer: ImportService
    exporter: SpotifyExporter

    async def aclose(self) -> None:
        await self.http.aclose()


def build_services(
    settings: Settings,
    secrets: SecretStore,
    *,
    http: httpx.AsyncClient | None = None,
    browser: BrowserSession | None = None,
) -> Services:
    """Wire the engine from settings plus the injected store and transport."""
    if http is None:
        http = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout)
        )
    browser = browser or BrowserSession()

    spotify_auth = CredentialManager(
        spotify_provider(settings),
        secrets,
        browser,
        http,
        refresh_margin=timedelta(seconds=settings.refresh_margin_seconds),
    )
    spotify_api = spotify.SpotifyAPI(
        ApiClient(
            http,
            spotify.API_BASE,
            service="spotify",
            auth=spotify_auth,
            max_attempts=settings.max_attempts,
        )
    )

    apple_auth = AppleMusicAuth(secrets, settings.apple_developer_token)
    apple_importer = AppleMusicImporter(
        ApiClient(
            http,
            apple_music.API_BASE,
            service="apple",
            auth=apple_auth,
            max_attempts=settings.max_attempts,
        ),
        default_storefront=settings.apple_storefront,
    )

    history = HistoryStore(settings.history_abs_path)
    return Services(
        settings=settings,
        http=http,
        secrets=secrets,
        browser=browser,
        spotify_auth=spotify_auth,
        apple_auth=apple_auth,
        history=history,
        importer=ImportService(
            history,
            spotify_auth,
            SpotifyImporter(spotify_api),
            apple_importer,
            PlainTextImporter(),
        ),
        exporter=SpotifyExporter(
            spotify_auth,
            spotify_api,
            batch_size=settings.export_batch_size,
            concurrency=settings.resolve_concurrency,
        ),
    )
