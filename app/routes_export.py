"""Routes for exporting history files to a target service."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.auth import call_with_sign_in
from app.deps import get_services

router = APIRouter(prefix="/export", tags=["export"])


# ---------------------------------------------------------------------------
# POST /export/{filename}: re-create a history playlist on Spotify
# ---------------------------------------------------------------------------

@router.post("/{filename}")
async def export_to_spotify(filename: str, services=Depends(get_services)):
    """Create the playlist on Spotify; unresolved tracks are reported, not fatal."""
    playlist = services.history.load(filename)
    result = await call_with_sign_in(
        services.spotify_auth, lambda: services.exporter.export(playlist)
    )
    return {
        "status": "exported",
        "playlist_id": result.playlist_id,
        "url": result.url,
        "resolved_count": result.resolved_count,
        "unresolved_count": result.unresolved_count,
        "unresolved": [
            {"title": t.title, "artist": t.artist} for t in result.unresolved
        ],
    }
