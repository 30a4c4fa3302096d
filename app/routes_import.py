"""Import routes: deep links, shared URLs and plain-text uploads."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.deeplink import CALLBACK, import_target, parse_deep_link
from app.deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["import"])


class ImportURLRequest(BaseModel):
    url: str


class ImportTextRequest(BaseModel):
    name: str
    text: str


def _imported(playlist, path) -> dict:
    return {
        "status": "imported",
        "name": playlist.name,
        "source": playlist.source.value,
        "track_count": len(playlist.tracks),
        "filename": path.name,
    }


# ---------------------------------------------------------------------------
# GET /open: inbound deep link
# ---------------------------------------------------------------------------

@router.get("/open")
async def open_link(link: str, services=Depends(get_services)):
    """Handle ``<scheme>://import?url=...`` and ``<scheme>://callback?...`` links."""
    deep_link = parse_deep_link(link, services.settings.url_scheme)

    if deep_link.action == CALLBACK:
        if not services.browser.deliver(deep_link.url):
            raise HTTPException(status_code=409, detail="No sign-in is waiting for this callback")
        return {"status": "callback_delivered"}

    playlist, path = await services.importer.import_url(import_target(deep_link))
    return _imported(playlist, path)


# ---------------------------------------------------------------------------
# POST /import: shared playlist URL
# ---------------------------------------------------------------------------

@router.post("/import")
async def import_url(body: ImportURLRequest, services=Depends(get_services)):
    playlist, path = await services.importer.import_url(body.url.strip())
    return _imported(playlist, path)


# ---------------------------------------------------------------------------
# POST /import/text: "Artist - Title" lines
# ---------------------------------------------------------------------------

@router.post("/import/text")
async def import_text(body: ImportTextRequest, services=Depends(get_services)):
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    playlist, path = services.importer.import_text(body.text, name)
    return _imported(playlist, path)
