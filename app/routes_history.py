"""History routes: list, inspect and delete interchange files."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from app.deps import get_services
from app.history import HistorySort
from core.plaintext import to_plain_text

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def list_history(sort: HistorySort = HistorySort.NAME_A_TO_Z, services=Depends(get_services)):
    """All readable history files in the requested order."""
    return {
        "sort": {"value": sort.value, "label": sort.label},
        "items": [
            {
                "name": e.name,
                "generated_at": e.generated_at.isoformat(),
                "filename": e.path.name,
            }
            for e in services.history.entries(sort)
        ],
    }


@router.get("/{filename}")
async def get_history_item(filename: str, services=Depends(get_services)):
    playlist = services.history.load(filename)
    return playlist.model_dump(mode="json")


@router.get("/{filename}/text", response_class=PlainTextResponse)
async def get_history_text(filename: str, services=Depends(get_services)):
    """The playlist as ``Artist - Title`` lines, for services without an export adapter."""
    return to_plain_text(services.history.load(filename).tracks)


@router.delete("/{filename}")
async def delete_history_item(filename: str, services=Depends(get_services)):
    services.history.delete(filename)
    return {"status": "deleted", "filename": filename}
