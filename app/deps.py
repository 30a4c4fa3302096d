"""FastAPI dependency helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from app.services import Services


def get_services(request: Request) -> "Services":
    """Return the service container built during lifespan startup."""
    return request.app.state.services
