"""Inbound deep links on the app's private URL scheme.

Two actions exist:

- ``<scheme>://import?url=<percent-encoded playlist URL>``: a share action
  handing over a source playlist (``<scheme>:///import?...`` also works)
- ``<scheme>://callback?code=...``: the OAuth redirect
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import parse_qs, unquote, urlsplit

from core.errors import InvalidIdentifier
from core.models import SourceService

IMPORT = "import"
CALLBACK = "callback"

# Host substring → import adapter.
_SERVICE_HOSTS = (
    ("spotify.com", SourceService.SPOTIFY),
    ("music.apple.com", SourceService.APPLE),
)


@dataclass(frozen=True)
class DeepLink:
    action: str
    url: str
    params: Dict[str, str] = field(default_factory=dict)


def parse_deep_link(url: str, scheme: str) -> DeepLink:
    parts = urlsplit(url.strip())
    if parts.scheme.lower() != scheme.lower():
        raise InvalidIdentifier(f"Unsupported link scheme: {parts.scheme or '(none)'}")

    action = (parts.netloc or parts.path.strip("/")).lower()
    if action not in (IMPORT, CALLBACK):
        raise InvalidIdentifier(f"Unsupported link action: {action or '(none)'}")

    params = {k: v[0] for k, v in parse_qs(parts.query).items() if v}
    return DeepLink(action=action, url=url.strip(), params=params)


def import_target(link: DeepLink) -> str:
    """The source playlist URL carried by an import link."""
    value = link.params.get("url", "").strip()
    if not value:
        raise InvalidIdentifier("Import link has no url parameter")
    # Share sheets sometimes encode twice.
    if "://" not in value and "%" in value:
        value = unquote(value)
    return value


def service_for_url(url: str) -> SourceService:
    host = (urlsplit(url).hostname or "").lower()
    for needle, service in _SERVICE_HOSTS:
        if needle in host:
            return service
    raise InvalidIdentifier(f"Unsupported URL host: {host or '(none)'}")
