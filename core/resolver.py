"""Track resolution policy: pure logic, the search itself is injected.

Each track is matched by an ordered list of probes, strict to loose:

1. ``isrc``: ``isrc:<code>``, authoritative when it hits
2. ``full``: quoted title plus artist and album qualifiers
3. ``widened``: same without the album qualifier (only when there was one)

The first probe that returns a URI wins. A transport or schema failure in a
probe counts as a miss for that probe only.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence

from core.errors import DecodeFailure, NetworkFailure, NotFound
from core.models import Resolution, Track

logger = logging.getLogger(__name__)

SearchFn = Callable[[str], Awaitable[Optional[str]]]

# Failures that only cost the current probe.
PROBE_MISS_ERRORS = (NetworkFailure, DecodeFailure, NotFound)


@dataclass(frozen=True)
class Probe:
    name: str
    query: str


# ---------------------------------------------------------------------------
# Query building
# ---------------------------------------------------------------------------

def isrc_query(isrc: str) -> str:
    return f"isrc:{isrc}"


def track_query(title: str, artist: Optional[str], album: Optional[str]) -> str:
    parts = [f'track:"{title}"']
    if artist:
        parts.append(f"artist:{artist}")
    if album:
        parts.append(f"album:{album}")
    return " ".join(parts)


def plan_probes(track: Track) -> List[Probe]:
    """Ordered probes for *track*."""
    probes: List[Probe] = []
    if track.isrc:
        probes.append(Probe("isrc", isrc_query(track.isrc)))
    probes.append(Probe("full", track_query(track.title, track.artist, track.album)))
    if track.album:
        probes.append(Probe("widened", track_query(track.title, track.artist, None)))
    return probes


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def resolve_track(track: Track, search: SearchFn) -> Resolution:
    """Run the probes for one track in order, stopping at the first hit."""
    for probe in plan_probes(track):
        try:
            uri = await search(probe.query)
        except PROBE_MISS_ERRORS as exc:
            logger.debug("Probe %s failed for %r: %s", probe.name, track.title, exc)
            continue
        if uri:
            return Resolution(track=track, uri=uri, matched_by=probe.name)
        logger.debug("Probe %s missed for %r", probe.name, track.title)
    return Resolution(track=track)


async def resolve_tracks(
    tracks: Sequence[Track],
    search: SearchFn,
    *,
    concurrency: int = 1,
) -> List[Resolution]:
    """Resolve every track, returning results in input order.

    With ``concurrency > 1`` independent tracks are resolved in parallel;
    each track's own probe chain stays sequential.
    """
    if concurrency <= 1:
        return [await resolve_track(t, search) for t in tracks]

    sem = asyncio.Semaphore(concurrency)

    async def _one(track: Track) -> Resolution:
        async with sem:
            return await resolve_track(track, search)

    # gather() returns results in argument order.
    return list(await asyncio.gather(*(_one(t) for t in tracks)))


def batched(items: Sequence[str], size: int) -> Iterator[List[str]]:
    """Yield consecutive chunks of at most *size* items."""
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
