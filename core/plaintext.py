"""Plain-text playlist parsing: one ``Artist - Title`` entry per line."""

from __future__ import annotations

from typing import List, Optional, Tuple

from core.models import Track

DASHES = frozenset("-–—")  # hyphen, en dash, em dash


def split_artist_title(line: str) -> Optional[Tuple[str, str]]:
    """Split one line into ``(artist, title)``.

    Returns ``None`` for blank lines, ``#`` comments, lines without a dash
    and lines where either side ends up empty. Only the first dash splits;
    any run of dashes right after it is swallowed.
    """
    text = line.strip()
    if not text or text.startswith("#"):
        return None

    i = next((pos for pos, ch in enumerate(text) if ch in DASHES), None)
    if i is None:
        return None

    j = i
    while j < len(text) and text[j] in DASHES:
        j += 1

    artist = text[:i].strip()
    title = text[j:].strip()
    if not artist or not title:
        return None
    return artist, title


def parse_lines(text: str) -> List[Track]:
    """Parse every valid line of *text* into a Track, keeping file order."""
    tracks: List[Track] = []
    for line in text.splitlines():
        parsed = split_artist_title(line)
        if parsed is None:
            continue
        artist, title = parsed
        tracks.append(Track(title=title, artist=artist))
    return tracks


def to_plain_text(tracks: List[Track]) -> str:
    """Render tracks back to ``Artist - Title`` lines."""
    return "\n".join(f"{t.artist or 'Unknown Artist'} - {t.title}" for t in tracks)
