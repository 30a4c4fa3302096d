"""Playlist history: the directory of ``.xplaylist`` files."""

from __future__ import annotations

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import List

from core.errors import InvalidIdentifier, NotFound, TransferError
from core.interchange import FILE_EXTENSION, decode, encode, interchange_filename
from core.models import HistoryEntry, InterchangePlaylist, utcnow

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp-"


class HistorySort(str, Enum):
    """Orderings offered for the history list.

    ``NAME_A_TO_Z`` is the default. The menu entry that produced it was
    labelled "Name ↓" in the first release, and "Name ↑" gave Z→A; the
    names here describe the ordering itself.
    """

    NAME_A_TO_Z = "name_a_to_z"
    NAME_Z_TO_A = "name_z_to_a"
    NEWEST_FIRST = "newest_first"

    @property
    def label(self) -> str:
        return {
            HistorySort.NAME_A_TO_Z: "Name A–Z",
            HistorySort.NAME_Z_TO_A: "Name Z–A",
            HistorySort.NEWEST_FIRST: "Newest first",
        }[self]


class HistoryStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    # ── Write ───────────────────────────────────────────────────

    def save(self, playlist: InterchangePlaylist, *, timestamped: bool = False) -> Path:
        """Write *playlist* atomically and return its path.

        Without *timestamped* the file is keyed by playlist name, so
        re-importing the same playlist replaces the earlier snapshot.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        filename = interchange_filename(playlist.name, utcnow() if timestamped else None)
        dest = self.directory / filename

        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=_TMP_PREFIX, suffix=FILE_EXTENSION)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(encode(playlist))
            os.replace(tmp, dest)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Saved %s (%d tracks)", dest.name, len(playlist.tracks))
        return dest

    # ── Read ────────────────────────────────────────────────────

    def _resolve(self, filename: str) -> Path:
        path = (self.directory / filename).resolve()
        if path.parent != self.directory.resolve() or path.suffix.lower() != FILE_EXTENSION:
            raise InvalidIdentifier(f"Not a history file: {filename}")
        if not path.is_file():
            raise NotFound(f"No history file named {filename}")
        return path

    def load(self, filename: str) -> InterchangePlaylist:
        return decode(self._resolve(filename).read_bytes())

    def entries(self, sort: HistorySort = HistorySort.NAME_A_TO_Z) -> List[HistoryEntry]:
        """Decode every history file; unreadable ones are skipped."""
        if not self.directory.is_dir():
            return []

        items: List[HistoryEntry] = []
        for path in self.directory.iterdir():
            if path.name.startswith(_TMP_PREFIX) or path.suffix.lower() != FILE_EXTENSION:
                continue
            try:
                playlist = decode(path.read_bytes())
            except (OSError, TransferError) as exc:
                logger.warning("Skipping %s: %s", path.name, exc)
                continue
            items.append(HistoryEntry(name=playlist.name, generated_at=playlist.generated_at, path=path))

        # Newest first, then by name.
        items.sort(key=lambda e: e.name.casefold())
        items.sort(key=lambda e: e.generated_at, reverse=True)

        if sort is HistorySort.NAME_A_TO_Z:
            items.sort(key=lambda e: e.name.casefold())
        elif sort is HistorySort.NAME_Z_TO_A:
            items.sort(key=lambda e: e.name.casefold(), reverse=True)
        return items

    # ── Delete ──────────────────────────────────────────────────

    def delete(self, filename: str) -> None:
        path = self._resolve(filename)
        path.unlink()
        logger.info("Deleted %s", path.name)
