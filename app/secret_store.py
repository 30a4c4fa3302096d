"""Secret store for credential records.

Two implementations of the same async ``get / set / delete`` contract:

- ``MemorySecretStore``: process-local, for tests and throwaway sessions
- ``SqliteSecretStore``: the ``secrets`` table, values Fernet-encrypted
  with a key derived from ``Settings.secret_key``

``set`` always overwrites.
"""

from __future__ import annotations

import hashlib
import logging
from base64 import urlsafe_b64encode
from typing import Protocol

import aiosqlite
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemorySecretStore:
    """Dict-backed store."""

    def __init__(self) -> None:
        self._items: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._items.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)


def derive_fernet_key(secret: str) -> bytes:
    """32-byte urlsafe-base64 Fernet key from an arbitrary secret string."""
    return urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class SqliteSecretStore:
    """Encrypted-at-rest store on the application database."""

    def __init__(self, db: aiosqlite.Connection, secret: str):
        self._db = db
        self._fernet = Fernet(derive_fernet_key(secret))

    async def get(self, key: str) -> bytes | None:
        cursor = await self._db.execute("SELECT value FROM secrets WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if not row:
            return None
        try:
            return self._fernet.decrypt(bytes(row[0]))
        except InvalidToken:
            # Written with a different secret_key; unusable, same as absent.
            logger.warning("Stored secret %s could not be decrypted, ignoring it", key)
            return None

    async def set(self, key: str, value: bytes) -> None:
        await self._db.execute(
            """
            INSERT INTO secrets (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value      = excluded.value,
                          updated_at = datetime('now')
            """,
            (key, self._fernet.encrypt(value)),
        )
        await self._db.commit()

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM secrets WHERE key = ?", (key,))
        await self._db.commit()
