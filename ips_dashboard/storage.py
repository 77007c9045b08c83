"""Durable client storage: SQLite key/value table (aiosqlite)"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

TOKEN_KEY = "ips_token"
USER_KEY = "ips_user"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS storage (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class ClientStorage:
    def __init__(self, db_path: str = "data/client.db") -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute(_CREATE_TABLE)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, key: str) -> str | None:
        async with self._db.execute("SELECT value FROM storage WHERE key = ?", (key,)) as cur:
            row = await cur.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._db.execute(
            "INSERT INTO storage (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        await self._db.commit()

    async def remove(self, *keys: str) -> None:
        for key in keys:
            await self._db.execute("DELETE FROM storage WHERE key = ?", (key,))
        await self._db.commit()
