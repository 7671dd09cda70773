"""Storage adapters for persisted signing keys."""

from __future__ import annotations

import asyncio
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import asyncpg

from ..config import database_dsn

CREATE_SETTINGS_SQL = """
CREATE TABLE IF NOT EXISTS gift_settings (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class KeyStore(ABC):
    """Key-value store with create-if-absent semantics."""

    @abstractmethod
    async def get(self, name: str) -> Optional[str]:
        """Fetch a stored value by name."""

    @abstractmethod
    async def set_if_absent(self, name: str, value: str) -> str:
        """Store ``value`` unless ``name`` already exists; return whichever value is stored."""

    async def close(self) -> None:
        """Close store resources if needed."""


class InMemoryKeyStore(KeyStore):
    """In-memory key store for tests and single-process use."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    async def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    async def set_if_absent(self, name: str, value: str) -> str:
        return self.values.setdefault(name, value)


class FileKeyStore(KeyStore):
    """One file per name under ``directory``.

    New values are written to a temporary file and hard-linked into place, so
    the first writer wins and readers never observe a partially written file.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"invalid key name {name!r}")
        return self.directory / f"{name}.json"

    async def get(self, name: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, self._path(name))

    async def set_if_absent(self, name: str, value: str) -> str:
        return await asyncio.to_thread(self._write_if_absent, self._path(name), value)

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write_if_absent(self, path: Path, value: str) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            try:
                os.link(tmp_name, path)
            except FileExistsError:
                return path.read_text(encoding="utf-8")
            return value
        finally:
            os.unlink(tmp_name)


class PostgresKeyStore(KeyStore):
    """Postgres-backed key store using asyncpg."""

    def __init__(self, dsn: str | None = None, *, pool: asyncpg.Pool | None = None) -> None:
        self.dsn = dsn
        self.pool = pool

    async def connect(self) -> None:
        if self.pool is not None:
            return
        if not self.dsn:
            raise ValueError("Either `dsn` or `pool` must be provided for PostgresKeyStore.")
        self.pool = await asyncpg.create_pool(dsn=self.dsn, min_size=1, max_size=2)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def ensure_schema(self) -> None:
        await self.connect()
        assert self.pool is not None
        async with self.pool.acquire() as conn:
            await conn.execute(CREATE_SETTINGS_SQL)

    async def get(self, name: str) -> Optional[str]:
        await self.connect()
        assert self.pool is not None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT value FROM gift_settings WHERE name=$1", name)
            return row["value"] if row else None

    async def set_if_absent(self, name: str, value: str) -> str:
        await self.connect()
        assert self.pool is not None
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO gift_settings (name, value)
                    VALUES ($1, $2)
                    ON CONFLICT (name) DO NOTHING
                    """,
                    name,
                    value,
                )
                row = await conn.fetchrow("SELECT value FROM gift_settings WHERE name=$1", name)
                return row["value"]


def create_key_store_from_env() -> KeyStore:
    """Create Postgres store if a DSN is configured, a file store if POG_KEY_DIR is set, otherwise in-memory."""
    dsn = database_dsn()
    if dsn:
        return PostgresKeyStore(dsn=dsn)
    key_dir = os.getenv("POG_KEY_DIR")
    if key_dir:
        return FileKeyStore(key_dir)
    return InMemoryKeyStore()
