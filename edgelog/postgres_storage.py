"""
PostgreSQL storage backend for log actors.

Values are kept as JSONB rows keyed by (actor_name, key); alarms live in a
separate table with one row per actor.
"""

import json
import logging
from typing import Any

import asyncpg

from edgelog.storage import DurableStorage, StorageBackend

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS edgelog;

CREATE TABLE IF NOT EXISTS edgelog.actor_storage (
    actor_name TEXT NOT NULL,
    key TEXT NOT NULL,
    value JSONB NOT NULL,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (actor_name, key)
);

CREATE TABLE IF NOT EXISTS edgelog.actor_alarms (
    actor_name TEXT PRIMARY KEY,
    fire_at_ms BIGINT NOT NULL
);
"""


class PostgresStorage(DurableStorage):
    def __init__(self, pool: asyncpg.Pool, actor_name: str):
        self.pool = pool
        self.actor_name = actor_name

    async def get(self, key: str) -> Any | None:
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                """
                SELECT value FROM edgelog.actor_storage
                WHERE actor_name = $1 AND key = $2
                """,
                self.actor_name,
                key,
            )
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO edgelog.actor_storage (actor_name, key, value)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (actor_name, key) DO UPDATE SET
                    value = EXCLUDED.value,
                    updated_at = NOW()
                """,
                self.actor_name,
                key,
                payload,
            )

    async def delete(self, key: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "DELETE FROM edgelog.actor_storage WHERE actor_name = $1 AND key = $2",
                self.actor_name,
                key,
            )

    async def get_alarm(self) -> int | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT fire_at_ms FROM edgelog.actor_alarms WHERE actor_name = $1",
                self.actor_name,
            )

    async def set_alarm(self, at_ms: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO edgelog.actor_alarms (actor_name, fire_at_ms)
                VALUES ($1, $2)
                ON CONFLICT (actor_name) DO UPDATE SET fire_at_ms = EXCLUDED.fire_at_ms
                """,
                self.actor_name,
                int(at_ms),
            )

    async def delete_alarm(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "DELETE FROM edgelog.actor_alarms WHERE actor_name = $1",
                self.actor_name,
            )


class PostgresBackend(StorageBackend):
    def __init__(self, pool: asyncpg.Pool, owns_pool: bool = False):
        self.pool = pool
        self.owns_pool = owns_pool

    @classmethod
    async def connect(cls, database_url: str) -> "PostgresBackend":
        """Create a pool, make sure the tables exist and return the backend."""
        pool = await asyncpg.create_pool(database_url, min_size=1, max_size=5)
        logger.info("EdgeLog storage pool created")
        backend = cls(pool, owns_pool=True)
        await backend.init_schema()
        return backend

    async def init_schema(self):
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("EdgeLog storage tables initialized")

    def storage_for(self, actor_name: str) -> PostgresStorage:
        return PostgresStorage(self.pool, actor_name)

    async def pending_alarms(self) -> dict[str, int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT actor_name, fire_at_ms FROM edgelog.actor_alarms")
        return {row["actor_name"]: row["fire_at_ms"] for row in rows}

    async def actors_with_key(self, key: str) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT actor_name FROM edgelog.actor_storage WHERE key = $1 ORDER BY actor_name",
                key,
            )
        return [row["actor_name"] for row in rows]

    async def close(self):
        if self.owns_pool:
            await self.pool.close()
            logger.info("EdgeLog storage pool closed")
