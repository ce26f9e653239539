"""
Database adapter for PostgreSQL connection and operations.

Every entity write is insert-if-absent keyed by the attestation id, and
checkpoint writes only ever move forward, so the poller and the live tail
can safely overlap (and several indexers can share one database).
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List

import asyncpg

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL DEFAULT '',
    created_at  BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS posts (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL REFERENCES users(id),
    recipient_id  TEXT REFERENCES users(id),
    content       TEXT NOT NULL,
    parent_id     TEXT REFERENCES posts(id),
    created_at    BIGINT NOT NULL,
    revoked_at    BIGINT NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS posts_user_id_idx ON posts (user_id);
CREATE INDEX IF NOT EXISTS posts_parent_id_idx ON posts (parent_id);

CREATE TABLE IF NOT EXISTS likes (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL REFERENCES users(id),
    post_id     TEXT NOT NULL REFERENCES posts(id),
    created_at  BIGINT NOT NULL,
    revoked_at  BIGINT NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS likes_post_id_idx ON likes (post_id);

CREATE TABLE IF NOT EXISTS follows (
    id            TEXT PRIMARY KEY,
    follower_id   TEXT NOT NULL REFERENCES users(id),
    following_id  TEXT NOT NULL REFERENCES users(id),
    created_at    BIGINT NOT NULL,
    revoked_at    BIGINT NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS follows_following_id_idx ON follows (following_id);

CREATE TABLE IF NOT EXISTS link_previews (
    post_id      TEXT PRIMARY KEY REFERENCES posts(id),
    title        TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    image        TEXT NOT NULL DEFAULT '',
    url          TEXT NOT NULL,
    created_at   BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS service_stats (
    name   TEXT PRIMARY KEY,
    value  BIGINT NOT NULL
);
"""

# Revocable entity kind -> table
REVOCATION_TABLES = {
    'post': 'posts',
    'like': 'likes',
    'follow': 'follows',
}


def _affected(status: str) -> int:
    """Row count from an asyncpg command status ('INSERT 0 1', 'UPDATE 3')"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class DatabaseAdapter:
    """Async PostgreSQL database adapter"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self, pool_size: int = 10, max_retries: int = 30, retry_delay: float = 2):
        """Create the connection pool, waiting for the database to come up"""
        logger.info(f"Creating database pool with {pool_size} connections...")

        for attempt in range(max_retries):
            try:
                self.pool = await asyncpg.create_pool(
                    self.database_url,
                    min_size=2,
                    max_size=pool_size,
                    command_timeout=60,
                )
                async with self.pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")

                logger.info("Database pool created successfully")
                return

            except (OSError, asyncpg.PostgresError) as e:
                logger.error(f"Error creating database pool (attempt {attempt + 1}/{max_retries}): {e}")
                if self.pool:
                    await self.pool.close()
                    self.pool = None
                if attempt < max_retries - 1:
                    await asyncio.sleep(retry_delay)
                else:
                    raise

    async def close(self):
        """Close database connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database pool closed")

    async def execute(self, query: str, *args) -> str:
        """Execute a query that doesn't return results"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch multiple rows"""
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args) -> Any:
        """Fetch a single value"""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def init_schema(self):
        """Create read-model tables if they do not exist"""
        await self.execute(SCHEMA_SQL)
        logger.info("Read model schema verified")

    # ===== User Operations =====

    async def ensure_user(self, user_id: str, created_at: int) -> bool:
        """Create the user if absent; returns True when a row was inserted"""
        status = await self.execute(
            """
            INSERT INTO users (id, name, created_at)
            VALUES ($1, '', $2)
            ON CONFLICT (id) DO NOTHING
            """,
            user_id, created_at
        )
        return _affected(status) > 0

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self.fetchrow("SELECT id, name, created_at FROM users WHERE id = $1", user_id)
        return dict(row) if row else None

    async def set_username(self, user_id: str, name: str) -> bool:
        """Update the display name of an existing user"""
        status = await self.execute("UPDATE users SET name = $2 WHERE id = $1", user_id, name)
        return _affected(status) > 0

    # ===== Post Operations =====

    async def post_exists(self, post_id: str) -> bool:
        return bool(await self.fetchval("SELECT EXISTS(SELECT 1 FROM posts WHERE id = $1)", post_id))

    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        row = await self.fetchrow(
            """
            SELECT id, user_id, recipient_id, content, parent_id, created_at, revoked_at
            FROM posts WHERE id = $1
            """,
            post_id
        )
        return dict(row) if row else None

    async def create_post(self, post_data: Dict[str, Any]) -> bool:
        """Create a post record"""
        status = await self.execute(
            """
            INSERT INTO posts (id, user_id, recipient_id, content, parent_id, created_at, revoked_at)
            VALUES ($1, $2, $3, $4, $5, $6, 0)
            ON CONFLICT (id) DO NOTHING
            """,
            post_data['id'],
            post_data['user_id'],
            post_data.get('recipient_id'),
            post_data['content'],
            post_data.get('parent_id'),
            post_data['created_at'],
        )
        return _affected(status) > 0

    # ===== Like Operations =====

    async def create_like(self, like_data: Dict[str, Any]) -> bool:
        """Create a like record"""
        status = await self.execute(
            """
            INSERT INTO likes (id, user_id, post_id, created_at, revoked_at)
            VALUES ($1, $2, $3, $4, 0)
            ON CONFLICT (id) DO NOTHING
            """,
            like_data['id'],
            like_data['user_id'],
            like_data['post_id'],
            like_data['created_at'],
        )
        return _affected(status) > 0

    # ===== Follow Operations =====

    async def create_follow(self, follow_data: Dict[str, Any]) -> bool:
        """Create a follow record"""
        status = await self.execute(
            """
            INSERT INTO follows (id, follower_id, following_id, created_at, revoked_at)
            VALUES ($1, $2, $3, $4, 0)
            ON CONFLICT (id) DO NOTHING
            """,
            follow_data['id'],
            follow_data['follower_id'],
            follow_data['following_id'],
            follow_data['created_at'],
        )
        return _affected(status) > 0

    # ===== Revocations =====

    async def revoke_record(self, kind: str, attestation_id: str, revoked_at: int) -> bool:
        """Set revoked_at on a post/like/follow; no-op when the row is absent"""
        table = REVOCATION_TABLES.get(kind)
        if not table:
            raise ValueError(f"Unknown revocable kind: {kind}")

        status = await self.execute(
            f"UPDATE {table} SET revoked_at = $2 WHERE id = $1",
            attestation_id, revoked_at
        )
        return _affected(status) > 0

    # ===== Link Previews =====

    async def upsert_link_preview(self, preview_data: Dict[str, Any]):
        await self.execute(
            """
            INSERT INTO link_previews (post_id, title, description, image, url, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (post_id)
            DO UPDATE SET title = $2, description = $3, image = $4, url = $5, created_at = $6
            """,
            preview_data['post_id'],
            preview_data['title'],
            preview_data.get('description') or '',
            preview_data.get('image') or '',
            preview_data['url'],
            preview_data['created_at'],
        )

    # ===== Checkpoints =====

    async def get_checkpoint(self, name: str) -> Optional[int]:
        return await self.fetchval("SELECT value FROM service_stats WHERE name = $1", name)

    async def list_checkpoints(self) -> Dict[str, int]:
        rows = await self.fetch("SELECT name, value FROM service_stats ORDER BY name")
        return {row['name']: row['value'] for row in rows}

    async def upsert_checkpoint(self, name: str, block: int) -> int:
        """Create or advance a checkpoint; never moves it backwards"""
        return await self.fetchval(
            """
            INSERT INTO service_stats (name, value)
            VALUES ($1, $2)
            ON CONFLICT (name)
            DO UPDATE SET value = GREATEST(service_stats.value, EXCLUDED.value)
            RETURNING value
            """,
            name, block
        )

    async def advance_existing_checkpoint(self, name: str, block: int) -> bool:
        """Advance a checkpoint only if the row exists and the block is newer"""
        status = await self.execute(
            "UPDATE service_stats SET value = $2 WHERE name = $1 AND value < $2",
            name, block
        )
        return _affected(status) > 0
