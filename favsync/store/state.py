"""SQLite state database shared by the stores and the login agent."""
import aiosqlite
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from favsync.config import STATE_DB

logger = logging.getLogger(__name__)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO string in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StateDB:
    """Creates the schema used by favorites, session tokens and credentials."""

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = db_path

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS favorites (
                    external_id TEXT PRIMARY KEY,
                    title TEXT,
                    brand TEXT,
                    category TEXT,
                    gender TEXT,
                    price REAL,
                    image_url TEXT,
                    product_url TEXT,
                    sold INTEGER NOT NULL DEFAULT 0,
                    seller_name TEXT,
                    size TEXT,
                    condition TEXT,
                    listed_at TIMESTAMP,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_favorites_sort ON favorites(sort_order)"
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS session_tokens (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    domain TEXT,
                    path TEXT NOT NULL DEFAULT '/',
                    expires_at TIMESTAMP,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL,
                    encoded_secret TEXT NOT NULL,
                    user_id TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    last_refresh_at TIMESTAMP,
                    created_at TIMESTAMP
                )
                """
            )
            await db.commit()
            logger.debug(f"State database initialized at {self.db_path}")

    async def get_stats(self) -> dict:
        """Row counts used by the status command."""
        async with aiosqlite.connect(self.db_path) as db:
            stats = {}
            for table in ("favorites", "session_tokens", "credentials"):
                cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
                row = await cursor.fetchone()
                stats[table] = row[0] if row else 0
            cursor = await db.execute(
                "SELECT COUNT(*) FROM favorites WHERE category IS NULL OR gender IS NULL"
            )
            row = await cursor.fetchone()
            stats["needing_enrichment"] = row[0] if row else 0
            return stats
