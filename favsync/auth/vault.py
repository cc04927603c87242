"""Credential storage for automated re-login."""
import aiosqlite
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from favsync.config import STATE_DB
from favsync.parse.models import Credential, utcnow
from favsync.store.state import from_db_time, to_db_time

logger = logging.getLogger(__name__)


class CredentialVault:
    """Holds one active credential; saving a new one deactivates the others."""

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = db_path

    async def save(self, email: str, secret: str, user_id: Optional[str] = None) -> Credential:
        credential = Credential(
            email=email,
            encoded_secret=Credential.encode_secret(secret),
            user_id=user_id or None,
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("UPDATE credentials SET is_active = 0")
            cursor = await db.execute(
                """
                INSERT INTO credentials (email, encoded_secret, user_id, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (credential.email, credential.encoded_secret, credential.user_id, to_db_time(utcnow())),
            )
            credential.id = cursor.lastrowid
            await db.commit()
        logger.info(f"Saved credentials for {email}")
        return credential

    async def get_active(self) -> Optional[Credential]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM credentials WHERE is_active = 1 ORDER BY id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return Credential(
                id=row["id"],
                email=row["email"],
                encoded_secret=row["encoded_secret"],
                user_id=row["user_id"],
                last_refresh_at=from_db_time(row["last_refresh_at"]),
                is_active=bool(row["is_active"]),
            )

    async def has_credentials(self) -> bool:
        return await self.get_active() is not None

    async def mark_refreshed(self, credential_id: int, when: Optional[datetime] = None) -> None:
        """Record the last successful login for a credential."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE credentials SET last_refresh_at = ? WHERE id = ?",
                (to_db_time(when or utcnow()), credential_id),
            )
            await db.commit()

    async def delete_all(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM credentials")
            await db.commit()
        logger.info("All credentials deleted")
