"""Keyed favorites store."""
import aiosqlite
import logging
from pathlib import Path
from typing import Optional

from favsync.config import STATE_DB
from favsync.parse.models import FavoriteRecord, utcnow
from favsync.store.state import from_db_time, to_db_time

logger = logging.getLogger(__name__)

_COLUMNS = (
    "external_id",
    "title",
    "brand",
    "category",
    "gender",
    "price",
    "image_url",
    "product_url",
    "sold",
    "seller_name",
    "size",
    "condition",
    "listed_at",
    "sort_order",
    "created_at",
    "updated_at",
)
_TIME_COLUMNS = ("listed_at", "created_at", "updated_at")


def _row_to_record(row: aiosqlite.Row) -> FavoriteRecord:
    data = dict(row)
    for column in _TIME_COLUMNS:
        data[column] = from_db_time(data[column])
    data["sold"] = bool(data["sold"])
    return FavoriteRecord(**data)


class FavoriteStore:
    """Persists FavoriteRecord rows keyed by external_id."""

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = db_path

    async def find_by_external_id(self, external_id: str) -> Optional[FavoriteRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM favorites WHERE external_id = ?", (external_id,)
            )
            row = await cursor.fetchone()
            return _row_to_record(row) if row else None

    async def save(self, record: FavoriteRecord) -> FavoriteRecord:
        """Insert or update by external_id, stamping timestamps."""
        now = utcnow()
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now

        values = record.model_dump()
        for column in _TIME_COLUMNS:
            values[column] = to_db_time(values[column])
        values["sold"] = int(values["sold"])

        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(
            f"{column} = excluded.{column}"
            for column in _COLUMNS
            if column not in ("external_id", "created_at")
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"""
                INSERT INTO favorites ({", ".join(_COLUMNS)})
                VALUES ({placeholders})
                ON CONFLICT(external_id) DO UPDATE SET {updates}
                """,
                tuple(values[column] for column in _COLUMNS),
            )
            await db.commit()
        return record

    async def fill_missing(self, external_id: str, values: dict) -> None:
        """Set the given columns only where they are still null. Other columns are untouched."""
        if not values:
            return
        columns = list(values)
        unknown = set(columns) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown favorites columns: {sorted(unknown)}")
        assignments = ", ".join(f"{column} = COALESCE({column}, ?)" for column in columns)
        params = [
            to_db_time(values[column]) if column in _TIME_COLUMNS else values[column]
            for column in columns
        ]
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"UPDATE favorites SET {assignments}, updated_at = ? WHERE external_id = ?",
                (*params, to_db_time(utcnow()), external_id),
            )
            await db.commit()

    async def list_ordered_by_sort_order(self) -> list[FavoriteRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM favorites ORDER BY sort_order, external_id"
            )
            return [_row_to_record(row) for row in await cursor.fetchall()]

    async def list_needing_enrichment(self) -> list[FavoriteRecord]:
        """Records with a null category or gender, in listing order."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM favorites
                WHERE category IS NULL OR gender IS NULL
                ORDER BY sort_order, external_id
                """
            )
            return [_row_to_record(row) for row in await cursor.fetchall()]

    async def count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM favorites")
            row = await cursor.fetchone()
            return row[0] if row else 0
