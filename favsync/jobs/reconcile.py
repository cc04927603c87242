"""Merge freshly fetched favorites into the store."""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import aiosqlite

from favsync.errors import ParseError
from favsync.parse.models import ExtensionFavorite, FavoriteRecord, ItemDetails
from favsync.parse.normalizer import normalize_listing_item
from favsync.store.favorites import FavoriteStore

logger = logging.getLogger(__name__)

# Always replaced on sync, even by null
VOLATILE_FIELDS = ("price", "sold", "title", "image_url", "condition")

# Filled only while the stored value is null
FILL_ONLY_FIELDS = (
    "brand",
    "category",
    "gender",
    "product_url",
    "seller_name",
    "size",
    "listed_at",
)

DETAIL_FIELDS = ("category", "gender", "listed_at")


@dataclass
class ReconcileResult:
    new_count: int = 0
    seen: int = 0
    skipped: int = 0
    new_ids: list[str] = field(default_factory=list)


def merge_records(
    existing: FavoriteRecord,
    incoming: FavoriteRecord,
    volatile: Iterable[str] = VOLATILE_FIELDS,
) -> FavoriteRecord:
    """Fold a freshly normalized record into the stored one."""
    merged = existing.model_copy()
    for name in volatile:
        setattr(merged, name, getattr(incoming, name))
    for name in FILL_ONLY_FIELDS:
        if getattr(merged, name) is None and getattr(incoming, name) is not None:
            setattr(merged, name, getattr(incoming, name))
    return merged


def merge_details(record: FavoriteRecord, details: ItemDetails) -> list[str]:
    """Fill null detail fields in place. Returns the names that were filled."""
    filled = []
    for name in DETAIL_FIELDS:
        value = getattr(details, name)
        if getattr(record, name) is None and value is not None:
            setattr(record, name, value)
            filled.append(name)
    return filled


async def reconcile(store: FavoriteStore, raw_items: Iterable[Any]) -> ReconcileResult:
    """Insert or merge every item, recording its position as sort_order."""
    result = ReconcileResult()
    for position, raw in enumerate(raw_items):
        try:
            incoming = normalize_listing_item(raw)
        except ParseError as e:
            logger.warning(f"Skipping item at position {position}: {e}")
            result.skipped += 1
            continue

        await _store_one(store, incoming, position, result)

    logger.info(
        f"Reconciled {result.seen} favorites ({result.new_count} new, {result.skipped} skipped)"
    )
    return result


async def reconcile_extension(store: FavoriteStore, favorites: Iterable[ExtensionFavorite]) -> ReconcileResult:
    """Same merge as a sync, for favorites pushed by the browser extension."""
    result = ReconcileResult()
    for position, favorite in enumerate(favorites):
        if not favorite.vinted_id:
            logger.warning(f"Skipping extension favorite at position {position}: no id")
            result.skipped += 1
            continue
        record = favorite.to_record()
        # Fields the extension left out keep their stored value
        provided = [name for name in VOLATILE_FIELDS if getattr(record, name) is not None]
        if favorite.sold is None:
            provided.remove("sold")
        await _store_one(store, record, position, result, volatile=provided)

    logger.info(
        f"Imported {result.seen} favorites ({result.new_count} new, {result.skipped} skipped)"
    )
    return result


async def _store_one(
    store: FavoriteStore,
    incoming: FavoriteRecord,
    position: int,
    result: ReconcileResult,
    volatile: Iterable[str] = VOLATILE_FIELDS,
) -> None:
    try:
        existing = await store.find_by_external_id(incoming.external_id)
        record = incoming if existing is None else merge_records(existing, incoming, volatile)
        record.sort_order = position
        await store.save(record)
    except aiosqlite.Error as e:
        logger.error(f"Failed to store item {incoming.external_id}: {e}")
        result.skipped += 1
        return

    if existing is None:
        result.new_count += 1
        result.new_ids.append(record.external_id)
    result.seen += 1
