"""Normalize raw listing items and item details into canonical records."""
import logging
from typing import Any, Optional

from favsync.errors import ParseError
from favsync.parse.extractors import (
    as_datetime,
    as_price,
    as_text,
    at,
    dig,
    first_present,
    is_empty,
)
from favsync.parse.inference import canonical_gender, infer_gender_from_text, infer_gender_from_url
from favsync.parse.models import FavoriteRecord, ItemDetails

logger = logging.getLogger(__name__)

# Statuses that describe the listing lifecycle rather than the item condition
LIFECYCLE_STATUSES = frozenset({"sold", "closed", "reserved", "hidden", "active", "draft"})

TITLE_CHAIN = [at("title")]
BRAND_CHAIN = [at("brand_title"), at("brand.title")]
PRICE_CHAIN = [
    lambda item: as_price(dig(item, "price.amount")),
    lambda item: as_price(item.get("price")) if not isinstance(item.get("price"), dict) else None,
    lambda item: as_price(item.get("price_numeric")),
]
IMAGE_CHAIN = [
    at("photo.url"),
    at("photo.full_size_url"),
    at("photos.0.url"),
    at("photos.0.full_size_url"),
]
URL_CHAIN = [at("url")]
SELLER_CHAIN = [at("user.login"), at("user.username")]
SIZE_CHAIN = [at("size_title"), lambda item: as_text(item.get("size"))]
CONDITION_CHAIN = [
    lambda item: None if _is_lifecycle_status(item.get("status")) else as_text(item.get("status")),
    at("condition"),
    at("status_title"),
]

CATEGORY_CHAIN = [
    at("catalog.title"),
    at("catalog_title"),
    at("catalog_tree.-1.title"),
    lambda item: as_text(item.get("category")),
    at("service_fee_catalog_title"),
    at("catalog_branch_title"),
]


def _catalog_tree_gender(item: dict) -> Optional[str]:
    tree = item.get("catalog_tree")
    if not isinstance(tree, list):
        return None
    for node in tree:
        title = node.get("title") if isinstance(node, dict) else None
        gender = infer_gender_from_text(as_text(title))
        if gender:
            return gender
    return None


GENDER_CHAIN = [
    lambda item: canonical_gender(as_text(item.get("gender"))),
    lambda item: canonical_gender(as_text(dig(item, "user.gender"))),
    _catalog_tree_gender,
    lambda item: infer_gender_from_text(as_text(first_present(item, [at("catalog.title"), at("catalog_title")]))),
    lambda item: infer_gender_from_url(as_text(item.get("url"))),
]

LISTED_AT_CHAIN = [
    lambda item: as_datetime(item.get("created_at_ts")),
    lambda item: as_datetime(item.get("created_at")),
]


def _is_lifecycle_status(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in LIFECYCLE_STATUSES


def _resolve_sold(item: dict) -> bool:
    is_closed = item.get("is_closed")
    if isinstance(is_closed, bool):
        return is_closed
    status = item.get("status")
    return isinstance(status, str) and status.strip().lower() == "sold"


def _resolve_id(item: dict) -> str:
    raw_id = item.get("id")
    if isinstance(raw_id, bool) or is_empty(raw_id) or not isinstance(raw_id, (int, str)):
        raise ParseError(f"Item without usable id: {raw_id!r}")
    return str(raw_id).strip()


def normalize_listing_item(raw: Any) -> FavoriteRecord:
    """Map one favorites-listing item to a FavoriteRecord.

    Category, gender and listed date are never present in the listing and
    stay null until enrichment. Raises ParseError when the id is missing.
    """
    if not isinstance(raw, dict):
        raise ParseError(f"Listing item is not an object: {type(raw).__name__}")

    return FavoriteRecord(
        external_id=_resolve_id(raw),
        title=as_text(first_present(raw, TITLE_CHAIN)),
        brand=as_text(first_present(raw, BRAND_CHAIN)),
        price=first_present(raw, PRICE_CHAIN),
        image_url=as_text(first_present(raw, IMAGE_CHAIN)),
        product_url=as_text(first_present(raw, URL_CHAIN)),
        sold=_resolve_sold(raw),
        seller_name=as_text(first_present(raw, SELLER_CHAIN)),
        size=as_text(first_present(raw, SIZE_CHAIN)),
        condition=as_text(first_present(raw, CONDITION_CHAIN)),
    )


def normalize_item_detail(body: Any) -> Optional[ItemDetails]:
    """Details from an item-detail body, or None when there is no `item` object."""
    if not isinstance(body, dict) or not isinstance(body.get("item"), dict):
        return None
    item = body["item"]

    details = ItemDetails(
        external_id=as_text(item.get("id")),
        category=as_text(first_present(item, CATEGORY_CHAIN)),
        gender=first_present(item, GENDER_CHAIN),
        listed_at=first_present(item, LISTED_AT_CHAIN),
        source="json",
    )
    details.missing = [
        name for name in ("category", "gender", "listed_at") if getattr(details, name) is None
    ]
    for name in details.missing:
        logger.warning(
            f"Field not found: {name} (item: {details.external_id}, keys: {sorted(item.keys())})"
        )
    return details
