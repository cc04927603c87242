"""Paginated retrieval of the favorites listing."""
import logging
from typing import Any, Optional

import orjson

from favsync.auth.tokens import TokenLifecycleManager
from favsync.config import config
from favsync.errors import AuthExpiredError, ParseError, RateLimitedError, UpstreamError
from favsync.fetch.client import UpstreamClient
from favsync.fetch.endpoints import favorites_path
from favsync.fetch.outcomes import AuthExpired, Fatal, NotFound, RateLimited, Success

logger = logging.getLogger(__name__)

MAX_PAGES = 500
ITEM_ARRAY_KEYS = ("items", "favourite_items", "item_favourites")


def extract_items(body: Any) -> list[dict]:
    """Item objects from a listing body, unwrapping `{"item": {...}}` elements."""
    if not isinstance(body, dict):
        raise ParseError(f"Listing body is not an object: {type(body).__name__}")

    array = None
    for key in ITEM_ARRAY_KEYS:
        if isinstance(body.get(key), list):
            array = body[key]
            break
    if array is None:
        logger.warning(f"No item array in listing body (keys: {sorted(body.keys())})")
        return []

    items = []
    for element in array:
        if isinstance(element, dict) and isinstance(element.get("item"), dict):
            items.append(element["item"])
        elif isinstance(element, dict):
            items.append(element)
    return items


class FavoritesPageFetcher:
    """Walks the favorites pages of one user."""

    def __init__(
        self,
        client: UpstreamClient,
        user_id: str,
        per_page: Optional[int] = None,
        tokens: Optional[TokenLifecycleManager] = None,
    ):
        self.client = client
        self.user_id = user_id
        self.per_page = per_page or config.PER_PAGE
        self.tokens = tokens

    async def fetch_page(self, page: int, per_page: Optional[int] = None) -> list[dict]:
        """Fetch one page (1-based). Raises on anything but a success."""
        per_page = per_page or self.per_page
        path = favorites_path(self.user_id, page, per_page)
        if self.tokens is not None and not await self.tokens.ensure_valid():
            logger.debug(f"Access token not refreshed before page {page}, continuing")
        outcome = await self.client.get_json_with_retries(
            path, referer=f"{self.client.base_url}/member/{self.user_id}/favourites"
        )

        if isinstance(outcome, Success):
            try:
                body = outcome.json()
            except orjson.JSONDecodeError as e:
                raise ParseError(f"Favorites page {page} is not JSON: {e}") from e
            return extract_items(body)
        if isinstance(outcome, AuthExpired):
            raise AuthExpiredError(f"Auth expired fetching favorites page {page}", outcome.status)
        if isinstance(outcome, RateLimited):
            raise RateLimitedError(f"Rate limited fetching favorites page {page}")
        if isinstance(outcome, NotFound):
            raise UpstreamError(f"Favorites page {page} not found", status_code=404)
        if isinstance(outcome, Fatal):
            raise UpstreamError(
                f"Favorites page {page} failed with status {outcome.status}",
                status_code=outcome.status,
                body=outcome.body,
            )
        raise UpstreamError(f"Unhandled outcome for favorites page {page}: {outcome!r}")

    async def fetch_all(self, per_page: Optional[int] = None) -> list[dict]:
        """Every favorite across pages, in listing order."""
        per_page = per_page or self.per_page
        collected: list[dict] = []
        page = 1
        while page <= MAX_PAGES:
            items = await self.fetch_page(page, per_page)
            logger.info(f"Page {page}: {len(items)} items")
            collected.extend(items)
            if len(items) < per_page:
                break
            page += 1
        else:
            logger.warning(f"Stopped after {MAX_PAGES} pages, listing may be incomplete")

        logger.info(f"Fetched {len(collected)} favorites over {min(page, MAX_PAGES)} pages")
        return collected
