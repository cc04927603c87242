"""URL builders for the marketplace API."""
from favsync.config import config


def favorites_path(user_id: str, page: int, per_page: int) -> str:
    """Path of one favorites listing page (1-based)."""
    return f"/api/v2/users/{user_id}/items/favourites?page={page}&per_page={per_page}"


def item_detail_path(item_id: str) -> str:
    return f"/api/v2/items/{item_id}"


def token_path() -> str:
    return "/oauth/token"


def item_page_url(item_id: str, base_url: str | None = None) -> str:
    """Public HTML page of an item, used when the JSON detail is blocked."""
    return f"{(base_url or config.BASE_URL).rstrip('/')}/items/{item_id}"
