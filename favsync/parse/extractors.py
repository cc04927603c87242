"""Field-resolution helpers over loosely typed JSON trees."""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

Extractor = Callable[[Any], Any]


def is_empty(value: Any) -> bool:
    """None, blank strings and empty containers are absent; False and 0 are values."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


def dig(tree: Any, path: str) -> Any:
    """Follow a dotted path; integer segments index lists (negative allowed)."""
    node = tree
    for segment in path.split("."):
        if isinstance(node, dict):
            node = node.get(segment)
        elif isinstance(node, list):
            try:
                node = node[int(segment)]
            except (ValueError, IndexError):
                return None
        else:
            return None
        if node is None:
            return None
    return node


def at(path: str) -> Extractor:
    """Extractor reading a dotted path."""
    def extract(tree: Any) -> Any:
        return dig(tree, path)
    extract.__name__ = f"at({path})"
    return extract


def first_present(tree: Any, extractors: Iterable[Extractor]) -> Any:
    """Result of the first extractor returning a non-empty value."""
    for extractor in extractors:
        value = extractor(tree)
        if not is_empty(value):
            return value
    return None


def as_text(value: Any) -> Optional[str]:
    if is_empty(value):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (dict, list)):
        return None
    return str(value).strip()


def as_price(value: Any) -> Optional[float]:
    """Parse numbers like 12.5, "12.50" or "12,50"."""
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("\u00a0", "").replace(" ", "").replace(",", ".")
        match = re.search(r"-?\d+(?:\.\d+)?", cleaned)
        if match:
            return float(match.group())
    logger.debug(f"Unparseable price value: {value!r}")
    return None


def as_datetime(value: Any) -> Optional[datetime]:
    """Unix seconds (number or digit string) or an ISO-8601 string."""
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable date value: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None
