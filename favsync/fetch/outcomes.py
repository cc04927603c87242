"""Classified results of one upstream request."""
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

import orjson


@dataclass(frozen=True)
class Success:
    status: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        """Decoded body. Raises orjson.JSONDecodeError on non-JSON content."""
        return orjson.loads(self.body)


@dataclass(frozen=True)
class NotFound:
    status: int = 404


@dataclass(frozen=True)
class AuthExpired:
    status: int


@dataclass(frozen=True)
class RateLimited:
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class Fatal:
    status: int
    body: str = ""


Outcome = Union[Success, NotFound, AuthExpired, RateLimited, Fatal]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
