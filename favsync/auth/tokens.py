"""Access-token expiry checks and single-flight refresh."""
import asyncio
import base64
import enum
import logging
import time
from typing import Any, Optional

import httpx
import orjson
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from favsync.auth.session_store import SessionStore
from favsync.config import config
from favsync.fetch.endpoints import token_path

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token_web"
REFRESH_TOKEN_COOKIE = "refresh_token_web"


class TokenState(str, enum.Enum):
    VALID = "valid"
    NEEDS_REFRESH = "needs_refresh"
    REFRESHING = "refreshing"
    REFRESH_FAILED = "refresh_failed"


def decode_base64url(segment: str) -> bytes:
    """Decode base64url with padding handling."""
    missing_padding = len(segment) % 4
    if missing_padding:
        segment += "=" * (4 - missing_padding)
    return base64.urlsafe_b64decode(segment)


def read_claims(token: str) -> dict[str, Any]:
    """Claims object from the second segment of a JWT. Raises ValueError."""
    parts = token.split(".")
    if len(parts) < 2:
        raise ValueError("token has no claims segment")
    claims = orjson.loads(decode_base64url(parts[1]))
    if not isinstance(claims, dict):
        raise ValueError("claims segment is not an object")
    return claims


class TokenLifecycleManager:
    """Decides when the access token is stale and refreshes it, one attempt at a time."""

    def __init__(
        self,
        store: SessionStore,
        http: httpx.AsyncClient,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        safety_margin: Optional[int] = None,
    ):
        self.store = store
        self.http = http
        self.base_url = (base_url or config.BASE_URL).rstrip("/")
        self.user_agent = user_agent or config.USER_AGENT
        self.safety_margin = config.TOKEN_SAFETY_MARGIN if safety_margin is None else safety_margin
        self.state = TokenState.NEEDS_REFRESH
        self._lock = asyncio.Lock()

    @property
    def refresh_in_progress(self) -> bool:
        return self._lock.locked()

    async def is_expired(self, now: Optional[float] = None) -> bool:
        """True when the token is missing, unreadable or within the safety margin of exp."""
        token = await self.store.get_value(ACCESS_TOKEN_COOKIE)
        if not token:
            logger.debug("No access token stored")
            return True
        try:
            exp = int(read_claims(token)["exp"])
        except (ValueError, KeyError, TypeError, orjson.JSONDecodeError) as e:
            logger.warning(f"Cannot read access token expiry, treating as expired: {e}")
            return True

        current = time.time() if now is None else now
        expired = (exp - self.safety_margin) < current
        if expired:
            logger.info(f"Access token expired or about to expire (exp: {exp}, now: {int(current)})")
        return expired

    async def ensure_valid(self) -> bool:
        """Refresh when expired. Returns whether the token is usable afterwards."""
        if await self.is_expired():
            self.state = TokenState.NEEDS_REFRESH
            return await self.refresh()
        self.state = TokenState.VALID
        return True

    async def refresh(self) -> bool:
        """Exchange the refresh token for new tokens; concurrent callers get False at once."""
        if self._lock.locked():
            logger.info("Token refresh already in progress")
            return False

        async with self._lock:
            self.state = TokenState.REFRESHING
            try:
                ok = await self._refresh()
            except Exception:
                self.state = TokenState.REFRESH_FAILED
                raise
            self.state = TokenState.VALID if ok else TokenState.REFRESH_FAILED
            return ok

    async def _refresh(self) -> bool:
        refresh_token = await self.store.get_value(REFRESH_TOKEN_COOKIE)
        if not refresh_token:
            logger.error("Refresh token not found")
            return False

        logger.info("Refreshing access token...")
        try:
            response = await self._post_refresh(refresh_token)
        except httpx.TransportError as e:
            logger.error(f"Token refresh request failed: {e}")
            return False

        await self.store.ingest_response(response.headers.get_list("set-cookie"))

        if not response.is_success:
            logger.error(f"Token refresh failed with status {response.status_code}")
            return False

        try:
            body = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            logger.error(f"Token refresh returned unparseable body: {e}")
            return False
        if not isinstance(body, dict):
            logger.error("Token refresh returned an unexpected body")
            return False

        access_token = body.get("access_token")
        new_refresh_token = body.get("refresh_token")
        if not access_token:
            logger.error("Token refresh response carried no access token")
            return False
        await self.store.put(ACCESS_TOKEN_COOKIE, str(access_token))
        logger.info("Access token refreshed")
        if new_refresh_token:
            await self.store.put(REFRESH_TOKEN_COOKIE, str(new_refresh_token))
            logger.info("Refresh token rotated")
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.NetworkError,)),
        reraise=True,
    )
    async def _post_refresh(self, refresh_token: str) -> httpx.Response:
        """POST the refresh form, retrying connection-level failures."""
        return await self.http.post(
            f"{self.base_url}{token_path()}",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": "web",
            },
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/json",
                "Cookie": await self.store.build_header(),
                "Origin": self.base_url,
                "Referer": f"{self.base_url}/",
            },
        )
