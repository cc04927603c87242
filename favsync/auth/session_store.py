"""Persistent cookie jar plus the anti-forgery and anonymous-client headers."""
import aiosqlite
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from favsync.config import STATE_DB, config
from favsync.parse.models import BrowserCookie, SessionToken, utcnow
from favsync.store.state import from_db_time, to_db_time

logger = logging.getLogger(__name__)

CSRF_TOKEN_KEY = "__x_csrf_token"
ANON_ID_KEY = "__x_anon_id"
RESERVED_NAMES = frozenset({CSRF_TOKEN_KEY, ANON_ID_KEY})

# Expiries past the representable range clamp here
FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)
FAR_PAST = datetime.min.replace(tzinfo=timezone.utc)

# Any of these being live means the upstream will treat us as logged in
SESSION_COOKIE_NAMES = ("_vinted_fr_session", "access_token_web")


def _row_to_token(row: aiosqlite.Row) -> SessionToken:
    return SessionToken(
        name=row["name"],
        value=row["value"],
        domain=row["domain"],
        path=row["path"],
        expires_at=from_db_time(row["expires_at"]),
        is_active=bool(row["is_active"]),
    )


def parse_set_cookie(header: str, default_domain: str, now: Optional[datetime] = None) -> Optional[SessionToken]:
    """Parse one Set-Cookie value into a token, honoring domain= and max-age=."""
    if not header:
        return None
    parts = header.split(";")
    name, sep, value = parts[0].partition("=")
    name = name.strip()
    if not sep or not name:
        return None

    domain = default_domain
    expires_at = None
    for part in parts[1:]:
        key, _, attr_value = part.strip().partition("=")
        key = key.strip().lower()
        if key == "domain" and attr_value.strip():
            domain = attr_value.strip().lstrip(".")
        elif key == "max-age":
            try:
                seconds = int(attr_value.strip())
            except ValueError:
                logger.warning(f"Could not parse max-age in Set-Cookie for {name}: {attr_value!r}")
                continue
            try:
                expires_at = (now or utcnow()) + timedelta(seconds=seconds)
            except OverflowError:
                expires_at = FAR_FUTURE if seconds > 0 else FAR_PAST
    return SessionToken(name=name, value=value.strip(), domain=domain, expires_at=expires_at)


class SessionStore:
    """Keyed session tokens persisted in the state database."""

    def __init__(self, db_path: Path = STATE_DB, default_domain: Optional[str] = None):
        self.db_path = db_path
        self.default_domain = default_domain or config.COOKIE_DOMAIN

    async def put(
        self,
        name: str,
        value: str,
        domain: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> SessionToken:
        """Insert or replace the token with this name and mark it active."""
        token = SessionToken(
            name=name,
            value=value,
            domain=domain or self.default_domain,
            expires_at=expires_at,
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO session_tokens (name, value, domain, path, expires_at, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?, 1, ?)
                ON CONFLICT(name) DO UPDATE SET
                    value = excluded.value,
                    domain = excluded.domain,
                    expires_at = excluded.expires_at,
                    is_active = 1,
                    updated_at = excluded.updated_at
                """,
                (
                    token.name,
                    token.value,
                    token.domain,
                    token.path,
                    to_db_time(token.expires_at),
                    to_db_time(utcnow()),
                ),
            )
            await db.commit()
        logger.debug(f"Stored session token {name}")
        return token

    async def get(self, name: str) -> Optional[SessionToken]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM session_tokens WHERE name = ?", (name,))
            row = await cursor.fetchone()
            return _row_to_token(row) if row else None

    async def get_value(self, name: str) -> Optional[str]:
        """Value of a token only if it is active and unexpired."""
        token = await self.get(name)
        if token is None or not token.usable:
            return None
        return token.value

    async def all_active(self) -> list[SessionToken]:
        """Active, unexpired cookies, excluding the reserved header entries."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM session_tokens WHERE is_active = 1 ORDER BY name"
            )
            tokens = [_row_to_token(row) for row in await cursor.fetchall()]
        now = utcnow()
        return [t for t in tokens if not t.is_expired(now) and t.name not in RESERVED_NAMES]

    async def build_header(self) -> str:
        return "; ".join(f"{t.name}={t.value}" for t in await self.all_active())

    async def has_valid_session(self) -> bool:
        active = {t.name for t in await self.all_active()}
        return any(name in active for name in SESSION_COOKIE_NAMES)

    async def deactivate(self, name: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("UPDATE session_tokens SET is_active = 0 WHERE name = ?", (name,))
            await db.commit()
        logger.info(f"Deactivated session token {name}")

    async def deactivate_all(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("UPDATE session_tokens SET is_active = 0")
            await db.commit()
        logger.info("All session tokens deactivated")

    async def ingest_set_cookie(self, header: str) -> Optional[SessionToken]:
        token = parse_set_cookie(header, self.default_domain)
        if token is None:
            return None
        return await self.put(token.name, token.value, token.domain, token.expires_at)

    async def ingest_response(self, set_cookie_headers: Iterable[str]) -> int:
        """Store every Set-Cookie value of a response. Returns how many were kept."""
        count = 0
        for header in set_cookie_headers:
            if await self.ingest_set_cookie(header) is not None:
                count += 1
        return count

    async def load_raw(self, raw: str, domain: Optional[str] = None) -> int:
        """Load a browser-style 'a=b; c=d' cookie string."""
        if not raw:
            return 0
        count = 0
        for pair in raw.split(";"):
            name, sep, value = pair.strip().partition("=")
            if sep and name.strip():
                await self.put(name.strip(), value.strip(), domain)
                count += 1
        logger.info(f"Loaded {count} cookies from raw string")
        return count

    async def ingest_browser_cookies(self, cookies: Iterable[BrowserCookie]) -> int:
        """Store cookies exported by the browser extension. Returns how many were kept."""
        count = 0
        for cookie in cookies:
            if not cookie.name:
                continue
            expires_at = None
            if cookie.expiration_date and cookie.expiration_date > 0:
                try:
                    expires_at = datetime.fromtimestamp(cookie.expiration_date, tz=timezone.utc)
                except (OverflowError, OSError, ValueError):
                    expires_at = FAR_FUTURE
            domain = (cookie.domain or "").lstrip(".") or None
            await self.put(cookie.name, cookie.value, domain, expires_at)
            count += 1
        logger.info(f"Saved {count} cookies from the browser extension")
        return count

    async def save_csrf_token(self, value: str) -> None:
        if value:
            await self.put(CSRF_TOKEN_KEY, value)
            logger.info("X-Csrf-Token saved")

    async def get_csrf_token(self) -> Optional[str]:
        return await self.get_value(CSRF_TOKEN_KEY)

    async def save_anon_id(self, value: str) -> None:
        if value:
            await self.put(ANON_ID_KEY, value)
            logger.info("X-Anon-Id saved")

    async def get_anon_id(self) -> Optional[str]:
        return await self.get_value(ANON_ID_KEY)
