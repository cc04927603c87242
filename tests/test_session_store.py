"""Tests for the persistent cookie jar."""
from datetime import datetime, timedelta, timezone

import pytest

from favsync.auth.session_store import ANON_ID_KEY, CSRF_TOKEN_KEY, FAR_FUTURE, parse_set_cookie
from favsync.parse.models import BrowserCookie


@pytest.mark.asyncio
async def test_put_upserts_by_name(session_store):
    await session_store.put("access_token_web", "first")
    await session_store.put("access_token_web", "second")

    token = await session_store.get("access_token_web")
    assert token.value == "second"
    assert token.domain == "vinted.fr"
    assert len(await session_store.all_active()) == 1


@pytest.mark.asyncio
async def test_build_header_skips_expired_inactive_and_reserved(session_store):
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    await session_store.put("_vinted_fr_session", "sess")
    await session_store.put("old", "gone", expires_at=past)
    await session_store.put("banner", "x")
    await session_store.deactivate("banner")
    await session_store.save_csrf_token("csrf-value")
    await session_store.save_anon_id("anon-value")

    header = await session_store.build_header()

    assert header == "_vinted_fr_session=sess"


@pytest.mark.asyncio
async def test_has_valid_session(session_store):
    assert await session_store.has_valid_session() is False

    await session_store.put("v_udt", "tracking")
    assert await session_store.has_valid_session() is False

    await session_store.put("access_token_web", "token")
    assert await session_store.has_valid_session() is True

    await session_store.deactivate_all()
    assert await session_store.has_valid_session() is False


@pytest.mark.asyncio
async def test_put_reactivates_deactivated_token(session_store):
    await session_store.put("_vinted_fr_session", "old")
    await session_store.deactivate_all()
    await session_store.put("_vinted_fr_session", "new")

    assert await session_store.get_value("_vinted_fr_session") == "new"


def test_parse_set_cookie_attributes():
    """Test domain and max-age handling."""
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    token = parse_set_cookie(
        "access_token_web=abc.def; Domain=.vinted.fr; Path=/; Max-Age=7200; Secure; HttpOnly",
        "fallback.example",
        now=now,
    )
    assert token.name == "access_token_web"
    assert token.value == "abc.def"
    assert token.domain == "vinted.fr"
    assert token.expires_at == now + timedelta(seconds=7200)


def test_parse_set_cookie_without_max_age_has_no_expiry():
    token = parse_set_cookie("anon_id=123; Path=/", "vinted.fr")
    assert token.domain == "vinted.fr"
    assert token.expires_at is None


def test_parse_set_cookie_clamps_huge_max_age():
    token = parse_set_cookie("a=b; Max-Age=315360000000", "vinted.fr")
    assert token.expires_at == FAR_FUTURE
    assert token.is_expired() is False

    token = parse_set_cookie("a=b; Max-Age=-315360000000", "vinted.fr")
    assert token.is_expired() is True


@pytest.mark.asyncio
async def test_huge_max_age_round_trips_through_store(session_store):
    await session_store.ingest_set_cookie("_vinted_fr_session=long; Max-Age=315360000000")

    assert await session_store.get_value("_vinted_fr_session") == "long"
    assert await session_store.has_valid_session() is True


def test_parse_set_cookie_rejects_garbage():
    assert parse_set_cookie("", "vinted.fr") is None
    assert parse_set_cookie("no-equals-sign", "vinted.fr") is None


@pytest.mark.asyncio
async def test_ingest_response_stores_every_cookie(session_store):
    count = await session_store.ingest_response([
        "access_token_web=aaa; Max-Age=3600",
        "refresh_token_web=bbb; Path=/",
        "broken",
    ])

    assert count == 2
    assert await session_store.get_value("access_token_web") == "aaa"
    assert await session_store.get_value("refresh_token_web") == "bbb"


@pytest.mark.asyncio
async def test_expired_max_age_is_not_usable(session_store):
    await session_store.ingest_set_cookie("_vinted_fr_session=gone; Max-Age=-1")

    assert await session_store.get_value("_vinted_fr_session") is None
    assert await session_store.has_valid_session() is False


@pytest.mark.asyncio
async def test_load_raw_cookie_string(session_store):
    count = await session_store.load_raw("_vinted_fr_session=s1; access_token_web=t1 ; junk")

    assert count == 2
    assert await session_store.build_header() == "_vinted_fr_session=s1; access_token_web=t1"


@pytest.mark.asyncio
async def test_reserved_header_values(session_store):
    assert await session_store.get_csrf_token() is None

    await session_store.save_csrf_token("csrf-1")
    await session_store.save_anon_id("anon-1")
    assert await session_store.get_csrf_token() == "csrf-1"
    assert await session_store.get_anon_id() == "anon-1"

    await session_store.deactivate(CSRF_TOKEN_KEY)
    assert await session_store.get_csrf_token() is None
    assert (await session_store.get(ANON_ID_KEY)).is_active is True


@pytest.mark.asyncio
async def test_ingest_browser_cookies_converts_expiration(session_store):
    expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)
    cookies = [
        BrowserCookie(name="_vinted_fr_session", value="s", domain=".vinted.fr", expirationDate=expiry.timestamp()),
        BrowserCookie(name="anon_id", value="x", expirationDate=0),
        BrowserCookie(name="far", value="y", expirationDate=1e20),
    ]

    assert await session_store.ingest_browser_cookies(cookies) == 3

    session = await session_store.get("_vinted_fr_session")
    assert (session.domain, session.expires_at) == ("vinted.fr", expiry)
    assert (await session_store.get("anon_id")).expires_at is None
    assert (await session_store.get("far")).expires_at == FAR_FUTURE
