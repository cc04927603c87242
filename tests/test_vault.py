"""Tests for credential storage."""
import base64
from datetime import datetime, timezone

import pytest


@pytest.mark.asyncio
async def test_save_encodes_secret(vault):
    credential = await vault.save("me@example.com", "hunter2", user_id="42")

    assert credential.id is not None
    assert credential.encoded_secret == base64.b64encode(b"hunter2").decode()
    assert credential.secret == "hunter2"


@pytest.mark.asyncio
async def test_only_latest_credential_is_active(vault):
    await vault.save("old@example.com", "a")
    await vault.save("new@example.com", "b", user_id="7")

    active = await vault.get_active()
    assert active.email == "new@example.com"
    assert active.user_id == "7"
    assert active.secret == "b"


@pytest.mark.asyncio
async def test_mark_refreshed(vault):
    credential = await vault.save("me@example.com", "pw")
    when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    await vault.mark_refreshed(credential.id, when)

    assert (await vault.get_active()).last_refresh_at == when


@pytest.mark.asyncio
async def test_delete_all(vault):
    await vault.save("me@example.com", "pw")
    assert await vault.has_credentials() is True

    await vault.delete_all()

    assert await vault.get_active() is None
    assert await vault.has_credentials() is False
