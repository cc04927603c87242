"""Shared fixtures: temporary state database, stores and wired orchestrators."""
import pytest
import pytest_asyncio

from favsync.auth.session_store import SessionStore
from favsync.auth.vault import CredentialVault
from favsync.config import config
from favsync.jobs.runner import build_orchestrator
from favsync.store.favorites import FavoriteStore
from favsync.store.state import StateDB
from tests.helpers import BASE_URL, FakeUpstream


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep tests independent from any local .env."""
    monkeypatch.setattr(config, "BASE_URL", BASE_URL)
    monkeypatch.setattr(config, "USER_ID", None)
    monkeypatch.setattr(config, "INITIAL_COOKIES", None)
    monkeypatch.setattr(config, "CSRF_TOKEN", None)
    monkeypatch.setattr(config, "ANON_ID", None)
    monkeypatch.setattr(config, "AUTO_LOGIN", True)
    monkeypatch.setattr(config, "ENRICH_HTML_FALLBACK", True)
    monkeypatch.setattr(config, "ENRICH_MAX_ITEMS", 0)
    monkeypatch.setattr(config, "ENRICH_BATCH_SIZE", 20)
    monkeypatch.setattr(config, "RATE_LIMIT_RETRIES", 2)
    monkeypatch.setattr(config, "TOKEN_SAFETY_MARGIN", 300)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state.db"


@pytest_asyncio.fixture
async def state_db(db_path):
    db = StateDB(db_path)
    await db.initialize()
    return db


@pytest_asyncio.fixture
async def session_store(state_db, db_path):
    return SessionStore(db_path, default_domain="vinted.fr")


@pytest_asyncio.fixture
async def vault(state_db, db_path):
    return CredentialVault(db_path)


@pytest_asyncio.fixture
async def favorite_store(state_db, db_path):
    return FavoriteStore(db_path)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest_asyncio.fixture
async def make_orchestrator(db_path, tmp_path):
    """Factory for fully wired orchestrators talking to a FakeUpstream."""
    created = []

    async def factory(fake: FakeUpstream, **overrides):
        options = {
            "db_path": db_path,
            "transport": fake.transport,
            "metrics_file": tmp_path / "metrics.jsonl",
            "rate_per_second": 0,
            "rate_limit_base_delay": 0,
            "enrich_delay": 0,
            "enrich_batch_pause": 0,
        }
        options.update(overrides)
        orchestrator = build_orchestrator(**options)
        await orchestrator.initialize()
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        task = orchestrator.enrichment_task
        if task is not None and not task.done():
            task.cancel()
        await orchestrator.close()
