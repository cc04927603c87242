"""Sync orchestration: session, pagination, reconciliation, background enrichment."""
import asyncio
import enum
import logging
from pathlib import Path
from typing import Iterable, Optional

import httpx
from pydantic import ValidationError

from favsync.auth.login_agent import ExternalLoginAgent
from favsync.auth.session import SessionManager
from favsync.auth.session_store import SessionStore
from favsync.auth.tokens import TokenLifecycleManager
from favsync.auth.vault import CredentialVault
from favsync.config import STATE_DB, config
from favsync.errors import AuthExpiredError, FavSyncError, ParseError
from favsync.fetch.client import UpstreamClient, create_http_client
from favsync.fetch.pages import FavoritesPageFetcher
from favsync.jobs.enrichment import EnrichmentPipeline
from favsync.jobs.metrics_exporter import MetricsExporter
from favsync.jobs.reconcile import reconcile, reconcile_extension
from favsync.parse.models import ExtensionPayload, FavoriteRecord, SyncResult
from favsync.parse.normalizer import normalize_listing_item
from favsync.store.dev_storage import DevStorage
from favsync.store.favorites import FavoriteStore
from favsync.store.state import StateDB

logger = logging.getLogger(__name__)


class SyncState(str, enum.Enum):
    IDLE = "idle"
    ENSURING_SESSION = "ensuring_session"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    ENRICHMENT_QUEUED = "enrichment_queued"
    DONE = "done"


class SyncOrchestrator:
    """Runs one sync at a time and hands leftovers to the enrichment pipeline."""

    def __init__(
        self,
        state_db: StateDB,
        session: SessionManager,
        client: UpstreamClient,
        store: FavoriteStore,
        enrichment: EnrichmentPipeline,
        metrics: Optional[MetricsExporter] = None,
        per_page: Optional[int] = None,
        enrichment_enabled: bool = True,
    ):
        self.state_db = state_db
        self.session = session
        self.client = client
        self.store = store
        self.enrichment = enrichment
        self.metrics = metrics
        self.per_page = per_page or config.PER_PAGE
        self.enrichment_enabled = enrichment_enabled
        self.state = SyncState.IDLE
        self._enrichment_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def enrichment_task(self) -> Optional[asyncio.Task]:
        return self._enrichment_task

    async def initialize(self) -> None:
        """Create tables and load session material given through the environment."""
        await self.state_db.initialize()
        store = self.session.store
        if config.INITIAL_COOKIES and not await store.has_valid_session():
            await store.load_raw(config.INITIAL_COOKIES)
        if config.CSRF_TOKEN and not await store.get_csrf_token():
            await store.save_csrf_token(config.CSRF_TOKEN)
        if config.ANON_ID and not await store.get_anon_id():
            await store.save_anon_id(config.ANON_ID)

    async def close(self) -> None:
        await self.client.http.aclose()

    async def sync(self) -> SyncResult:
        """Mirror the upstream favorites. Never raises for expected failures.

        `state` stays at DONE or ENRICHMENT_QUEUED afterwards; queued goes back
        to IDLE once the enrichment task ends, and failures reset it at once.
        """
        try:
            result = await self._sync()
        except FavSyncError as e:
            logger.error(f"Sync failed: {e}")
            result = SyncResult(success=False, message=f"Sync failed: {e}", error=type(e).__name__)
            self.state = SyncState.IDLE
        except Exception:
            self.state = SyncState.IDLE
            raise

        if self.metrics is not None:
            await self.metrics.export("sync", **result.model_dump())
        return result

    async def _sync(self) -> SyncResult:
        self.state = SyncState.ENSURING_SESSION
        await self.session.ensure_session()
        user_id = await self.session.resolve_user_id()

        self.state = SyncState.FETCHING
        fetcher = FavoritesPageFetcher(self.client, user_id, self.per_page, tokens=self.session.tokens)
        try:
            raw_items = await fetcher.fetch_all()
        except AuthExpiredError as e:
            logger.warning(f"Auth failed during fetch ({e}), forcing login and restarting from page 1")
            if not await self.session.force_login():
                raise
            raw_items = await fetcher.fetch_all()

        self.state = SyncState.RECONCILING
        outcome = await reconcile(self.store, raw_items)
        total = await self.store.count()

        if self.enrichment_enabled and await self.store.list_needing_enrichment():
            self.state = SyncState.ENRICHMENT_QUEUED
            self.schedule_enrichment()
        else:
            self.state = SyncState.DONE

        message = f"Synced {outcome.seen} favorites ({outcome.new_count} new, {total} total)"
        logger.info(message)
        return SyncResult(
            success=True,
            message=message,
            new_count=outcome.new_count,
            total_count=total,
        )

    async def import_payload(self, payload: dict) -> SyncResult:
        """Store favorites and cookies pushed by the browser extension.

        Uses the same merge rules and ordering as a sync, then queues enrichment.
        """
        try:
            data = ExtensionPayload.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Invalid extension payload: {e}")
            result = SyncResult(
                success=False,
                message=f"Import failed: invalid payload ({e.error_count()} errors)",
                error=ParseError.__name__,
            )
        else:
            logger.info(
                f"Importing {len(data.favorites)} favorites and {len(data.cookies)} cookies from extension"
            )
            if data.cookies:
                await self.session.store.ingest_browser_cookies(data.cookies)
            outcome = await reconcile_extension(self.store, data.favorites)
            total = await self.store.count()
            if self.enrichment_enabled and outcome.seen and await self.store.list_needing_enrichment():
                self.schedule_enrichment()
            message = f"Imported {outcome.seen} favorites ({outcome.new_count} new, {total} total)"
            logger.info(message)
            result = SyncResult(
                success=True, message=message, new_count=outcome.new_count, total_count=total
            )

        if self.metrics is not None:
            await self.metrics.export("import", **result.model_dump())
        return result

    def schedule_enrichment(
        self, records: Optional[Iterable[FavoriteRecord]] = None
    ) -> Optional[asyncio.Task]:
        """Start enrichment in the background unless a previous run is still going."""
        if self._enrichment_task is not None and not self._enrichment_task.done():
            logger.info("Enrichment already scheduled, not starting another")
            return None
        self._enrichment_task = asyncio.create_task(self.enrichment.run(records))
        self._enrichment_task.add_done_callback(_log_task_failure)
        self._enrichment_task.add_done_callback(self._on_enrichment_done)
        logger.info("Enrichment scheduled in background")
        return self._enrichment_task

    def _on_enrichment_done(self, task: asyncio.Task) -> None:
        if self.state == SyncState.ENRICHMENT_QUEUED:
            self.state = SyncState.IDLE

    async def wait_for_enrichment(self):
        if self._enrichment_task is None:
            return None
        return await self._enrichment_task

    async def preview_page(self, page: int = 1) -> list[FavoriteRecord]:
        """Fetch and normalize one listing page without saving anything."""
        await self.session.ensure_session()
        user_id = await self.session.resolve_user_id()
        fetcher = FavoritesPageFetcher(self.client, user_id, self.per_page, tokens=self.session.tokens)
        records = []
        for raw in await fetcher.fetch_page(page):
            try:
                records.append(normalize_listing_item(raw))
            except ParseError as e:
                logger.warning(f"Skipping item in preview: {e}")
        return records

    async def status(self) -> dict:
        """Session, credential and store overview."""
        store = self.session.store
        stats = await self.state_db.get_stats()
        credential = await self.session.vault.get_active()
        return {
            "session_valid": await store.has_valid_session(),
            "access_token_expired": await self.session.tokens.is_expired(),
            "has_credentials": credential is not None,
            "credential_email": credential.email if credential else None,
            "last_refresh_at": credential.last_refresh_at if credential else None,
            "favorites": stats["favorites"],
            "needing_enrichment": stats["needing_enrichment"],
            "enrichment_running": self.enrichment.running,
        }


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        logger.warning("Enrichment task cancelled")
    elif task.exception() is not None:
        logger.error(f"Enrichment task crashed: {task.exception()}")


def build_orchestrator(
    db_path: Optional[Path] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    login_agent: Optional[ExternalLoginAgent] = None,
    dev_mode: bool = False,
    metrics_file: Optional[Path] = None,
    auto_login: Optional[bool] = None,
    enrichment_enabled: bool = True,
    rate_per_second: Optional[float] = None,
    rate_limit_base_delay: Optional[float] = None,
    enrich_delay: Optional[float] = None,
    enrich_batch_pause: Optional[float] = None,
    per_page: Optional[int] = None,
) -> SyncOrchestrator:
    """Wire every component from config; arguments override for the CLI and tests."""
    db_path = db_path or STATE_DB
    http = create_http_client(transport)

    store = SessionStore(db_path)
    vault = CredentialVault(db_path)
    tokens = TokenLifecycleManager(store, http)
    agent = login_agent or ExternalLoginAgent(vault=vault)
    if agent.vault is None:
        agent.vault = vault
    session = SessionManager(store, vault, tokens, agent, auto_login=auto_login)

    client = UpstreamClient(
        http,
        store,
        session,
        rate_per_second=rate_per_second,
        base_delay=rate_limit_base_delay,
    )
    favorites = FavoriteStore(db_path)
    metrics = MetricsExporter(metrics_file)
    enrichment = EnrichmentPipeline(
        favorites,
        client,
        tokens,
        delay=enrich_delay,
        batch_pause=enrich_batch_pause,
        metrics=metrics,
        dev_storage=DevStorage() if dev_mode else None,
    )
    return SyncOrchestrator(
        StateDB(db_path),
        session,
        client,
        favorites,
        enrichment,
        metrics=metrics,
        per_page=per_page,
        enrichment_enabled=enrichment_enabled,
    )
