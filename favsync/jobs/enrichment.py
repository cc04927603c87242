"""Background backfill of category, gender and listed date."""
import asyncio
import logging
from typing import Iterable, Optional

import aiosqlite

from favsync.auth.tokens import TokenLifecycleManager
from favsync.config import config
from favsync.errors import AuthExpiredError, RateLimitedError, UpstreamError
from favsync.fetch.client import HTML_ACCEPT, UpstreamClient
from favsync.fetch.endpoints import item_detail_path, item_page_url
from favsync.fetch.outcomes import AuthExpired, Fatal, NotFound, RateLimited, Success
from favsync.jobs.metrics_exporter import MetricsExporter
from favsync.jobs.reconcile import merge_details
from favsync.jobs.run_control import EnrichmentJobState
from favsync.parse.html_parser import parse_item_html
from favsync.parse.models import FavoriteRecord, ItemDetails
from favsync.parse.normalizer import normalize_item_detail
from favsync.store.dev_storage import DevStorage
from favsync.store.favorites import FavoriteStore

logger = logging.getLogger(__name__)


class _Blocked(Exception):
    """JSON detail refused; the HTML page may still be served."""


class EnrichmentPipeline:
    """Fetches item details one at a time, in batches, and fills missing fields.

    Only one run is active per instance. Exhausting the 429 backoff stops the
    whole run; 404s and other per-item failures are counted and skipped.
    """

    def __init__(
        self,
        store: FavoriteStore,
        client: UpstreamClient,
        tokens: TokenLifecycleManager,
        batch_size: Optional[int] = None,
        delay: Optional[float] = None,
        batch_pause: Optional[float] = None,
        max_items: Optional[int] = None,
        html_fallback: Optional[bool] = None,
        metrics: Optional[MetricsExporter] = None,
        dev_storage: Optional[DevStorage] = None,
    ):
        self.store = store
        self.client = client
        self.tokens = tokens
        self.batch_size = batch_size or config.ENRICH_BATCH_SIZE
        self.delay = config.ENRICH_DELAY if delay is None else delay
        self.batch_pause = config.ENRICH_BATCH_PAUSE if batch_pause is None else batch_pause
        self.max_items = config.ENRICH_MAX_ITEMS if max_items is None else max_items
        self.html_fallback = config.ENRICH_HTML_FALLBACK if html_fallback is None else html_fallback
        self.metrics = metrics
        self.dev_storage = dev_storage
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self, records: Optional[Iterable[FavoriteRecord]] = None) -> Optional[EnrichmentJobState]:
        """Enrich records needing it (all of them, or only those given)."""
        if self._lock.locked():
            logger.warning("Enrichment already running, ignoring new request")
            return None

        async with self._lock:
            scope = {record.external_id for record in records} if records is not None else None
            state = EnrichmentJobState(batch_size=self.batch_size, max_items=self.max_items)
            logger.info("Starting enrichment run")

            while not state.aborted:
                batch = await self._next_batch(state, scope)
                if not batch:
                    break
                if state.batch_number > 0 and self.batch_pause > 0:
                    logger.info(f"Pausing {self.batch_pause}s before next batch")
                    await asyncio.sleep(self.batch_pause)

                state.start_batch([record.external_id for record in batch])
                logger.info(
                    f"Batch {state.batch_number}: items {state.batch_start + 1}-{state.batch_end}"
                )
                for index, record in enumerate(batch):
                    if index > 0 and self.delay > 0:
                        await asyncio.sleep(self.delay)
                    state.advance(record.external_id)
                    await self._enrich_one(record, state)
                    if state.aborted:
                        break

            state.finish()
            summary = state.get_summary()
            logger.info(f"Enrichment finished: {summary}")
            if self.metrics is not None:
                await self.metrics.export("enrichment", **summary)
            return state

    async def _next_batch(
        self, state: EnrichmentJobState, scope: Optional[set[str]]
    ) -> list[FavoriteRecord]:
        pending = [
            record
            for record in await self.store.list_needing_enrichment()
            if record.external_id not in state.attempted
            and (scope is None or record.external_id in scope)
        ]
        size = self.batch_size
        budget = state.remaining_budget()
        if budget is not None:
            size = min(size, budget)
        return pending[:size]

    async def _enrich_one(self, record: FavoriteRecord, state: EnrichmentJobState) -> None:
        external_id = record.external_id
        try:
            if not await self.tokens.ensure_valid():
                logger.debug("Token not refreshed before detail fetch, continuing")
            details = await self.fetch_details(external_id)
        except RateLimitedError as e:
            state.abort(f"rate limited on item {external_id}: {e}")
            return
        except Exception as e:
            logger.error(f"Failed to enrich item {external_id}: {e}")
            state.record_error()
            return

        if details is None:
            logger.info(f"Item {external_id} not found, skipping")
            state.record_not_found()
            return

        # A sync may have rewritten the row since the batch started
        try:
            current = await self.store.find_by_external_id(external_id) or record
            filled = merge_details(current, details)
            if filled:
                await self.store.fill_missing(external_id, {name: getattr(current, name) for name in filled})
        except aiosqlite.Error as e:
            logger.error(f"Failed to store details for item {external_id}: {e}")
            state.record_error()
            return

        if not filled:
            logger.info(f"Nothing new resolved for item {external_id} (source: {details.source})")
            state.record_unresolved()
            return

        state.record_enriched()
        logger.info(
            f"Enriched item {external_id} from {details.source}: "
            f"category={current.category}, gender={current.gender}"
        )

    async def fetch_details(self, external_id: str) -> Optional[ItemDetails]:
        """Details for one item, or None when the item no longer exists."""
        try:
            return await self._fetch_json_details(external_id)
        except _Blocked as e:
            if not self.html_fallback:
                raise UpstreamError(f"Detail blocked for item {external_id}: {e}") from e
            logger.info(f"Detail blocked for item {external_id} ({e}), trying HTML page")
            return await self._fetch_html_details(external_id)

    async def _fetch_json_details(self, external_id: str) -> Optional[ItemDetails]:
        outcome = await self.client.get_json_with_retries(
            item_detail_path(external_id),
            referer=item_page_url(external_id, self.client.base_url),
        )

        if isinstance(outcome, NotFound):
            return None
        if isinstance(outcome, RateLimited):
            raise RateLimitedError(f"Rate limited fetching item {external_id}")
        if isinstance(outcome, AuthExpired):
            if outcome.status == 403:
                raise _Blocked("403")
            raise AuthExpiredError(f"Auth expired fetching item {external_id}", outcome.status)
        if isinstance(outcome, Fatal):
            raise _Blocked(f"status {outcome.status}")
        if not isinstance(outcome, Success):
            raise UpstreamError(f"Unhandled outcome for item {external_id}: {outcome!r}")

        try:
            body = outcome.json()
        except ValueError as e:
            raise _Blocked("non-JSON body") from e

        details = normalize_item_detail(body)
        if details is None:
            logger.warning(f"Unrecognized detail shape for item {external_id}, treating as not found")
            return None
        if details.missing and self.dev_storage is not None:
            self.dev_storage.save_unresolved(external_id, details.missing, payload=body)
        return details

    async def _fetch_html_details(self, external_id: str) -> Optional[ItemDetails]:
        outcome = await self.client.with_rate_limit_backoff(
            item_page_url(external_id, self.client.base_url), accept=HTML_ACCEPT
        )
        if isinstance(outcome, NotFound):
            return None
        if isinstance(outcome, RateLimited):
            raise RateLimitedError(f"Rate limited fetching page of item {external_id}")
        if not isinstance(outcome, Success):
            raise UpstreamError(
                f"Item page {external_id} failed: {outcome!r}",
                status_code=getattr(outcome, "status", None),
            )

        details = parse_item_html(outcome.body, external_id)
        if details.missing and self.dev_storage is not None:
            self.dev_storage.save_unresolved(external_id, details.missing, html=outcome.body)
        return details
