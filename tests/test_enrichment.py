"""Tests for the enrichment pipeline."""
import asyncio

import httpx
import orjson
import pytest
import pytest_asyncio

from favsync.auth.tokens import TokenLifecycleManager
from favsync.fetch.client import UpstreamClient
from favsync.jobs.enrichment import EnrichmentPipeline
from favsync.jobs.metrics_exporter import MetricsExporter
from favsync.jobs.reconcile import reconcile
from favsync.parse.models import FavoriteRecord
from tests.helpers import BASE_URL, detail_body, listing_item

ITEM_PAGE = """
<html><body>
<div itemtype="https://schema.org/BreadcrumbList">
  <a href="/">Accueil</a><a href="/hommes">Hommes</a><a href="/hommes/chemises">Chemises</a>
</div>
</body></html>
"""


def detail_path(item_id) -> str:
    return f"/api/v2/items/{item_id}"


@pytest_asyncio.fixture
async def make_pipeline(session_store, favorite_store, upstream, tmp_path):
    http = httpx.AsyncClient(transport=upstream.transport)
    client = UpstreamClient(http, session_store, base_url=BASE_URL, rate_per_second=0, retries=2, base_delay=0)
    tokens = TokenLifecycleManager(session_store, http, base_url=BASE_URL)

    def factory(**overrides):
        options = {
            "batch_size": 20,
            "delay": 0,
            "batch_pause": 0,
            "max_items": 0,
            "html_fallback": True,
            "metrics": MetricsExporter(tmp_path / "metrics.jsonl"),
        }
        options.update(overrides)
        return EnrichmentPipeline(favorite_store, client, tokens, **options)

    yield factory
    await http.aclose()


async def seed(store, *ids, **fields):
    for position, item_id in enumerate(ids):
        await store.save(FavoriteRecord(external_id=item_id, title=f"Item {item_id}", sort_order=position, **fields))


@pytest.mark.asyncio
async def test_resolves_category_and_gender(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A")
    upstream.add(detail_path("A"), httpx.Response(200, json=detail_body(
        "A",
        catalog={"title": "Robes"},
        catalog_tree=[{"title": "Femmes"}, {"title": "Robes"}],
        created_at_ts=1700000000,
    )))

    state = await make_pipeline().run()

    assert state.enriched == 1
    record = await favorite_store.find_by_external_id("A")
    assert record.category == "Robes"
    assert record.gender == "Femme"
    assert record.listed_at is not None
    assert await favorite_store.list_needing_enrichment() == []


@pytest.mark.asyncio
async def test_not_found_leaves_record_unchanged(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A")
    before = await favorite_store.find_by_external_id("A")

    state = await make_pipeline().run()

    assert state.skipped_not_found == 1
    assert state.errored == 0
    after = await favorite_store.find_by_external_id("A")
    assert after == before


@pytest.mark.asyncio
async def test_unrecognized_detail_counts_as_not_found(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A")
    upstream.add(detail_path("A"), httpx.Response(200, json={"code": 0}))

    state = await make_pipeline().run()

    assert state.skipped_not_found == 1


@pytest.mark.asyncio
async def test_persistent_rate_limit_aborts_run(make_pipeline, favorite_store, upstream):
    """Three 429s in a row stop the whole run without raising."""
    await seed(favorite_store, "A", "B")
    upstream.add(detail_path("A"), httpx.Response(429))
    upstream.add(detail_path("B"), httpx.Response(200, json=detail_body("B", catalog_title="Robes")))

    state = await make_pipeline().run()

    assert state.aborted is True
    assert "rate limited" in state.abort_reason
    assert upstream.count(detail_path("A")) == 3
    assert upstream.count(detail_path("B")) == 0
    assert (await favorite_store.find_by_external_id("B")).category is None


@pytest.mark.asyncio
async def test_other_errors_are_counted_and_skipped(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A", "B")
    upstream.add(detail_path("A"), httpx.Response(500, text="boom"))
    upstream.add(detail_path("B"), httpx.Response(200, json=detail_body("B", catalog_title="Jupes", gender="women")))

    state = await make_pipeline(html_fallback=False).run()

    assert state.errored == 1
    assert state.enriched == 1
    assert state.aborted is False
    assert (await favorite_store.find_by_external_id("B")).gender == "Femme"


@pytest.mark.asyncio
async def test_timeout_is_counted_as_error(session_store, favorite_store, tmp_path):
    def slow(request):
        raise httpx.ReadTimeout("slow", request=request)

    await seed(favorite_store, "A")
    async with httpx.AsyncClient(transport=httpx.MockTransport(slow)) as http:
        client = UpstreamClient(http, session_store, base_url=BASE_URL, rate_per_second=0)
        tokens = TokenLifecycleManager(session_store, http, base_url=BASE_URL)
        pipeline = EnrichmentPipeline(favorite_store, client, tokens, delay=0, batch_pause=0)

        state = await pipeline.run()

    assert state.errored == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("blocked", [
    httpx.Response(403, text="forbidden"),
    httpx.Response(503, text="blocked"),
    httpx.Response(200, text="<html>challenge</html>"),
])
async def test_blocked_detail_falls_back_to_html(make_pipeline, favorite_store, upstream, blocked):
    await seed(favorite_store, "A")
    upstream.add(detail_path("A"), blocked)
    upstream.add("/items/A", httpx.Response(200, text=ITEM_PAGE))

    state = await make_pipeline().run()

    assert state.enriched == 1
    record = await favorite_store.find_by_external_id("A")
    assert record.category == "Chemises"
    assert record.gender == "Homme"


@pytest.mark.asyncio
async def test_existing_values_are_never_overwritten(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A", category="Robes")
    upstream.add(detail_path("A"), httpx.Response(200, json=detail_body("A", catalog_title="Jupes", gender="female")))

    await make_pipeline().run()

    record = await favorite_store.find_by_external_id("A")
    assert record.category == "Robes"
    assert record.gender == "Femme"


@pytest.mark.asyncio
async def test_unresolved_item_is_attempted_once(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A")
    upstream.add(detail_path("A"), httpx.Response(200, json=detail_body("A", title="Mystery")))

    state = await make_pipeline().run()

    assert state.unresolved == 1
    assert upstream.count(detail_path("A")) == 1


@pytest.mark.asyncio
async def test_batches_and_item_cap(make_pipeline, favorite_store, upstream):
    ids = [f"I{n}" for n in range(5)]
    await seed(favorite_store, *ids)
    for item_id in ids:
        upstream.add(detail_path(item_id), httpx.Response(200, json=detail_body(item_id, catalog_title="Sacs", gender="kids")))

    state = await make_pipeline(batch_size=2).run()
    assert state.batch_number == 3
    assert state.enriched == 5

    await seed(favorite_store, "J1", "J2", "J3")
    for item_id in ("J1", "J2", "J3"):
        upstream.add(detail_path(item_id), httpx.Response(200, json=detail_body(item_id, catalog_title="Sacs", gender="kids")))

    capped = await make_pipeline(batch_size=2, max_items=2).run()
    assert capped.processed == 2
    assert len(await favorite_store.list_needing_enrichment()) == 1


@pytest.mark.asyncio
async def test_run_limited_to_given_records(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A", "B")
    upstream.add(detail_path("B"), httpx.Response(200, json=detail_body("B", catalog_title="Robes", gender="F")))

    state = await make_pipeline().run([FavoriteRecord(external_id="B")])

    assert state.processed == 1
    assert upstream.count(detail_path("A")) == 0


@pytest.mark.asyncio
async def test_second_run_while_active_is_ignored(make_pipeline, favorite_store, upstream):
    await seed(favorite_store, "A")
    release = asyncio.Event()

    async def slow_detail(request):
        await release.wait()
        return httpx.Response(200, json=detail_body("A", catalog_title="Robes", gender="F"))

    upstream.add(detail_path("A"), slow_detail)
    pipeline = make_pipeline()

    first = asyncio.create_task(pipeline.run())
    while not upstream.requests:
        await asyncio.sleep(0.01)

    assert pipeline.running is True
    assert await pipeline.run() is None

    release.set()
    assert (await first).enriched == 1


@pytest.mark.asyncio
async def test_summary_written_to_metrics(make_pipeline, favorite_store, upstream, tmp_path):
    await seed(favorite_store, "A")

    await make_pipeline().run()

    lines = (tmp_path / "metrics.jsonl").read_text().splitlines()
    record = orjson.loads(lines[-1])
    assert record["event"] == "enrichment"
    assert record["skipped_not_found"] == 1


@pytest.mark.asyncio
async def test_concurrent_sync_values_survive_enrichment(make_pipeline, favorite_store, upstream):
    """A sync lands while the detail is in flight; its volatile values must stay."""
    await seed(favorite_store, "Z", "A", price=10.0)

    async def detail_during_sync(request):
        await reconcile(favorite_store, [listing_item("A", price="8", is_closed=True)])
        return httpx.Response(200, json=detail_body(
            "A", catalog_title="Robes", catalog_tree=[{"title": "Femmes"}, {"title": "Robes"}]
        ))

    upstream.add(detail_path("A"), detail_during_sync)
    upstream.add(detail_path("Z"), httpx.Response(404, json={"code": 404}))

    state = await make_pipeline().run()

    assert state.enriched == 1
    record = await favorite_store.find_by_external_id("A")
    assert (record.price, record.sold, record.sort_order) == (8.0, True, 0)
    assert (record.category, record.gender) == ("Robes", "Femme")


@pytest.mark.asyncio
async def test_fill_missing_only_touches_null_columns(favorite_store):
    await favorite_store.save(FavoriteRecord(external_id="A", price=12.0, category="Jupes"))

    await favorite_store.fill_missing("A", {"category": "Robes", "gender": "Femme"})

    record = await favorite_store.find_by_external_id("A")
    assert (record.category, record.gender, record.price) == ("Jupes", "Femme", 12.0)
    with pytest.raises(ValueError):
        await favorite_store.fill_missing("A", {"price = 0 --": 1})
