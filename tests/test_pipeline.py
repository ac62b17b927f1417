import pytest

from conftest import OTHER_TENANT, TENANT, add_digest, add_event, ms
from core.entities import ResourceRecord
from core.errors import FatalProviderError, NotFound
from core.periods import now_ms
from core.schemas import SummarySchema
from services.cache import ContentCache, InMemoryCacheStore
from workflows.digest import DigestGenerator
from workflows.pipeline import EventPipeline, PeriodRollupJob
from workflows.summary import SummaryAggregator


@pytest.fixture
def summaries(db, llm, retry):
    return SummaryAggregator(db, llm, retry)


@pytest.fixture
def pipeline(db, llm, retry, summaries):
    cache = ContentCache(InMemoryCacheStore(), "digest", ttl_seconds=3600)
    return EventPipeline(db, DigestGenerator(db, llm, cache, retry), summaries)


async def test_process_event_generates_digest(db, resource, pipeline):
    event = await add_event(db)

    result = await pipeline.process_event(event.id)

    assert result.digest.event_id == event.id
    assert (await db.get_event(event.id)).status == "completed"


async def test_process_event_merges_into_open_summary(db, resource, pipeline, summaries):
    await add_digest(db, now_ms())
    before = await summaries.generate_for_period(resource.id, "daily", now_ms(), caller_tenant_id=TENANT)
    event = await add_event(db)

    result = await pipeline.process_event(event.id)

    after = await db.get_summary(resource.id, "daily", before.period_start)
    assert result.digest.id in after.included_digest_ids


async def test_merge_failure_does_not_fail_the_event(db, resource, pipeline, summaries, llm):
    await add_digest(db, now_ms())
    await summaries.generate_for_period(resource.id, "daily", now_ms(), caller_tenant_id=TENANT)
    llm.queue(SummarySchema, FatalProviderError("malformed"))
    event = await add_event(db)

    result = await pipeline.process_event(event.id)

    assert result.digest is not None
    assert (await db.get_event(event.id)).status == "completed"


async def test_missing_event(pipeline):
    with pytest.raises(NotFound):
        await pipeline.process_event("missing")


async def test_retry_failed_events(db, resource, pipeline):
    failed = await add_event(db, status="failed")
    await add_event(db, status="completed")

    assert await pipeline.retry_failed_events() == 1
    assert (await db.get_event(failed.id)).status == "completed"


async def test_rollup_generates_previous_period_and_skips_empty(db, resource, summaries):
    await db.add_resource(ResourceRecord(id="res-2", owner_tenant_id=OTHER_TENANT, full_name="other/quiet"))
    await add_digest(db, ms(2024, 3, 6, 10))
    job = PeriodRollupJob(db, summaries)
    now = ms(2024, 3, 7, 0, 5)

    report = await job.run("daily", now)
    assert (report.generated, report.skipped, report.errors) == (1, 1, [])
    assert (await db.get_summary(resource.id, "daily", ms(2024, 3, 6))).state == "settled"

    again = await job.run("daily", now)
    assert (again.generated, again.skipped) == (0, 2)


async def test_rollup_regenerates_abandoned_placeholder(db, resource, llm, retry):
    await add_digest(db, ms(2024, 3, 6, 10))
    await db.create_streaming_summary(resource.id, "daily", ms(2024, 3, 6), [])
    summaries = SummaryAggregator(db, llm, retry, stale_streaming_ms=1_000, wall_clock=lambda: now_ms() + 60_000)

    report = await PeriodRollupJob(db, summaries).run("daily", ms(2024, 3, 7, 0, 5))

    assert report.generated == 1
    assert (await db.get_summary(resource.id, "daily", ms(2024, 3, 6))).state == "settled"


async def test_rollup_collects_per_resource_errors(db, resource, summaries, llm):
    await add_digest(db, ms(2024, 3, 6, 10))
    llm.queue(SummarySchema, FatalProviderError("malformed"))

    report = await PeriodRollupJob(db, summaries).run("daily", ms(2024, 3, 7, 0, 5))

    assert report.generated == 0
    assert len(report.errors) == 1
    assert "acme/widgets" in report.errors[0]


async def test_inactive_resources_are_not_rolled_up(db, summaries):
    await db.add_resource(ResourceRecord(id="res-off", owner_tenant_id=TENANT, full_name="acme/old", is_active=False))
    await add_digest(db, ms(2024, 3, 6, 10), resource_id="res-off")

    report = await PeriodRollupJob(db, summaries).run("daily", ms(2024, 3, 7, 0, 5))

    assert (report.generated, report.skipped) == (0, 0)
