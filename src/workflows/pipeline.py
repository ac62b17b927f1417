"""
Background entry points: per-event processing, failed-event retries and
the period rollup cron.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.errors import NotFound, SummaryGenerationError, Unauthorized
from core.periods import Granularity, now_ms, previous_period_start
from services.database import Database
from services.scheduler import next_run_time, seconds_until
from workflows.digest import DigestGenerator, GeneratedDigest
from workflows.summary import SummaryAggregator

logger = logging.getLogger(__name__)


class EventPipeline:
    """
    Event -> digest -> summary merges, run on behalf of the resource owner.
    """

    def __init__(self, database: Database, digests: DigestGenerator, summaries: SummaryAggregator):
        self.db = database
        self.digests = digests
        self.summaries = summaries

    async def process_event(self, event_id: str) -> GeneratedDigest:
        event = await self.db.get_event(event_id)
        if event is None:
            raise NotFound(f"Event not found: {event_id}")

        resource = await self.db.get_resource(event.resource_id)
        if resource is None:
            await self.db.update_event_status(event_id, "failed", error_message="Resource not found")
            raise NotFound(f"Resource not found: {event.resource_id}")

        try:
            result = await self.digests.generate(event_id, resource.id, resource.owner_tenant_id)
        except (Unauthorized, NotFound) as e:
            await self.db.update_event_status(event_id, "failed", error_message=str(e))
            raise

        try:
            await self.summaries.incorporate_digest(
                resource.id,
                result.digest.id,
                result.digest.created_at,
                caller_tenant_id=resource.owner_tenant_id,
            )
        except SummaryGenerationError as e:
            # The digest is stored; the next refresh or rollup picks it up
            logger.error(str(e), extra={"event_id": event_id, "resource_id": resource.id})

        return result

    async def retry_failed_events(self, limit: int = 50) -> int:
        """Re-run failed events. Returns how many now have a digest."""
        events = await self.db.list_events_by_status("failed", limit=limit)
        logger.info(f"Retrying {len(events)} failed events")

        recovered = 0
        for event in events:
            try:
                await self.process_event(event.id)
                recovered += 1
            except Exception as e:
                logger.error(f"Retry failed for event {event.id}: {e}", extra={"event_id": event.id})
        return recovered


@dataclass
class RollupReport:
    generated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


class PeriodRollupJob:
    """
    Generates the summary of the most recently closed period for every
    active resource.
    """

    def __init__(self, database: Database, summaries: SummaryAggregator):
        self.db = database
        self.summaries = summaries

    async def run(self, granularity: Granularity, now: Optional[int] = None) -> RollupReport:
        now = now if now is not None else now_ms()
        start = previous_period_start(now, granularity)
        report = RollupReport()

        for resource in await self.db.list_active_resources():
            context = {"resource_id": resource.id, "granularity": granularity, "period_start": start}
            try:
                existing = await self.db.get_summary(resource.id, granularity, start)
                if existing is not None and not existing.is_streaming:
                    report.skipped += 1
                    continue

                summary = await self.summaries.generate_for_period(
                    resource.id, granularity, start, caller_tenant_id=resource.owner_tenant_id
                )
                if summary is None or summary.is_streaming:
                    report.skipped += 1
                else:
                    report.generated += 1
            except Exception as e:
                logger.exception(f"Rollup failed for {resource.full_name}: {e}", extra=context)
                report.errors.append(f"{resource.full_name}: {e}")

        logger.info(
            f"{granularity} rollup done: {report.generated} generated, "
            f"{report.skipped} skipped, {len(report.errors)} errors"
        )
        return report

    async def run_forever(self, granularity: Granularity, hour: int = 0) -> None:
        while True:
            run_at = next_run_time(granularity, hour=hour)
            logger.info(f"Next {granularity} rollup at {run_at.isoformat()}")
            await asyncio.sleep(seconds_until(run_at))
            await self.run(granularity)
