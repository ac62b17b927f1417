"""
Period summaries: full generation, streaming writes and incremental merges.

A summary is created once per (resource, granularity, period_start) as a
streaming placeholder, filled in with throttled partial writes, then
settled. After that it only changes through version-checked merges that
append digests to its included set.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from core.entities import Digest, ModelTier, ResourceRecord, Summary
from core.errors import MergeConflictError, StreamingStateError, SummaryGenerationError
from core.periods import GRANULARITIES, Granularity, contains, now_ms, period_end, period_start
from core.prompts import INCREMENTAL_UPDATE_SYSTEM_PROMPT, SUMMARY_SYSTEM_PROMPT
from core.schemas import SummarySchema
from processing.breakdown import compute_work_breakdown
from processing.prompt_builder import build_merge_prompt, build_summary_prompt
from processing.retry import RetryPolicy
from services.database import Database
from services.llm import StructuredLLMClient
from services.ownership import OwnershipGuard

logger = logging.getLogger(__name__)

MAX_MERGE_ATTEMPTS = 3
STREAMED_FIELDS = ("headline", "accomplishments", "key_features")


class StreamingSummaryWriter:
    """
    Empty -> Streaming -> Settled.

    open() moves Empty to Streaming by inserting the placeholder. Partial
    writes are throttled to one per interval and are only accepted while
    streaming; settle() is the single terminal write.
    """

    def __init__(
        self,
        database: Database,
        summary: Summary,
        interval_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = database
        self.summary = summary
        self.interval = interval_ms / 1000
        self.clock = clock
        self.settled = False
        self.writes = 0
        self._last_write: Optional[float] = None

    @classmethod
    async def open(
        cls,
        database: Database,
        resource_id: str,
        granularity: Granularity,
        start: int,
        digest_ids: List[str],
        **kwargs: Any,
    ) -> Optional["StreamingSummaryWriter"]:
        """
        Create the placeholder. None means another writer already owns
        this period.
        """
        summary = await database.create_streaming_summary(resource_id, granularity, start, digest_ids)
        if summary is None:
            return None
        return cls(database, summary, **kwargs)

    async def write_partial(self, fields: Dict[str, Any]) -> bool:
        """Returns True when the write reached the store, False when throttled."""
        if self.settled:
            raise StreamingStateError("Summary already settled")

        now = self.clock()
        if self._last_write is not None and now - self._last_write < self.interval:
            return False

        if not await self.db.update_streaming_summary(self.summary.id, fields):
            raise StreamingStateError(f"Summary {self.summary.id} is no longer streaming")
        self._last_write = now
        self.writes += 1
        return True

    async def settle(self, fields: Dict[str, Any]) -> Summary:
        if self.settled:
            raise StreamingStateError("Summary already settled")
        if not await self.db.settle_summary(self.summary.id, fields):
            raise StreamingStateError(f"Summary {self.summary.id} is no longer streaming")
        self.settled = True
        self.summary = await self.db.get_summary_by_id(self.summary.id)
        return self.summary

    async def abandon(self) -> None:
        """Remove the placeholder after a failed generation."""
        if not self.settled:
            await self.db.delete_streaming_summary(self.summary.id)


@dataclass
class SummaryStatus:
    summary: Optional[Summary]
    digest_count: int
    included_count: int

    @property
    def needs_generation(self) -> bool:
        return self.summary is None and self.digest_count > 0

    @property
    def needs_update(self) -> bool:
        return self.summary is not None and self.digest_count > self.included_count


def _partial_fields(partial: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name in STREAMED_FIELDS:
        value = partial.get(name)
        if name == "key_features":
            if isinstance(value, list):
                fields[name] = [str(v) for v in value]
        elif isinstance(value, str) and value:
            fields[name] = value
    return fields


def _final_fields(result: SummarySchema, digests: Sequence[Digest]) -> Dict[str, Any]:
    # Breakdown and count come from the digests, never from the model
    return {
        "headline": result.headline,
        "accomplishments": result.accomplishments,
        "key_features": list(result.key_features),
        "work_breakdown": compute_work_breakdown(digests),
        "total_items": len(digests),
        "included_digest_ids": [d.id for d in digests],
    }


class SummaryAggregator:
    def __init__(
        self,
        database: Database,
        llm: StructuredLLMClient,
        retry: RetryPolicy,
        write_interval_ms: int = 500,
        max_prompt_digests: int = 60,
        stale_streaming_ms: int = 240_000,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], int] = now_ms,
    ):
        self.db = database
        self.guard = OwnershipGuard(database)
        self.llm = llm
        self.retry = retry
        self.write_interval_ms = write_interval_ms
        self.max_prompt_digests = max_prompt_digests
        self.stale_streaming_ms = stale_streaming_ms
        self.clock = clock
        self.wall_clock = wall_clock
        self._locks: Dict[Tuple[str, str, int], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str, int], int] = {}

    @asynccontextmanager
    async def _period_lock(self, resource_id: str, granularity: str, start: int) -> AsyncIterator[None]:
        """Per-period lock, dropped once nobody holds or waits for it."""
        key = (resource_id, granularity, start)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def _is_stale(self, summary: Summary) -> bool:
        return summary.is_streaming and self.wall_clock() - summary.last_updated_at > self.stale_streaming_ms

    # ----------------------------
    # Full generation
    # ----------------------------
    async def generate_for_period(
        self,
        resource_id: str,
        granularity: Granularity,
        start: int,
        *,
        caller_tenant_id: str,
    ) -> Optional[Summary]:
        """
        Create the summary for one period, or return the one that already
        exists. Returns None when the period has no digests.
        """
        resource = await self.guard.verify(resource_id, caller_tenant_id)
        start = period_start(start, granularity)

        async with self._period_lock(resource_id, granularity, start):
            existing = await self.db.get_summary(resource_id, granularity, start)
            if existing is not None and self._is_stale(existing):
                logger.warning(
                    "Reclaiming abandoned streaming summary",
                    extra={"resource_id": resource_id, "granularity": granularity, "period_start": start},
                )
                await self.db.delete_streaming_summary(existing.id)
            elif existing is not None:
                return existing

            digests = await self.db.get_digests_in_range(resource_id, start, period_end(start, granularity))
            if not digests:
                logger.info(
                    "No digests in period, skipping summary",
                    extra={"resource_id": resource_id, "granularity": granularity, "period_start": start},
                )
                return None

            return await self._generate(resource, granularity, start, digests)

    async def _generate(
        self,
        resource: ResourceRecord,
        granularity: Granularity,
        start: int,
        digests: List[Digest],
    ) -> Summary:
        writer = await StreamingSummaryWriter.open(
            self.db,
            resource.id,
            granularity,
            start,
            [d.id for d in digests],
            interval_ms=self.write_interval_ms,
            clock=self.clock,
        )
        if writer is None:
            # Lost the insert race to another process
            return await self.db.get_summary(resource.id, granularity, start)

        context = {"resource_id": resource.id, "granularity": granularity, "period_start": start}
        prompt = build_summary_prompt(digests, granularity, start, self.max_prompt_digests)
        try:
            result = await self.retry.run(
                lambda: self._stream_into(writer, prompt, resource.model_tier),
                context=context,
            )
            summary = await writer.settle(_final_fields(result, digests))
        except Exception as e:
            logger.error(f"Summary generation failed: {e}", extra=context)
            raise
        finally:
            # Also runs on cancellation
            if not writer.settled:
                await writer.abandon()

        logger.info(
            f"Summary settled: {summary.headline} ({summary.total_items} items)",
            extra={**context, "partial_writes": writer.writes},
        )
        return summary

    async def _stream_into(
        self, writer: StreamingSummaryWriter, prompt: str, tier: ModelTier
    ) -> SummarySchema:
        last: Dict[str, Any] = {}
        async for partial in self.llm.stream(SummarySchema, SUMMARY_SYSTEM_PROMPT, prompt, tier=tier):
            last = partial
            fields = _partial_fields(partial)
            if fields:
                await writer.write_partial(fields)
        return SummarySchema.model_validate(last)

    # ----------------------------
    # Incremental merges
    # ----------------------------
    async def incorporate_digest(
        self,
        resource_id: str,
        digest_id: str,
        digest_created_at: int,
        *,
        caller_tenant_id: str,
        now: Optional[int] = None,
    ) -> List[Summary]:
        """
        Merge one new digest into every open, settled summary whose period
        contains it. Returns the summaries that changed.
        """
        resource = await self.guard.verify(resource_id, caller_tenant_id)
        now = now if now is not None else now_ms()

        updated: List[Summary] = []
        failures: Dict[str, Exception] = {}
        for granularity in GRANULARITIES:
            start = period_start(now, granularity)
            # Only the open period may change
            if not contains(start, granularity, digest_created_at):
                continue
            try:
                summary = await self._merge(resource, granularity, start, [digest_id])
                if summary is not None:
                    updated.append(summary)
            except Exception as e:
                logger.error(
                    f"Summary merge failed: {e}",
                    extra={"resource_id": resource_id, "granularity": granularity, "digest_id": digest_id},
                )
                failures[granularity] = e

        if failures:
            raise SummaryGenerationError(failures)
        return updated

    async def refresh_period(
        self,
        resource_id: str,
        granularity: Granularity,
        start: int,
        *,
        caller_tenant_id: str,
    ) -> Optional[Summary]:
        """
        Bring a summary up to date with every digest in its period, in one
        merge. Generates the summary if it does not exist yet.
        """
        resource = await self.guard.verify(resource_id, caller_tenant_id)
        start = period_start(start, granularity)

        if await self.db.get_summary(resource_id, granularity, start) is None:
            return await self.generate_for_period(
                resource_id, granularity, start, caller_tenant_id=caller_tenant_id
            )

        await self._merge(resource, granularity, start, None)
        return await self.db.get_summary(resource_id, granularity, start)

    async def _merge(
        self,
        resource: ResourceRecord,
        granularity: Granularity,
        start: int,
        digest_ids: Optional[List[str]],
    ) -> Optional[Summary]:
        """
        Append-if-absent under a version compare-and-swap. digest_ids=None
        means every digest in the period.
        """
        context = {"resource_id": resource.id, "granularity": granularity, "period_start": start}

        async with self._period_lock(resource.id, granularity, start):
            for attempt in range(1, MAX_MERGE_ATTEMPTS + 1):
                summary = await self.db.get_summary(resource.id, granularity, start)
                if summary is None or summary.is_streaming:
                    logger.debug("No settled summary to merge into", extra=context)
                    return None

                if digest_ids is None:
                    candidates = await self.db.get_digests_in_range(
                        resource.id, start, period_end(start, granularity)
                    )
                else:
                    candidates = await self.db.get_digests(resource.id, digest_ids)

                included = set(summary.included_digest_ids)
                new_digests = [d for d in candidates if d.id not in included]
                if not new_digests:
                    return None

                prompt = build_merge_prompt(summary, new_digests, self.max_prompt_digests)
                result: SummarySchema = await self.retry.run(
                    lambda: self.llm.generate(
                        SummarySchema, INCREMENTAL_UPDATE_SYSTEM_PROMPT, prompt, tier=resource.model_tier
                    ),
                    context=context,
                )

                included_ids = summary.included_digest_ids + [d.id for d in new_digests]
                all_digests = await self.db.get_digests(resource.id, included_ids)
                fields = _final_fields(result, all_digests)
                fields["included_digest_ids"] = included_ids

                if await self.db.replace_summary_if_version(summary.id, summary.version, fields):
                    logger.info(
                        f"Merged {len(new_digests)} digest(s) into summary",
                        extra={**context, "version": summary.version + 1},
                    )
                    return await self.db.get_summary_by_id(summary.id)

                logger.warning(
                    f"Summary changed during merge, retrying (attempt {attempt}/{MAX_MERGE_ATTEMPTS})",
                    extra=context,
                )

        raise MergeConflictError(f"Summary kept changing after {MAX_MERGE_ATTEMPTS} merge attempts")

    # ----------------------------
    # Status
    # ----------------------------
    async def summary_status(
        self,
        resource_id: str,
        granularity: Granularity,
        start: int,
        *,
        caller_tenant_id: str,
    ) -> SummaryStatus:
        await self.guard.verify(resource_id, caller_tenant_id)
        start = period_start(start, granularity)

        summary = await self.db.get_summary(resource_id, granularity, start)
        digest_count = await self.db.count_digests_in_range(resource_id, start, period_end(start, granularity))
        return SummaryStatus(
            summary=summary,
            digest_count=digest_count,
            included_count=len(summary.included_digest_ids) if summary else 0,
        )
