"""
Event -> digest generation.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.entities import Digest, Event, Perspective, ResourceRecord
from core.errors import NotFound, Unauthorized
from core.payloads import PullRequestPayload, PushPayload
from core.periods import now_ms
from core.prompts import DIGEST_SYSTEM_PROMPT
from core.schemas import DigestSchema
from processing.enrichment import EnrichmentService, rank_perspectives
from processing.fallback import FallbackSynthesizer
from processing.prompt_builder import build_event_prompt
from processing.retry import RetryPolicy
from services.cache import ContentCache
from services.database import Database, new_id
from services.llm import StructuredLLMClient
from services.ownership import OwnershipGuard
from services.source_control import SourceControlClient

logger = logging.getLogger(__name__)

FALLBACK_MODEL_LABEL = "fallback"


@dataclass
class GeneratedDigest:
    digest: Digest
    tracking_handle: str
    used_fallback: bool


def digest_fingerprint_inputs(event: Event) -> Dict[str, Any]:
    """
    Only the semantic content of an event. Timestamps, delivery ids and
    file-change fetch state never change the fingerprint.
    """
    payload = event.typed_payload
    inputs: Dict[str, Any] = {"type": event.kind}
    if isinstance(payload, PushPayload):
        inputs["commits"] = [{"message": c.message, "sha": c.sha} for c in payload.commits]
    elif isinstance(payload, PullRequestPayload):
        inputs["pr"] = {"title": payload.title, "body": payload.body, "number": payload.number}
    return inputs


def digest_metadata(event: Event) -> Dict[str, Any]:
    payload = event.typed_payload
    if isinstance(payload, PullRequestPayload):
        return {"pr_number": payload.number, "pr_url": payload.html_url, "pr_state": payload.state}
    if isinstance(payload, PushPayload):
        return {"commit_count": payload.commit_count, "compare_url": payload.compare, "branch": payload.branch}
    return {}


class DigestGenerator:
    """
    Turns one stored event into one stored digest.

    Ownership and missing-event errors propagate. Every AI failure ends in
    the deterministic fallback instead, so a digest is always produced.
    """

    def __init__(
        self,
        database: Database,
        llm: StructuredLLMClient,
        cache: ContentCache,
        retry: RetryPolicy,
        fallback: Optional[FallbackSynthesizer] = None,
        source_control: Optional[SourceControlClient] = None,
        enrichment: Optional[EnrichmentService] = None,
    ):
        self.db = database
        self.guard = OwnershipGuard(database)
        self.llm = llm
        self.cache = cache
        self.retry = retry
        self.fallback = fallback or FallbackSynthesizer()
        self.source_control = source_control
        self.enrichment = enrichment

    async def generate(self, event_id: str, resource_id: str, caller_tenant_id: str) -> GeneratedDigest:
        resource = await self.guard.verify(resource_id, caller_tenant_id)

        event = await self.db.get_event(event_id)
        if event is None or event.resource_id != resource_id:
            raise NotFound(f"Event not found: {event_id}")

        tracking_handle = f"digest-{event_id}-{now_ms()}"

        existing = await self.db.get_digest_for_event(event_id)
        if existing is not None:
            logger.info("Digest already exists for event", extra={"event_id": event_id})
            return GeneratedDigest(existing, tracking_handle, existing.model_label == FALLBACK_MODEL_LABEL)

        await self.db.update_event_status(event_id, "processing")
        try:
            digest, used_fallback = await self._build_digest(resource, event)
            stored = await self.db.add_digest(digest)
            await self.db.update_event_status(event_id, "completed")
        except Exception as e:
            await self.db.update_event_status(event_id, "failed", error_message=str(e))
            raise

        logger.info(
            f"Digest stored: {stored.title}",
            extra={"event_id": event_id, "resource_id": resource_id, "fallback": used_fallback},
        )
        return GeneratedDigest(stored, tracking_handle, used_fallback)

    async def _build_digest(self, resource: ResourceRecord, event: Event):
        await self._ensure_file_changes(resource, event)

        draft: Optional[DigestSchema] = None
        try:
            data = await self.cache.fetch(
                resource.id,
                digest_fingerprint_inputs(event),
                lambda: self._synthesize(event, resource.model_tier),
            )
            draft = DigestSchema.model_validate(data)
        except (Unauthorized, NotFound):
            raise
        except Exception as e:
            logger.warning(
                f"Digest generation failed, using fallback: {e}",
                extra={"event_id": event.id, "resource_id": resource.id},
            )

        used_fallback = draft is None
        if draft is None:
            draft = self.fallback.synthesize(event)

        digest = Digest(
            id=new_id(),
            resource_id=resource.id,
            event_id=event.id,
            title=draft.title,
            narrative=draft.summary,
            category=draft.category,
            rationale=draft.why_this_matters,
            contributors=[event.actor],
            created_at=now_ms(),
            metadata=digest_metadata(event),
            perspectives=rank_perspectives([
                Perspective(p.perspective, p.title, p.summary, p.confidence)
                for p in draft.perspectives or []
            ]),
            model_label=FALLBACK_MODEL_LABEL if used_fallback else self.llm.model_name(resource.model_tier),
        )

        if self.enrichment is not None:
            digest.perspectives = await self.enrichment.add_perspectives(digest, event, resource.model_tier)
            digest.impact = await self.enrichment.assess_impact(resource.id, event)

        return digest, used_fallback

    async def _synthesize(self, event: Event, tier) -> Dict[str, Any]:
        prompt = build_event_prompt(event)
        result = await self.retry.run(
            lambda: self.llm.generate(DigestSchema, DIGEST_SYSTEM_PROMPT, prompt, tier=tier),
            context={"event_id": event.id, "resource_id": event.resource_id},
        )
        return result.model_dump()

    async def _ensure_file_changes(self, resource: ResourceRecord, event: Event) -> None:
        if event.file_changes is not None or self.source_control is None:
            return
        if event.kind not in ("push", "pull_request"):
            return

        changes: Optional[List] = await self.retry.run_best_effort(
            lambda: self.source_control.fetch_file_changes(resource, event),
            label="File change fetch",
            context={"event_id": event.id, "resource_id": resource.id},
        )
        if changes:
            event.file_changes = changes
            await self.db.update_event_file_changes(event.id, changes)
