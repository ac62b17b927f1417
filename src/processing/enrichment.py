"""
Optional digest enrichments: extra perspectives and impact assessment.

Both are best-effort. A failure is logged and the digest is stored
without the enrichment.
"""
import asyncio
import logging
import re
from dataclasses import asdict
from typing import List, Optional

from core.entities import Digest, Event, ImpactAssessment, ModelTier, Perspective
from core.errors import BestEffortFailure
from core.prompts import IMPACT_ANALYSIS_SYSTEM_PROMPT
from core.schemas import ChangeIntentSchema, ImpactAnalysisSchema, PerspectiveSchema
from processing.prompt_builder import (
    ImpactInputs,
    build_impact_prompt,
    build_intent_prompt,
    build_perspective_prompt,
    impact_inputs,
)
from processing.retry import RetryPolicy
from services.cache import ContentCache
from services.llm import StructuredLLMClient

logger = logging.getLogger(__name__)

MAX_PERSPECTIVES = 3
UI_FILE_PATTERN = re.compile(r"\.(tsx|jsx)$")


def select_perspectives(digest: Digest, event: Event) -> List[str]:
    """
    Perspective kinds still worth generating for a digest, keeping the
    total at or under MAX_PERSPECTIVES.
    """
    wanted: List[str] = []
    if digest.category in ("bugfix", "feature"):
        wanted.append(digest.category)

    changes = event.file_changes or []
    if any(UI_FILE_PATTERN.search(c.filename) or "component" in c.filename for c in changes):
        wanted.append("ui")

    # Always at least one
    if not wanted:
        wanted.append(digest.category or "refactor")

    existing = {p.perspective for p in digest.perspectives}
    remaining = max(0, MAX_PERSPECTIVES - len(existing))
    return [p for p in wanted if p not in existing][:remaining]


def rank_perspectives(perspectives: List[Perspective]) -> List[Perspective]:
    return sorted(perspectives, key=lambda p: p.confidence, reverse=True)


class EnrichmentService:
    def __init__(
        self,
        llm: StructuredLLMClient,
        retry: RetryPolicy,
        impact_cache: ContentCache,
    ):
        self.llm = llm
        self.retry = retry
        self.impact_cache = impact_cache

    async def generate_perspective(
        self, digest: Digest, kind: str, tier: ModelTier = "quality"
    ) -> Optional[Perspective]:
        async def call() -> PerspectiveSchema:
            return await self.llm.generate(
                PerspectiveSchema, None, build_perspective_prompt(digest, kind), tier=tier
            )

        result = await self.retry.run_best_effort(
            call,
            label=f"{kind} perspective",
            context={"digest_id": digest.id, "perspective": kind},
        )
        if result is None:
            return None
        return Perspective(
            perspective=result.perspective,
            title=result.title,
            summary=result.summary,
            confidence=result.confidence,
        )

    async def add_perspectives(
        self, digest: Digest, event: Event, tier: ModelTier = "quality"
    ) -> List[Perspective]:
        """
        Generate the missing perspectives in parallel and return the full
        set, ranked by confidence.
        """
        kinds = select_perspectives(digest, event)
        results = await asyncio.gather(*(self.generate_perspective(digest, k, tier) for k in kinds))
        generated = [p for p in results if p is not None]
        return rank_perspectives(list(digest.perspectives) + generated)[:MAX_PERSPECTIVES]

    async def _analyze(self, inputs: ImpactInputs) -> dict:
        intent: Optional[ChangeIntentSchema] = None
        if inputs.commit_message:
            intent = await self.retry.run_best_effort(
                lambda: self.llm.generate(ChangeIntentSchema, None, build_intent_prompt(inputs), tier="fast"),
                label="Intent analysis",
            )

        result: ImpactAnalysisSchema = await self.retry.run(
            lambda: self.llm.generate(
                ImpactAnalysisSchema,
                IMPACT_ANALYSIS_SYSTEM_PROMPT,
                build_impact_prompt(inputs, intent),
                tier="fast",
            )
        )
        assessment = ImpactAssessment(
            overall_risk=result.overall_risk,
            confidence=result.confidence,
            overall_explanation=result.overall_explanation,
            affected_files=[f.model_dump() for f in result.affected_files],
            claims_verified=result.intent_validation.claims_verified if intent is not None else None,
        )
        return asdict(assessment)

    async def assess_impact(self, resource_id: str, event: Event) -> Optional[ImpactAssessment]:
        """
        Two passes on the fast tier: intent, then impact. Skipped when no
        patches are available. Cached per resource by diff fingerprint.
        """
        inputs = impact_inputs(event)
        if not inputs.files:
            return None

        try:
            data = await self.impact_cache.fetch(
                resource_id, inputs.fingerprint_inputs(), lambda: self._analyze(inputs)
            )
        except Exception as e:
            failure = BestEffortFailure(f"Impact analysis failed: {e}")
            logger.warning(str(failure), extra={"event_id": event.id, "resource_id": resource_id})
            return None
        return ImpactAssessment(**data)
