"""
Wires the workflows together from configuration.
"""
import logging
from dataclasses import dataclass

from processing.enrichment import EnrichmentService
from processing.retry import RetryPolicy
from services.cache import ContentCache, SqliteCacheStore
from services.config import Config
from services.database import Database
from services.llm import StructuredLLMClient
from services.source_control import GitHubClient
from workflows.digest import DigestGenerator
from workflows.pipeline import EventPipeline, PeriodRollupJob
from workflows.summary import SummaryAggregator

logger = logging.getLogger(__name__)

HOUR_SECONDS = 60 * 60


@dataclass
class Services:
    db: Database
    llm: StructuredLLMClient
    digest_cache: ContentCache
    impact_cache: ContentCache
    digests: DigestGenerator
    summaries: SummaryAggregator
    pipeline: EventPipeline
    rollups: PeriodRollupJob


def create_services_from_config(config: Config) -> Services:
    db = Database(config.DATABASE_PATH)

    llm = StructuredLLMClient(
        base_url=config.OLLAMA_BASE_URL,
        models={"fast": config.OLLAMA_MODEL_FAST, "quality": config.OLLAMA_MODEL_QUALITY},
        temperature=config.LLM_TEMPERATURE,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )
    retry = RetryPolicy(delay_seconds=config.RETRY_DELAY_SECONDS)

    store = SqliteCacheStore(db)
    digest_cache = ContentCache(store, "digest", ttl_seconds=config.DIGEST_CACHE_TTL_HOURS * HOUR_SECONDS)
    impact_cache = ContentCache(store, "impact", ttl_seconds=config.IMPACT_CACHE_TTL_HOURS * HOUR_SECONDS)

    if not config.GITHUB_TOKEN:
        logger.warning("GITHUB_TOKEN not set, file changes will be fetched unauthenticated")

    digests = DigestGenerator(
        db,
        llm,
        digest_cache,
        retry,
        source_control=GitHubClient(config.GITHUB_API_URL, config.GITHUB_TOKEN),
        enrichment=EnrichmentService(llm, retry, impact_cache),
    )
    summaries = SummaryAggregator(
        db,
        llm,
        retry,
        write_interval_ms=config.SUMMARY_WRITE_INTERVAL_MS,
        max_prompt_digests=config.SUMMARY_MAX_PROMPT_DIGESTS,
        # Two attempts without a partial write
        stale_streaming_ms=int(config.LLM_TIMEOUT_SECONDS * 2 * 1000),
    )

    return Services(
        db=db,
        llm=llm,
        digest_cache=digest_cache,
        impact_cache=impact_cache,
        digests=digests,
        summaries=summaries,
        pipeline=EventPipeline(db, digests, summaries),
        rollups=PeriodRollupJob(db, summaries),
    )
