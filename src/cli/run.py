import argparse
import asyncio
import logging
import time
from typing import List, Optional

from core.periods import GRANULARITIES, now_ms
from services.config import load_config
from services.logging import setup_logging
from workflows.factory import Services, create_services_from_config


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="digest-engine", description="Activity digest and period rollups")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process-event", help="Generate the digest for one stored event")
    process.add_argument("event_id")

    rollup = sub.add_parser("rollup", help="Summarize the last closed period for every active resource")
    rollup.add_argument("granularity", choices=GRANULARITIES)

    schedule = sub.add_parser("schedule", help="Run a rollup on its UTC cron schedule")
    schedule.add_argument("granularity", choices=GRANULARITIES)
    schedule.add_argument("--hour", type=int, default=0)

    retry = sub.add_parser("retry-failed", help="Re-run failed events")
    retry.add_argument("--limit", type=int, default=50)

    sub.add_parser("purge-cache", help="Delete expired cache entries")
    sub.add_parser("health", help="Check the Ollama server")

    return parser.parse_args(argv)


async def _dispatch(args: argparse.Namespace, services: Services, logger: logging.Logger) -> int:
    if args.command == "process-event":
        result = await services.pipeline.process_event(args.event_id)
        logger.info(
            f"Digest {result.digest.id}: {result.digest.title}",
            extra={"tracking_handle": result.tracking_handle, "fallback": result.used_fallback},
        )
        return 0

    if args.command == "rollup":
        report = await services.rollups.run(args.granularity, now_ms())
        return 1 if report.errors else 0

    if args.command == "schedule":
        await services.rollups.run_forever(args.granularity, hour=args.hour)
        return 0

    if args.command == "retry-failed":
        recovered = await services.pipeline.retry_failed_events(limit=args.limit)
        logger.info(f"Recovered {recovered} events")
        return 0

    if args.command == "purge-cache":
        purged = await services.digest_cache.purge_expired()
        purged += await services.impact_cache.purge_expired()
        logger.info(f"Purged {purged} cache entries")
        return 0

    if args.command == "health":
        return 0 if await services.llm.health_check() else 1

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: Optional[List[str]] = None) -> int:
    start_time = time.perf_counter()
    args = _parse_args(argv)

    config = load_config()
    setup_logging(config.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    services = create_services_from_config(config)
    await services.db.init_tables()

    logger.info(f"Running {args.command}")
    code = await _dispatch(args, services, logger)

    end_time = time.perf_counter()
    logger.info(f"Total time: {end_time - start_time}")
    return code


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
