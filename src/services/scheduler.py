from datetime import datetime, timedelta, timezone

from core.periods import Granularity


def next_run_time(granularity: Granularity, hour: int = 0, now: datetime = None) -> datetime:
    """
    Next UTC cron fire time for a rollup: every day, every Sunday, or the
    1st of every month, at the given hour.
    """
    now = now or datetime.now(timezone.utc)
    run = now.replace(hour=hour, minute=0, second=0, microsecond=0)

    if granularity == "daily":
        if run <= now:
            run += timedelta(days=1)
        return run

    if granularity == "weekly":
        days_until_sunday = (6 - run.weekday()) % 7
        run += timedelta(days=days_until_sunday)
        if run <= now:
            run += timedelta(days=7)
        return run

    if granularity == "monthly":
        run = run.replace(day=1)
        if run <= now:
            year = run.year + run.month // 12
            month = run.month % 12 + 1
            run = run.replace(year=year, month=month)
        return run

    raise ValueError(f"Unknown granularity: {granularity}")


def seconds_until(run: datetime, now: datetime = None) -> float:
    now = now or datetime.now(timezone.utc)
    return max(0.0, (run - now).total_seconds())
