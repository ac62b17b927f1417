from datetime import datetime, timezone

from services.scheduler import next_run_time, seconds_until


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_daily_runs_next_midnight():
    assert next_run_time("daily", now=_utc(2024, 3, 6, 15)) == _utc(2024, 3, 7)


def test_daily_later_today():
    assert next_run_time("daily", hour=18, now=_utc(2024, 3, 6, 15)) == _utc(2024, 3, 6, 18)


def test_weekly_runs_on_sunday():
    # Wednesday -> following Sunday
    assert next_run_time("weekly", now=_utc(2024, 3, 6, 15)) == _utc(2024, 3, 10)
    # Sunday after the run -> next Sunday
    assert next_run_time("weekly", now=_utc(2024, 3, 10, 0, 1)) == _utc(2024, 3, 17)


def test_monthly_runs_on_the_first():
    assert next_run_time("monthly", now=_utc(2024, 12, 31, 23)) == _utc(2025, 1, 1)
    assert next_run_time("monthly", now=_utc(2024, 1, 31, 10)) == _utc(2024, 2, 1)


def test_seconds_until_never_negative():
    now = _utc(2024, 3, 6, 12)
    assert seconds_until(_utc(2024, 3, 6, 11), now=now) == 0.0
    assert seconds_until(_utc(2024, 3, 6, 13), now=now) == 3600.0
