import pytest

from conftest import ms
from core.periods import (
    contains,
    daily_start,
    format_period_date,
    monthly_start,
    period_end,
    period_start,
    previous_period_start,
    weekly_start,
)


def test_daily_start_truncates_to_utc_midnight():
    assert daily_start(ms(2024, 3, 6, 23, 59)) == ms(2024, 3, 6)


def test_weekly_start_is_most_recent_sunday():
    # 2024-03-06 is a Wednesday
    assert weekly_start(ms(2024, 3, 6, 15)) == ms(2024, 3, 3)


def test_weekly_start_on_sunday_is_same_day():
    assert weekly_start(ms(2024, 3, 3, 8)) == ms(2024, 3, 3)


def test_weekly_start_crosses_month_boundary():
    # 2024-03-01 is a Friday; the week began Sunday 2024-02-25
    assert weekly_start(ms(2024, 3, 1, 10)) == ms(2024, 2, 25)


def test_monthly_start():
    assert monthly_start(ms(2024, 3, 31, 23)) == ms(2024, 3, 1)


def test_month_end_rolls_over_year():
    assert period_end(ms(2024, 12, 1), "monthly") == ms(2025, 1, 1)


def test_leap_february_end():
    assert period_end(ms(2024, 2, 1), "monthly") == ms(2024, 3, 1)


def test_weekly_end_is_seven_days_later():
    assert period_end(ms(2024, 3, 3), "weekly") == ms(2024, 3, 10)


@pytest.mark.parametrize("granularity", ["daily", "weekly", "monthly"])
def test_period_start_is_idempotent(granularity):
    start = period_start(ms(2024, 7, 17, 13, 45), granularity)
    assert period_start(start, granularity) == start
    assert contains(start, granularity, ms(2024, 7, 17, 13, 45))


def test_previous_period_start_for_cron():
    now = ms(2024, 1, 15, 0, 5)
    assert previous_period_start(now, "daily") == ms(2024, 1, 14)
    assert previous_period_start(now, "weekly") == ms(2024, 1, 7)
    assert previous_period_start(now, "monthly") == ms(2023, 12, 1)


def test_contains_excludes_the_next_boundary():
    start = ms(2024, 3, 6)
    assert contains(start, "daily", start)
    assert not contains(start, "daily", ms(2024, 3, 7))
    assert not contains(start, "daily", start - 1)


def test_unknown_granularity_raises():
    with pytest.raises(ValueError):
        period_start(ms(2024, 3, 6), "hourly")


def test_format_period_date():
    assert format_period_date(ms(2024, 3, 3)) == "March 3, 2024"
