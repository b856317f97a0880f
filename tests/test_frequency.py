from datetime import date, datetime
from decimal import Decimal

import pytest

from pocketledger.core.frequency import Frequency, advance, advance_past, annualize, monthly_equivalent


def test_monthly_source_annualizes_to_twelve_payments():
    assert annualize(Decimal("5000"), Frequency.MONTHLY) == Decimal("60000")
    assert monthly_equivalent(Decimal("5000"), Frequency.MONTHLY) == Decimal("5000")


def test_weekly_source_annualizes_to_fifty_two_payments():
    assert annualize(Decimal("1000"), Frequency.WEEKLY) == Decimal("52000")


@pytest.mark.parametrize(
    "frequency, expected",
    [
        (Frequency.ONE_TIME, Decimal("0")),
        (Frequency.BI_WEEKLY, Decimal("2600")),
        (Frequency.QUARTERLY, Decimal("400")),
        (Frequency.YEARLY, Decimal("100")),
    ],
)
def test_other_multipliers(frequency, expected):
    assert annualize(Decimal("100"), frequency) == expected


def test_accepts_wire_values():
    assert annualize(Decimal("10"), "bi-weekly") == Decimal("260")


def test_advance_steps_by_one_period():
    assert advance(date(2026, 3, 1), Frequency.WEEKLY) == date(2026, 3, 8)
    assert advance(date(2026, 3, 1), Frequency.BI_WEEKLY) == date(2026, 3, 15)
    assert advance(date(2026, 3, 1), Frequency.QUARTERLY) == date(2026, 6, 1)
    assert advance(date(2026, 3, 1), Frequency.YEARLY) == date(2027, 3, 1)


def test_month_step_clamps_to_month_end():
    assert advance(date(2026, 1, 31), Frequency.MONTHLY) == date(2026, 2, 28)
    assert advance(datetime(2028, 1, 31, 9), Frequency.MONTHLY) == datetime(2028, 2, 29, 9)


def test_one_time_has_no_next_date():
    assert advance(date(2026, 3, 1), Frequency.ONE_TIME) is None


def test_advance_past_lands_after_today():
    nxt = advance_past(date(2026, 1, 1), Frequency.WEEKLY, today=date(2026, 1, 20))
    assert nxt == date(2026, 1, 22)
    assert advance_past(date(2026, 1, 1), Frequency.ONE_TIME, today=date(2026, 1, 20)) is None
