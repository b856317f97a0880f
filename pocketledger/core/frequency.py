"""
Frequency normalization.

Converts a recurring amount and its cadence into annual and monthly
equivalents, and steps dates forward by one cadence.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from dateutil.relativedelta import relativedelta


class Frequency(str, Enum):
    ONE_TIME = "one-time"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


# One-time amounts do not recur, so they add nothing to a yearly figure.
ANNUAL_MULTIPLIERS = {
    Frequency.ONE_TIME: 0,
    Frequency.WEEKLY: 52,
    Frequency.BI_WEEKLY: 26,
    Frequency.MONTHLY: 12,
    Frequency.QUARTERLY: 4,
    Frequency.YEARLY: 1,
}

_STEPS = {
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.BI_WEEKLY: timedelta(days=14),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}

AUTO_SAVE_FREQUENCIES = (Frequency.WEEKLY, Frequency.MONTHLY, Frequency.QUARTERLY)

DateLike = Union[date, datetime]


def annualize(amount: Decimal, frequency: Frequency) -> Decimal:
    return Decimal(amount) * ANNUAL_MULTIPLIERS[Frequency(frequency)]


def monthly_equivalent(amount: Decimal, frequency: Frequency) -> Decimal:
    return annualize(amount, frequency) / 12


def advance(when: DateLike, frequency: Frequency) -> Optional[DateLike]:
    """Return ``when`` moved forward by one period, or None for one-time amounts.

    Month steps clamp to the end of shorter months (Jan 31 + 1 month is Feb 28/29).
    """
    step = _STEPS.get(Frequency(frequency))
    if step is None:
        return None
    return when + step


def advance_past(when: date, frequency: Frequency, today: date) -> Optional[date]:
    """Step ``when`` forward until it lands strictly after ``today``."""
    nxt = advance(when, frequency)
    while nxt is not None and nxt <= today:
        nxt = advance(nxt, frequency)
    return nxt
