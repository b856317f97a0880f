"""
Expense analytics.

Read-only roll-ups over the completed, live part of the expense ledger:
per-category stats for a month, the monthly trend, daily spend, the
month-over-month comparison and descriptions that keep coming back.
"""

import calendar
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlmodel import Session, select

from ..errors import ValidationError
from ..models.expense import Expense, ExpenseCategory, ExpenseStatus
from .income_rollup import ZERO, _money, _pct, monthly_expense_totals


@dataclass
class CategoryStat:
    category: ExpenseCategory
    total: Decimal
    count: int
    avg_amount: Decimal


@dataclass
class MonthTotal:
    month: str
    total: Decimal


@dataclass
class DayTotal:
    day: int
    total: Decimal
    count: int


@dataclass
class MonthComparison:
    this_month: Decimal
    last_month: Decimal
    change_percentage: float
    trend: str


@dataclass
class RecurringCandidate:
    description: str
    category: ExpenseCategory
    frequency: int
    avg_amount: Decimal


@dataclass
class ExpenseAnalytics:
    year: int
    month: int
    monthly_stats: List[CategoryStat] = field(default_factory=list)
    spending_trend: List[MonthTotal] = field(default_factory=list)
    top_categories: List[CategoryStat] = field(default_factory=list)
    daily_spending: List[DayTotal] = field(default_factory=list)


@dataclass
class ExpenseInsights:
    monthly_comparison: MonthComparison
    top_categories: List[CategoryStat] = field(default_factory=list)
    recurring_candidates: List[RecurringCandidate] = field(default_factory=list)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _completed(user_id: uuid.UUID, start: date, end: date) -> list:
    return [
        Expense.user_id == user_id,
        Expense.deleted_at.is_(None),
        Expense.status == ExpenseStatus.COMPLETED,
        Expense.expense_date >= start,
        Expense.expense_date <= end,
    ]


def _as_decimal(value) -> Decimal:
    # SQLite hands back aggregates of Numeric columns as floats
    return ZERO if value is None else Decimal(str(value))


def category_totals(
    session: Session,
    user_id: uuid.UUID,
    start: date,
    end: date,
    limit: Optional[int] = None,
) -> List[CategoryStat]:
    """Spend per category in ``[start, end]``, largest first."""
    total = func.sum(Expense.amount)
    stmt = (
        select(Expense.category, total, func.count())
        .where(*_completed(user_id, start, end))
        .group_by(Expense.category)
        .order_by(total.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)

    stats = []
    for category, amount, count in session.exec(stmt).all():
        amount = _as_decimal(amount)
        stats.append(CategoryStat(ExpenseCategory(category), _money(amount), count, _money(amount / count)))
    return stats


def monthly_stats(session: Session, user_id: uuid.UUID, year: int, month: int) -> List[CategoryStat]:
    start, end = month_bounds(year, month)
    return category_totals(session, user_id, start, end)


def top_categories(
    session: Session,
    user_id: uuid.UUID,
    year: int,
    month: int,
    limit: int = 10,
) -> List[CategoryStat]:
    start, end = month_bounds(year, month)
    return category_totals(session, user_id, start, end, limit=limit)


def spending_trend(
    session: Session,
    user_id: uuid.UUID,
    months: int = 6,
    now: Optional[datetime] = None,
) -> List[MonthTotal]:
    """Totals for each month with spending over the last ``months`` months, oldest first."""
    now = now or datetime.utcnow()
    end = now.date()
    totals = monthly_expense_totals(session, user_id, end - relativedelta(months=months), end)
    return [MonthTotal(key, _money(totals[key])) for key in sorted(totals)]


def daily_spending(session: Session, user_id: uuid.UUID, year: int, month: int) -> List[DayTotal]:
    start, end = month_bounds(year, month)
    stmt = (
        select(Expense.expense_date, func.sum(Expense.amount), func.count())
        .where(*_completed(user_id, start, end))
        .group_by(Expense.expense_date)
        .order_by(Expense.expense_date)
    )
    return [DayTotal(day.day, _money(_as_decimal(amount)), count) for day, amount, count in session.exec(stmt).all()]


def month_over_month(session: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> MonthComparison:
    now = now or datetime.utcnow()
    this_start, this_end = month_bounds(now.year, now.month)
    last_start = this_start - relativedelta(months=1)

    this_total = sum((s.total for s in category_totals(session, user_id, this_start, this_end)), ZERO)
    last_total = sum(
        (s.total for s in category_totals(session, user_id, last_start, this_start - timedelta(days=1))),
        ZERO,
    )
    change = _pct(float((this_total - last_total) / last_total * 100)) if last_total > 0 else 0.0
    return MonthComparison(
        this_month=this_total,
        last_month=last_total,
        change_percentage=change,
        trend="increase" if change > 0 else "decrease",
    )


def recurring_candidates(
    session: Session,
    user_id: uuid.UUID,
    now: Optional[datetime] = None,
    days: int = 90,
    min_count: int = 3,
    limit: int = 5,
) -> List[RecurringCandidate]:
    """One-off expenses that repeat often enough to be worth a recurring template."""
    now = now or datetime.utcnow()
    description = func.lower(Expense.description)
    count = func.count()
    stmt = (
        select(description, Expense.category, count, func.sum(Expense.amount))
        .where(
            Expense.user_id == user_id,
            Expense.deleted_at.is_(None),
            Expense.recurring_template_id.is_(None),
            Expense.expense_date >= now.date() - timedelta(days=days),
        )
        .group_by(description, Expense.category)
        .having(count >= min_count)
        .order_by(count.desc(), description)
        .limit(limit)
    )
    return [
        RecurringCandidate(text, ExpenseCategory(category), n, _money(_as_decimal(amount) / n))
        for text, category, n, amount in session.exec(stmt).all()
    ]


def expense_analytics(
    session: Session,
    user_id: uuid.UUID,
    year: Optional[int] = None,
    month: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ExpenseAnalytics:
    now = now or datetime.utcnow()
    year = year or now.year
    month = month or now.month
    return ExpenseAnalytics(
        year=year,
        month=month,
        monthly_stats=monthly_stats(session, user_id, year, month),
        spending_trend=spending_trend(session, user_id, 6, now),
        top_categories=top_categories(session, user_id, year, month),
        daily_spending=daily_spending(session, user_id, year, month),
    )


def expense_insights(session: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> ExpenseInsights:
    now = now or datetime.utcnow()
    return ExpenseInsights(
        monthly_comparison=month_over_month(session, user_id, now),
        top_categories=top_categories(session, user_id, now.year, now.month, limit=5),
        recurring_candidates=recurring_candidates(session, user_id, now),
    )
