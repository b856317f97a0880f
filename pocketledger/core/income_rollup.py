"""
Income roll-up.

Annualized income over a user's active sources, grouped views of it, and
the income-versus-expense comparison that feeds the savings insights. The
numbers computed here are authoritative; ``User.current_income_*`` only
mirrors them and is refreshed through ``refresh_user_stats``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_
from sqlmodel import Session, select

from ..errors import NotFoundError
from ..logger import get_logger
from ..models.expense import Expense, ExpenseStatus
from ..models.income import Income, IncomeType
from ..models.user import User
from .frequency import Frequency, advance, advance_past, annualize
from .insights import Insight, financial_insights

logger = get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _pct(value: float) -> float:
    return round(value * 100) / 100


@dataclass
class SourceBreakdown:
    income_id: uuid.UUID
    source: str
    type: IncomeType
    frequency: Frequency
    annual_amount: Decimal


@dataclass
class IncomeTotals:
    total_annual: Decimal
    total_monthly: Decimal
    source_count: int
    breakdown: List[SourceBreakdown] = field(default_factory=list)


@dataclass
class IncomeTypeTotal:
    type: IncomeType
    total: Decimal
    count: int
    sources: List[Dict[str, object]] = field(default_factory=list)


@dataclass
class SavingsAnalysis:
    savings_rate: float
    expense_to_income_ratio: float
    no_income: bool


@dataclass
class IncomeExpenseAnalysis:
    annual_income: Decimal
    monthly_income: Decimal
    avg_monthly_expenses: Decimal
    total_expenses: Decimal
    months: int
    savings: SavingsAnalysis
    insights: List[Insight]


def counts_toward_income(income: Income, today: date) -> bool:
    return income.is_active and (income.end_date is None or income.end_date >= today)


def active_sources(session: Session, user_id: uuid.UUID, today: date) -> List[Income]:
    stmt = select(Income).where(
        Income.user_id == user_id,
        Income.is_active == True,  # noqa: E712
        or_(Income.end_date.is_(None), Income.end_date >= today),
    )
    return list(session.exec(stmt).all())


def total_annual_income(session: Session, user_id: uuid.UUID, today: Optional[date] = None) -> IncomeTotals:
    today = today or date.today()
    breakdown = [
        SourceBreakdown(
            income_id=income.id,
            source=income.source,
            type=IncomeType(income.type),
            frequency=Frequency(income.frequency),
            annual_amount=_money(annualize(income.amount, income.frequency)),
        )
        for income in active_sources(session, user_id, today)
    ]
    total = sum((b.annual_amount for b in breakdown), ZERO)
    return IncomeTotals(
        total_annual=_money(total),
        total_monthly=_money(total / 12),
        source_count=len(breakdown),
        breakdown=breakdown,
    )


def income_by_type(session: Session, user_id: uuid.UUID, year: int) -> List[IncomeTypeTotal]:
    """Annualized income per type for sources active at some point during ``year``."""
    year_start, year_end = date(year, 1, 1), date(year, 12, 31)
    stmt = select(Income).where(
        Income.user_id == user_id,
        Income.is_active == True,  # noqa: E712
        Income.start_date <= year_end,
        or_(Income.end_date.is_(None), Income.end_date >= year_start),
    )

    grouped: Dict[IncomeType, IncomeTypeTotal] = {}
    for income in session.exec(stmt).all():
        kind = IncomeType(income.type)
        annual = _money(annualize(income.amount, income.frequency))
        bucket = grouped.setdefault(kind, IncomeTypeTotal(type=kind, total=ZERO, count=0))
        bucket.total += annual
        bucket.count += 1
        bucket.sources.append({"source": income.source, "amount": annual})

    return sorted(grouped.values(), key=lambda t: t.total, reverse=True)


def savings_analysis(monthly_income: Decimal, avg_monthly_expenses: Decimal) -> SavingsAnalysis:
    """Savings rate and expense ratio, in percent; zero income is reported as its own case."""
    income = Decimal(monthly_income)
    expenses = Decimal(avg_monthly_expenses)
    if income <= 0:
        return SavingsAnalysis(savings_rate=0.0, expense_to_income_ratio=0.0, no_income=True)
    return SavingsAnalysis(
        savings_rate=_pct(float((income - expenses) / income * 100)),
        expense_to_income_ratio=_pct(float(expenses / income * 100)),
        no_income=False,
    )


def monthly_expense_totals(
    session: Session,
    user_id: uuid.UUID,
    start: date,
    end: date,
) -> Dict[str, Decimal]:
    """Completed expense totals keyed by ``YYYY-MM`` for months that have any."""
    stmt = select(Expense.expense_date, Expense.amount).where(
        Expense.user_id == user_id,
        Expense.deleted_at.is_(None),
        Expense.status == ExpenseStatus.COMPLETED,
        Expense.expense_date >= start,
        Expense.expense_date <= end,
    )
    totals: Dict[str, Decimal] = {}
    for expense_date, amount in session.exec(stmt).all():
        key = expense_date.strftime("%Y-%m")
        totals[key] = totals.get(key, ZERO) + Decimal(amount)
    return totals


def average_monthly_expenses(
    session: Session,
    user_id: uuid.UUID,
    months: int,
    now: Optional[datetime] = None,
):
    now = now or datetime.utcnow()
    end = now.date()
    start = end - relativedelta(months=months)
    totals = monthly_expense_totals(session, user_id, start, end)
    total = sum(totals.values(), ZERO)
    average = total / len(totals) if totals else ZERO
    return _money(average), _money(total)


def income_vs_expense_analysis(
    session: Session,
    user_id: uuid.UUID,
    months: int = 6,
    now: Optional[datetime] = None,
) -> IncomeExpenseAnalysis:
    now = now or datetime.utcnow()
    totals = total_annual_income(session, user_id, now.date())
    avg_expenses, total_expenses = average_monthly_expenses(session, user_id, months, now)
    savings = savings_analysis(totals.total_monthly, avg_expenses)
    return IncomeExpenseAnalysis(
        annual_income=totals.total_annual,
        monthly_income=totals.total_monthly,
        avg_monthly_expenses=avg_expenses,
        total_expenses=total_expenses,
        months=months,
        savings=savings,
        insights=financial_insights(savings),
    )


def refresh_user_stats(session: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> User:
    """Push a fresh snapshot of the income totals and the expense count into the user row."""
    now = now or datetime.utcnow()
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    totals = total_annual_income(session, user_id, now.date())
    expense_count = session.exec(
        select(func.count()).select_from(Expense).where(
            Expense.user_id == user_id,
            Expense.deleted_at.is_(None),
            Expense.status == ExpenseStatus.COMPLETED,
        )
    ).one()

    user.current_income_annual = totals.total_annual
    user.current_income_monthly = totals.total_monthly
    user.current_income_updated_at = now
    user.total_expenses = expense_count
    user.updated_at = now
    session.add(user)
    session.commit()
    session.refresh(user)

    logger.debug(
        "user_stats_refreshed",
        user_id=str(user_id),
        annual=str(totals.total_annual),
        expenses=expense_count,
    )
    return user


# ─────────────────────────────
#   EXPECTED PAYMENTS
# ─────────────────────────────

def expected_next(income: Income) -> Optional[date]:
    """Next payment date counted from the last receipt, or from the start date."""
    if not income.is_recurring:
        return None
    return advance(income.last_received or income.start_date, income.frequency)


def upcoming_income(session: Session, user_id: uuid.UUID, days: int = 30, today: Optional[date] = None) -> List[Income]:
    today = today or date.today()
    stmt = (
        select(Income)
        .where(
            Income.user_id == user_id,
            Income.is_active == True,  # noqa: E712
            Income.is_recurring == True,  # noqa: E712
            Income.next_expected >= today,
            Income.next_expected <= today + timedelta(days=days),
        )
        .order_by(Income.next_expected.asc())
    )
    return list(session.exec(stmt).all())


def mark_received(
    session: Session,
    income: Income,
    amount: Optional[Decimal] = None,
    received_on: Optional[date] = None,
) -> Income:
    income.last_received = received_on or date.today()
    income.total_received = Decimal(income.total_received or 0) + Decimal(amount if amount is not None else income.amount)
    income.next_expected = expected_next(income)
    income.updated_at = datetime.utcnow()
    session.add(income)
    session.commit()
    session.refresh(income)
    return income


@dataclass
class ExpectationResult:
    income_id: uuid.UUID
    source: str
    status: str
    next_expected: Optional[date] = None
    error: Optional[str] = None


def refresh_income_expectations(session: Session, now: Optional[datetime] = None) -> List[ExpectationResult]:
    """Roll ``next_expected`` past today for open-ended recurring sources whose date has lapsed."""
    now = now or datetime.utcnow()
    today = now.date()
    stmt = select(Income).where(
        Income.is_active == True,  # noqa: E712
        Income.is_recurring == True,  # noqa: E712
        Income.end_date.is_(None),
        or_(Income.next_expected.is_(None), Income.next_expected < today),
    )
    due = [(i.id, i.source) for i in session.exec(stmt).all()]

    results: List[ExpectationResult] = []
    for income_id, source in due:
        try:
            income = session.get(Income, income_id)
            anchor = income.last_received or income.start_date
            income.next_expected = advance_past(anchor, income.frequency, today)
            income.updated_at = now
            session.add(income)
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.warning("income_expectation_failed", income_id=str(income_id), error=str(exc))
            results.append(ExpectationResult(income_id, source, "failed", error=str(exc)))
        else:
            results.append(ExpectationResult(income_id, source, "success", next_expected=income.next_expected))

    logger.info("income_expectation_sweep", processed=len(results))
    return results
