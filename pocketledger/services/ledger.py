"""
Ledger store operations.

Every mutation here commits the ledger record first, then brings the
affected aggregates along: budget spends through ``apply_delta`` and the
user's cached stats through ``refresh_user_stats``. The second step is
best-effort; anything it misses is picked up by reconciliation.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from ..core import budget_aggregator, goal_tracker, income_rollup
from ..core.frequency import Frequency
from ..core.scope import AllCategories, PerCategory
from ..errors import ConsistencyError, NotFoundError, ValidationError
from ..logger import get_logger
from ..models.expense import Expense, ExpenseCategory, ExpenseStatus
from ..models.goal import ContributionSource, Goal
from ..models.income import Income, IncomeType
from ..models.user import User

logger = get_logger(__name__)


# ─────────────────────────────
#   EXPENSES
# ─────────────────────────────

@dataclass
class ExpenseFilter:
    category: Optional[ExpenseCategory] = None
    status: Optional[ExpenseStatus] = ExpenseStatus.COMPLETED
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None
    sort_by: str = "expense_date"
    descending: bool = True
    limit: int = 20
    offset: int = 0


_SORTABLE = {"expense_date", "amount", "created_at", "category"}


def get_expense(session: Session, user_id: uuid.UUID, expense_id: uuid.UUID) -> Expense:
    expense = session.get(Expense, expense_id)
    if not expense or expense.deleted_at is not None or expense.user_id != user_id:
        raise NotFoundError("Expense not found")
    return expense


def find_expenses(session: Session, user_id: uuid.UUID, flt: ExpenseFilter) -> Tuple[List[Expense], int]:
    """One page of the user's live expenses plus the total match count."""
    conditions = [Expense.user_id == user_id, Expense.deleted_at.is_(None)]
    if flt.status is not None:
        conditions.append(Expense.status == flt.status)
    if flt.category is not None:
        conditions.append(Expense.category == flt.category)
    if flt.start_date is not None:
        conditions.append(Expense.expense_date >= flt.start_date)
    if flt.end_date is not None:
        conditions.append(Expense.expense_date <= flt.end_date)
    if flt.search:
        conditions.append(Expense.description.ilike(f"%{flt.search}%"))

    total = session.exec(select(func.count()).select_from(Expense).where(*conditions)).one()

    column = getattr(Expense, flt.sort_by if flt.sort_by in _SORTABLE else "expense_date")
    stmt = (
        select(Expense)
        .where(*conditions)
        .order_by(column.desc() if flt.descending else column.asc())
        .offset(max(0, flt.offset))
        .limit(min(100, max(1, flt.limit)))
    )
    return list(session.exec(stmt).all()), total


def sum_expenses(
    session: Session,
    user_id: uuid.UUID,
    category: Optional[ExpenseCategory],
    start: date,
    end: date,
) -> Decimal:
    """Completed spend in ``[start, end]``; ``category=None`` means any category."""
    scope = AllCategories() if category is None else PerCategory(ExpenseCategory(category))
    return budget_aggregator.ledger_total(session, user_id, scope, start, end)


def _push_to_budgets(
    session: Session,
    user_id: uuid.UUID,
    category: ExpenseCategory,
    on_date: date,
    delta: Decimal,
    now: datetime,
) -> None:
    for budget in budget_aggregator.affected_budgets(session, user_id, category, on_date):
        budget_id = budget.id
        try:
            budget_aggregator.apply_delta(session, budget_id, delta, now)
        except ConsistencyError as exc:
            session.rollback()
            logger.warning("budget_delta_failed", budget_id=str(budget_id), error=exc.detail)
            budget_aggregator.reconcile_quietly(session, budget_id, now)


def _refresh_stats_quietly(session: Session, user_id: uuid.UUID, now: datetime) -> None:
    try:
        income_rollup.refresh_user_stats(session, user_id, now)
    except NotFoundError:
        session.rollback()
        logger.warning("user_stats_refresh_skipped", user_id=str(user_id))


def record_expense(
    session: Session,
    user: User,
    amount: Decimal,
    category: ExpenseCategory,
    description: str,
    expense_date: Optional[date] = None,
    currency: Optional[str] = None,
    status: ExpenseStatus = ExpenseStatus.COMPLETED,
    recurring_template_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Expense:
    now = now or datetime.utcnow()
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("Amount must be greater than 0")
    description = (description or "").strip()
    if not description:
        raise ValidationError("Description is required")
    if recurring_template_id is not None:
        get_expense(session, user.id, recurring_template_id)

    expense = Expense(
        id=uuid.uuid4(),
        user_id=user.id,
        amount=Decimal(amount),
        currency=currency or user.default_currency,
        description=description,
        category=ExpenseCategory(category),
        expense_date=expense_date or now.date(),
        status=ExpenseStatus(status),
        recurring_template_id=recurring_template_id,
        created_at=now,
        updated_at=now,
        deleted_at=None,
    )
    session.add(expense)
    session.commit()
    session.refresh(expense)

    if expense.counts_toward_aggregates:
        _push_to_budgets(session, user.id, expense.category, expense.expense_date, expense.amount, now)
    _refresh_stats_quietly(session, user.id, now)
    session.refresh(expense)
    return expense


_EXPENSE_FIELDS = ("amount", "currency", "description", "category", "expense_date", "status")


def update_expense(
    session: Session,
    user: User,
    expense_id: uuid.UUID,
    now: Optional[datetime] = None,
    **changes,
) -> Expense:
    now = now or datetime.utcnow()
    expense = get_expense(session, user.id, expense_id)

    updates = {k: v for k, v in changes.items() if k in _EXPENSE_FIELDS and v is not None}
    if not updates:
        raise ValidationError("No fields to update")
    if "amount" in updates and Decimal(updates["amount"]) <= 0:
        raise ValidationError("Amount must be greater than 0")
    if "description" in updates:
        updates["description"] = updates["description"].strip()
        if not updates["description"]:
            raise ValidationError("Description is required")

    old_counts = expense.counts_toward_aggregates
    old_amount = Decimal(expense.amount)
    old_category = ExpenseCategory(expense.category)
    old_date = expense.expense_date

    for key, value in updates.items():
        setattr(expense, key, value)
    expense.updated_at = now
    session.add(expense)
    session.commit()
    session.refresh(expense)

    new_counts = expense.counts_toward_aggregates
    moved = (
        old_counts != new_counts
        or old_amount != Decimal(expense.amount)
        or old_category != ExpenseCategory(expense.category)
        or old_date != expense.expense_date
    )
    if moved:
        if old_counts:
            _push_to_budgets(session, user.id, old_category, old_date, -old_amount, now)
        if new_counts:
            _push_to_budgets(session, user.id, expense.category, expense.expense_date, Decimal(expense.amount), now)
        _refresh_stats_quietly(session, user.id, now)

    session.refresh(expense)
    return expense


def delete_expense(session: Session, user: User, expense_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    """Soft delete: the row stays, with deleted_at set, and leaves every aggregate."""
    now = now or datetime.utcnow()
    expense = get_expense(session, user.id, expense_id)
    counted = expense.counts_toward_aggregates
    amount, category, on_date = Decimal(expense.amount), ExpenseCategory(expense.category), expense.expense_date

    expense.deleted_at = now
    expense.updated_at = now
    session.add(expense)
    session.commit()

    if counted:
        _push_to_budgets(session, user.id, category, on_date, -amount, now)
    _refresh_stats_quietly(session, user.id, now)


# ─────────────────────────────
#   INCOME
# ─────────────────────────────

def get_income(session: Session, user_id: uuid.UUID, income_id: uuid.UUID) -> Income:
    income = session.get(Income, income_id)
    if not income or income.user_id != user_id:
        raise NotFoundError("Income source not found")
    return income


def find_incomes(
    session: Session,
    user_id: uuid.UUID,
    active_only: bool = True,
    type: Optional[IncomeType] = None,
    frequency: Optional[Frequency] = None,
) -> List[Income]:
    stmt = select(Income).where(Income.user_id == user_id)
    if active_only:
        stmt = stmt.where(Income.is_active == True)  # noqa: E712
    if type is not None:
        stmt = stmt.where(Income.type == type)
    if frequency is not None:
        stmt = stmt.where(Income.frequency == frequency)
    stmt = stmt.order_by(Income.start_date.desc())
    return list(session.exec(stmt).all())


def _schedule_next(income: Income) -> None:
    if income.is_recurring and income.is_active and income.end_date is None:
        income.next_expected = income_rollup.expected_next(income)


def create_income(
    session: Session,
    user: User,
    source: str,
    type: IncomeType,
    amount: Decimal,
    frequency: Frequency,
    currency: Optional[str] = None,
    description: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    is_recurring: bool = True,
    taxable: bool = True,
    now: Optional[datetime] = None,
) -> Income:
    now = now or datetime.utcnow()
    source = (source or "").strip()
    if not source:
        raise ValidationError("Income source is required")
    if amount is None or Decimal(amount) < 0:
        raise ValidationError("Amount cannot be negative")
    start = start_date or now.date()
    if end_date is not None and end_date < start:
        raise ValidationError("End date must not be before start date")

    income = Income(
        id=uuid.uuid4(),
        user_id=user.id,
        source=source,
        type=IncomeType(type),
        amount=Decimal(amount),
        currency=currency or user.default_currency,
        frequency=Frequency(frequency),
        description=(description or "").strip() or None,
        start_date=start,
        end_date=end_date,
        is_recurring=is_recurring,
        taxable=taxable,
        created_at=now,
        updated_at=now,
    )
    _schedule_next(income)
    session.add(income)
    session.commit()
    session.refresh(income)

    _refresh_stats_quietly(session, user.id, now)
    session.refresh(income)
    return income


_INCOME_FIELDS = ("source", "amount", "frequency", "description", "end_date", "is_active", "taxable", "is_recurring", "type")
_INCOME_NULLABLE = ("end_date", "description")


def update_income(
    session: Session,
    user: User,
    income_id: uuid.UUID,
    now: Optional[datetime] = None,
    **changes,
) -> Income:
    now = now or datetime.utcnow()
    income = get_income(session, user.id, income_id)

    updates = {
        k: v for k, v in changes.items()
        if k in _INCOME_FIELDS and (v is not None or k in _INCOME_NULLABLE)
    }
    if "amount" in updates and (updates["amount"] is None or Decimal(updates["amount"]) < 0):
        raise ValidationError("Amount cannot be negative")
    if "source" in updates:
        if not (updates["source"] or "").strip():
            raise ValidationError("Income source is required")
        updates["source"] = updates["source"].strip()
    end = updates.get("end_date", income.end_date)
    if end is not None and end < income.start_date:
        raise ValidationError("End date must not be before start date")

    for key, value in updates.items():
        setattr(income, key, value)
    _schedule_next(income)
    income.updated_at = now
    session.add(income)
    session.commit()

    _refresh_stats_quietly(session, user.id, now)
    session.refresh(income)
    return income


def delete_income(session: Session, user: User, income_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    now = now or datetime.utcnow()
    income = get_income(session, user.id, income_id)
    session.delete(income)
    session.commit()
    _refresh_stats_quietly(session, user.id, now)


def mark_income_received(
    session: Session,
    user: User,
    income_id: uuid.UUID,
    amount: Optional[Decimal] = None,
    received_on: Optional[date] = None,
) -> Income:
    income = get_income(session, user.id, income_id)
    if amount is not None and Decimal(amount) <= 0:
        raise ValidationError("Amount must be greater than 0")
    return income_rollup.mark_received(session, income, amount, received_on)


# ─────────────────────────────
#   GOAL CONTRIBUTIONS
# ─────────────────────────────

def contribute_to_goal(
    session: Session,
    user: User,
    goal_id: uuid.UUID,
    amount: Decimal,
    description: Optional[str] = None,
    source: ContributionSource = ContributionSource.MANUAL,
    now: Optional[datetime] = None,
) -> Goal:
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("Valid contribution amount is required")
    goal = goal_tracker.get_goal(session, user.id, goal_id)
    return goal_tracker.contribute(session, goal.id, Decimal(amount), source, description, now)
