"""
Budget aggregation.

``Budget.spent`` is a cache over the expense ledger. Two paths maintain it:

- ``apply_delta`` adds the signed change caused by one expense mutation;
- ``recompute_from_ledger`` replaces it with the authoritative ledger sum.

Both paths write through a compare-and-swap on ``Budget.version`` so two
requests touching the same budget cannot lose each other's update, and both
converge on the same value for the same ledger. Thresholds only ever trip
on ``apply_delta``; ``recompute_from_ledger`` is the one place allowed to
clear them again.
"""

import math
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_, text, update
from sqlmodel import Session, select

from ..config import settings
from ..errors import ConflictError, ConsistencyError, NotFoundError, ValidationError
from ..logger import get_logger
from ..models.budget import Budget, BudgetPeriod, BudgetThreshold
from ..models.expense import Expense, ExpenseCategory, ExpenseStatus
from .scope import BudgetScope, scope_from_column

logger = get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


# ─────────────────────────────
#   DERIVED FIELDS
# ─────────────────────────────

def percentage_used(budget: Budget) -> float:
    if budget.amount <= 0:
        return 0.0
    return min(100.0, float(Decimal(budget.spent) / Decimal(budget.amount) * 100))


def classify(percentage: float) -> str:
    if percentage >= 100:
        return "exceeded"
    if percentage >= 90:
        return "critical"
    if percentage >= 75:
        return "warning"
    if percentage >= 50:
        return "moderate"
    return "good"


def remaining(budget: Budget) -> Decimal:
    return max(ZERO, Decimal(budget.amount) - Decimal(budget.spent))


def days_in_window(budget: Budget) -> int:
    return (budget.end_date - budget.start_date).days + 1


def days_elapsed(budget: Budget, now: datetime) -> int:
    elapsed = (now - datetime.combine(budget.start_date, dtime.min)).total_seconds() / 86400
    return max(1, math.ceil(elapsed))


def days_remaining(budget: Budget, now: datetime) -> int:
    window_close = datetime.combine(budget.end_date + timedelta(days=1), dtime.min)
    return max(0, math.ceil((window_close - now).total_seconds() / 86400))


def daily_spending_rate(budget: Budget, now: datetime) -> Decimal:
    return (Decimal(budget.spent) / days_elapsed(budget, now)).quantize(CENT)


def projected_spend(budget: Budget, now: datetime) -> Decimal:
    """Straight-line projection of the spend at the end of the window."""
    rate = Decimal(budget.spent) / days_elapsed(budget, now)
    return (rate * days_in_window(budget)).quantize(CENT)


def default_window(period: BudgetPeriod, start: date):
    if period == BudgetPeriod.WEEKLY:
        return start, start + timedelta(days=6)
    if period == BudgetPeriod.YEARLY:
        return start, start + relativedelta(years=1) - timedelta(days=1)
    return start, start + relativedelta(day=31)


def _reached(spent: Decimal, amount: Decimal, percentage: int) -> bool:
    # Exact comparison, avoids float rounding right at a boundary
    return Decimal(spent) * 100 >= Decimal(amount) * percentage


# ─────────────────────────────
#   LEDGER READS
# ─────────────────────────────

def ledger_total(
    session: Session,
    user_id: uuid.UUID,
    scope: BudgetScope,
    start: date,
    end: date,
) -> Decimal:
    stmt = select(func.coalesce(func.sum(Expense.amount), 0)).where(
        Expense.user_id == user_id,
        Expense.deleted_at.is_(None),
        Expense.status == ExpenseStatus.COMPLETED,
        Expense.expense_date >= start,
        Expense.expense_date <= end,
        scope.expense_filter(),
    )
    total = session.exec(stmt).one()
    return Decimal(str(total or 0)).quantize(CENT)


def load_thresholds(session: Session, budget_id: uuid.UUID) -> List[BudgetThreshold]:
    stmt = (
        select(BudgetThreshold)
        .where(BudgetThreshold.budget_id == budget_id)
        .order_by(BudgetThreshold.percentage)
    )
    return list(session.exec(stmt).all())


def get_budget(session: Session, user_id: uuid.UUID, budget_id: uuid.UUID) -> Budget:
    budget = session.get(Budget, budget_id)
    if not budget or budget.user_id != user_id:
        raise NotFoundError("Budget not found")
    return budget


def list_budgets(
    session: Session,
    user_id: uuid.UUID,
    today: date,
    active_only: bool = True,
    scope: Optional[BudgetScope] = None,
    period: Optional[BudgetPeriod] = None,
) -> List[Budget]:
    stmt = select(Budget).where(Budget.user_id == user_id)
    if active_only:
        stmt = stmt.where(
            Budget.is_active == True,  # noqa: E712
            Budget.start_date <= today,
            Budget.end_date >= today,
        )
    if scope is not None:
        stmt = stmt.where(scope.budget_filter())
    if period is not None:
        stmt = stmt.where(Budget.period == period)
    stmt = stmt.order_by(Budget.created_at.desc())
    return list(session.exec(stmt).all())


def find_overlapping(
    session: Session,
    user_id: uuid.UUID,
    scope: BudgetScope,
    start: date,
    end: date,
) -> Optional[Budget]:
    stmt = select(Budget).where(
        Budget.user_id == user_id,
        Budget.is_active == True,  # noqa: E712
        scope.budget_filter(),
        Budget.start_date <= end,
        Budget.end_date >= start,
    )
    return session.exec(stmt).first()


def affected_budgets(
    session: Session,
    user_id: uuid.UUID,
    category: ExpenseCategory,
    on_date: date,
) -> List[Budget]:
    """Active budgets whose window contains ``on_date`` and whose scope matches ``category``."""
    stmt = select(Budget).where(
        Budget.user_id == user_id,
        Budget.is_active == True,  # noqa: E712
        Budget.start_date <= on_date,
        Budget.end_date >= on_date,
        or_(Budget.category == category, Budget.category.is_(None)),
    )
    return list(session.exec(stmt).all())


# ─────────────────────────────
#   THRESHOLDS
# ─────────────────────────────

def normalize_thresholds(percentages: Optional[Sequence[int]]) -> List[int]:
    values = list(percentages) if percentages else list(settings.default_alert_thresholds)
    for value in values:
        if not 1 <= int(value) <= 100:
            raise ValidationError("Alert thresholds must be between 1 and 100")
    return sorted({int(v) for v in values})


def _trip(thresholds: List[BudgetThreshold], spent: Decimal, amount: Decimal, now: datetime) -> List[int]:
    tripped = []
    for threshold in thresholds:
        if not threshold.triggered and _reached(spent, amount, threshold.percentage):
            threshold.triggered = True
            threshold.triggered_at = now
            tripped.append(threshold.percentage)
    return tripped


def _clear(thresholds: List[BudgetThreshold], spent: Decimal, amount: Decimal) -> List[int]:
    cleared = []
    for threshold in thresholds:
        if threshold.triggered and not _reached(spent, amount, threshold.percentage):
            threshold.triggered = False
            threshold.triggered_at = None
            cleared.append(threshold.percentage)
    return cleared


# ─────────────────────────────
#   CACHE MAINTENANCE
# ─────────────────────────────

def _swap_spent(session: Session, budget: Budget, new_spent: Decimal, now: datetime) -> bool:
    """Write ``new_spent`` only if nobody bumped the version since ``budget`` was read."""
    stmt = (
        update(Budget)
        .where(Budget.id == budget.id, Budget.version == budget.version)
        .values(spent=new_spent, version=budget.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)
    return result.rowcount == 1


def _bound_statement_time(session: Session) -> None:
    bind = session.get_bind()
    if bind.dialect.name == "postgresql":
        timeout_ms = int(settings.recompute_timeout_seconds * 1000)
        session.exec(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def apply_delta(
    session: Session,
    budget_id: uuid.UUID,
    delta: Decimal,
    now: Optional[datetime] = None,
) -> Budget:
    """Add ``delta`` to the cached spend, clamp at zero and trip any newly reached thresholds."""
    now = now or datetime.utcnow()
    delta = Decimal(delta)

    for attempt in range(settings.cas_max_retries):
        budget = session.get(Budget, budget_id, populate_existing=True)
        if budget is None:
            raise NotFoundError("Budget not found")

        raw = Decimal(budget.spent) + delta
        if raw < ZERO:
            logger.warning(
                "budget_spent_clamped",
                budget_id=str(budget_id),
                spent=str(budget.spent),
                delta=str(delta),
            )
        new_spent = max(ZERO, raw)

        if not _swap_spent(session, budget, new_spent, now):
            session.rollback()
            logger.info("budget_cas_retry", budget_id=str(budget_id), attempt=attempt + 1)
            continue

        thresholds = load_thresholds(session, budget_id)
        tripped = _trip(thresholds, new_spent, budget.amount, now)
        for threshold in thresholds:
            session.add(threshold)
        session.commit()

        for pct in tripped:
            logger.info("budget_threshold_triggered", budget_id=str(budget_id), threshold=pct)

        session.refresh(budget)
        return budget

    raise ConsistencyError(f"Could not apply delta to budget {budget_id}: concurrent updates")


def recompute_from_ledger(
    session: Session,
    budget_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Budget:
    """
    Replace the cached spend with the ledger sum and re-evaluate every threshold.

    The sum and the write happen in one transaction guarded by the version
    check, so running this alongside live mutations either lands a snapshot
    or retries. Safe to call repeatedly.
    """
    now = now or datetime.utcnow()
    deadline = time.monotonic() + settings.recompute_timeout_seconds
    attempt = 0

    while True:
        budget = session.get(Budget, budget_id, populate_existing=True)
        if budget is None:
            raise NotFoundError("Budget not found")

        _bound_statement_time(session)
        scope = scope_from_column(budget.category)
        total = ledger_total(session, budget.user_id, scope, budget.start_date, budget.end_date)
        previous = Decimal(budget.spent)

        if _swap_spent(session, budget, total, now):
            thresholds = load_thresholds(session, budget_id)
            tripped = _trip(thresholds, total, budget.amount, now)
            cleared = _clear(thresholds, total, budget.amount)
            for threshold in thresholds:
                session.add(threshold)
            session.commit()

            if previous != total:
                logger.info(
                    "budget_reconciled",
                    budget_id=str(budget_id),
                    cached=str(previous),
                    ledger=str(total),
                )
            for pct in tripped:
                logger.info("budget_threshold_triggered", budget_id=str(budget_id), threshold=pct)
            for pct in cleared:
                logger.info("budget_threshold_cleared", budget_id=str(budget_id), threshold=pct)

            session.refresh(budget)
            return budget

        session.rollback()
        attempt += 1
        if attempt >= settings.cas_max_retries or time.monotonic() > deadline:
            raise ConsistencyError(f"Could not reconcile budget {budget_id}: concurrent updates")
        logger.info("budget_cas_retry", budget_id=str(budget_id), attempt=attempt)


def reconcile_quietly(session: Session, budget_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    """Reconcile, leaving the cache stale for the next sweep if that fails too."""
    try:
        recompute_from_ledger(session, budget_id, now)
    except ConsistencyError as exc:
        session.rollback()
        logger.error("budget_reconcile_failed", budget_id=str(budget_id), error=exc.detail)


# ─────────────────────────────
#   LIFECYCLE
# ─────────────────────────────

def _insert_budget(
    session: Session,
    *,
    user_id: uuid.UUID,
    name: str,
    scope: BudgetScope,
    amount: Decimal,
    currency: str,
    period: BudgetPeriod,
    start: date,
    end: date,
    thresholds: List[int],
    alerts_enabled: bool,
    auto_renew: bool,
    now: datetime,
    renewed_from_id: Optional[uuid.UUID] = None,
) -> Budget:
    budget = Budget(
        id=uuid.uuid4(),
        user_id=user_id,
        name=name,
        category=scope.column_value,
        amount=amount,
        currency=currency,
        period=period,
        start_date=start,
        end_date=end,
        spent=ZERO,
        alerts_enabled=alerts_enabled,
        auto_renew=auto_renew,
        renewed_from_id=renewed_from_id,
        created_at=now,
        updated_at=now,
    )
    session.add(budget)
    for pct in thresholds:
        session.add(BudgetThreshold(budget_id=budget.id, percentage=pct))
    return budget


def create_budget(
    session: Session,
    user_id: uuid.UUID,
    name: str,
    scope: BudgetScope,
    amount: Decimal,
    currency: str,
    period: BudgetPeriod = BudgetPeriod.MONTHLY,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    thresholds: Optional[Sequence[int]] = None,
    alerts_enabled: bool = True,
    auto_renew: bool = True,
    now: Optional[datetime] = None,
) -> Budget:
    now = now or datetime.utcnow()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("Budget amount must be positive")

    start, default_end = default_window(period, start_date or now.date())
    end = end_date or default_end
    if end < start:
        raise ValidationError("End date must not be before start date")
    percentages = normalize_thresholds(thresholds)

    if find_overlapping(session, user_id, scope, start, end) is not None:
        raise ConflictError(f"Active budget already exists for {scope.label} in this period")

    budget = _insert_budget(
        session,
        user_id=user_id,
        name=name,
        scope=scope,
        amount=Decimal(amount),
        currency=currency,
        period=period,
        start=start,
        end=end,
        thresholds=percentages,
        alerts_enabled=alerts_enabled,
        auto_renew=auto_renew,
        now=now,
    )
    session.commit()
    logger.info("budget_created", budget_id=str(budget.id), scope=scope.label, start=str(start), end=str(end))

    reconcile_quietly(session, budget.id, now)
    session.refresh(budget)
    return budget


def duplicate_budget(
    session: Session,
    user_id: uuid.UUID,
    budget_id: uuid.UUID,
    start_date: date,
    end_date: date,
    now: Optional[datetime] = None,
) -> Budget:
    """Copy a budget into a new window, with fresh (untriggered) thresholds."""
    now = now or datetime.utcnow()
    source = get_budget(session, user_id, budget_id)
    if end_date < start_date:
        raise ValidationError("End date must not be before start date")

    scope = scope_from_column(source.category)
    if find_overlapping(session, user_id, scope, start_date, end_date) is not None:
        raise ConflictError("Budget already exists for this period")

    percentages = [t.percentage for t in load_thresholds(session, source.id)]
    budget = _insert_budget(
        session,
        user_id=user_id,
        name=source.name,
        scope=scope,
        amount=Decimal(source.amount),
        currency=source.currency,
        period=source.period,
        start=start_date,
        end=end_date,
        thresholds=percentages or normalize_thresholds(None),
        alerts_enabled=source.alerts_enabled,
        auto_renew=source.auto_renew,
        now=now,
    )
    session.commit()
    reconcile_quietly(session, budget.id, now)
    session.refresh(budget)
    return budget


def update_budget(
    session: Session,
    user_id: uuid.UUID,
    budget_id: uuid.UUID,
    name: Optional[str] = None,
    amount: Optional[Decimal] = None,
    alerts_enabled: Optional[bool] = None,
    auto_renew: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Budget:
    now = now or datetime.utcnow()
    budget = get_budget(session, user_id, budget_id)

    if name is not None and not name.strip():
        raise ValidationError("Name is required")
    if amount is not None and Decimal(amount) <= 0:
        raise ValidationError("Budget amount must be positive")

    amount_changed = amount is not None and Decimal(amount) != Decimal(budget.amount)
    values = {"updated_at": now, "version": Budget.version + 1}
    if name is not None:
        values["name"] = name.strip()
    if amount is not None:
        values["amount"] = Decimal(amount)
    if alerts_enabled is not None:
        values["alerts_enabled"] = alerts_enabled
    if auto_renew is not None:
        values["auto_renew"] = auto_renew

    # Increment in SQL so a concurrent apply_delta never sees its version reused
    session.exec(
        update(Budget)
        .where(Budget.id == budget.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if amount_changed:
        # Thresholds are percentages of the amount
        reconcile_quietly(session, budget.id, now)
    session.refresh(budget)
    return budget


def deactivate_budget(session: Session, user_id: uuid.UUID, budget_id: uuid.UUID) -> None:
    budget = get_budget(session, user_id, budget_id)
    budget.is_active = False
    budget.updated_at = datetime.utcnow()
    session.add(budget)
    session.commit()


# ─────────────────────────────
#   READ MODELS
# ─────────────────────────────

@dataclass
class BudgetAlert:
    type: str
    budget_id: uuid.UUID
    budget_name: str
    category: str
    severity: str
    amount: Decimal
    spent: Decimal
    threshold: Optional[int] = None
    current_percentage: Optional[float] = None
    remaining: Optional[Decimal] = None
    triggered_at: Optional[datetime] = None
    projected_spending: Optional[Decimal] = None
    days_remaining: Optional[int] = None


@dataclass
class BudgetSummary:
    total_budget: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    budget_count: int
    over_budget_count: int
    overall_percentage: float


def budget_alerts(session: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> List[BudgetAlert]:
    now = now or datetime.utcnow()
    alerts: List[BudgetAlert] = []

    for budget in list_budgets(session, user_id, now.date(), active_only=True):
        if not budget.alerts_enabled:
            continue
        label = scope_from_column(budget.category).label
        percentage = percentage_used(budget)

        for threshold in load_thresholds(session, budget.id):
            if threshold.triggered and _reached(budget.spent, budget.amount, threshold.percentage):
                alerts.append(
                    BudgetAlert(
                        type="threshold",
                        budget_id=budget.id,
                        budget_name=budget.name,
                        category=label,
                        severity="critical" if percentage >= 100 else "high" if percentage >= 90 else "medium",
                        amount=budget.amount,
                        spent=budget.spent,
                        threshold=threshold.percentage,
                        current_percentage=round(percentage, 2),
                        remaining=remaining(budget),
                        triggered_at=threshold.triggered_at,
                    )
                )

        projected = projected_spend(budget, now)
        left = days_remaining(budget, now)
        if projected > budget.amount and left > 0:
            alerts.append(
                BudgetAlert(
                    type="projection",
                    budget_id=budget.id,
                    budget_name=budget.name,
                    category=label,
                    severity="warning",
                    amount=budget.amount,
                    spent=budget.spent,
                    projected_spending=projected,
                    days_remaining=left,
                )
            )

    return alerts


def budget_summary(session: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> BudgetSummary:
    now = now or datetime.utcnow()
    budgets = list_budgets(session, user_id, now.date(), active_only=True)

    total_budget = sum((Decimal(b.amount) for b in budgets), ZERO)
    total_spent = sum((Decimal(b.spent) for b in budgets), ZERO)
    return BudgetSummary(
        total_budget=total_budget,
        total_spent=total_spent,
        total_remaining=total_budget - total_spent,
        budget_count=len(budgets),
        over_budget_count=sum(1 for b in budgets if b.spent > b.amount),
        overall_percentage=round(float(total_spent / total_budget * 100), 2) if total_budget > 0 else 0.0,
    )


# ─────────────────────────────
#   SCHEDULED SWEEPS
# ─────────────────────────────

@dataclass
class RenewalResult:
    budget_id: uuid.UUID
    budget_name: str
    status: str
    start_date: date
    end_date: date
    successor_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    budget_id: uuid.UUID
    status: str
    spent_before: Optional[Decimal] = None
    spent_after: Optional[Decimal] = None
    error: Optional[str] = None


def _renew(session: Session, budget: Budget, start: date, end: date, now: datetime) -> Budget:
    scope = scope_from_column(budget.category)
    if find_overlapping(session, budget.user_id, scope, start, end) is not None:
        raise ConflictError("A budget already covers the next window")

    percentages = [t.percentage for t in load_thresholds(session, budget.id)]
    successor = _insert_budget(
        session,
        user_id=budget.user_id,
        name=budget.name,
        scope=scope,
        amount=Decimal(budget.amount),
        currency=budget.currency,
        period=budget.period,
        start=start,
        end=end,
        thresholds=percentages or normalize_thresholds(None),
        alerts_enabled=budget.alerts_enabled,
        auto_renew=True,
        now=now,
        renewed_from_id=budget.id,
    )
    # The successor carries the renewal forward
    budget.auto_renew = False
    budget.updated_at = now
    session.add(budget)
    session.commit()

    reconcile_quietly(session, successor.id, now)
    return successor


def renew_expired_budgets(session: Session, now: Optional[datetime] = None) -> List[RenewalResult]:
    """
    Roll every expired auto-renew budget into the window right after it.

    The new window has the same length and starts the day after the old
    end date. One item failing never stops the sweep.
    """
    now = now or datetime.utcnow()
    stmt = select(Budget).where(
        Budget.is_active == True,  # noqa: E712
        Budget.auto_renew == True,  # noqa: E712
        Budget.end_date < now.date(),
    )
    expired = [(b.id, b.name, b.start_date, b.end_date) for b in session.exec(stmt).all()]

    results: List[RenewalResult] = []
    for budget_id, name, start, end in expired:
        new_start = end + timedelta(days=1)
        new_end = new_start + (end - start)
        try:
            budget = session.get(Budget, budget_id)
            successor = _renew(session, budget, new_start, new_end, now)
        except ConflictError as exc:
            session.rollback()
            results.append(RenewalResult(budget_id, name, "skipped", new_start, new_end, error=exc.detail))
        except Exception as exc:
            session.rollback()
            logger.exception("budget_renewal_failed", budget_id=str(budget_id))
            results.append(RenewalResult(budget_id, name, "failed", new_start, new_end, error=str(exc)))
        else:
            results.append(RenewalResult(budget_id, name, "success", new_start, new_end, successor_id=successor.id))

    logger.info(
        "budget_renewal_sweep",
        processed=len(results),
        renewed=sum(1 for r in results if r.status == "success"),
    )
    return results


def reconcile_all(session: Session, now: Optional[datetime] = None) -> List[ReconcileResult]:
    """Drift sweep: recompute every active budget from the ledger."""
    now = now or datetime.utcnow()
    stmt = select(Budget.id, Budget.spent).where(Budget.is_active == True)  # noqa: E712
    rows = list(session.exec(stmt).all())

    results: List[ReconcileResult] = []
    for budget_id, cached in rows:
        try:
            budget = recompute_from_ledger(session, budget_id, now)
        except Exception as exc:
            session.rollback()
            logger.exception("budget_reconcile_failed", budget_id=str(budget_id))
            results.append(ReconcileResult(budget_id, "failed", spent_before=cached, error=str(exc)))
        else:
            results.append(ReconcileResult(budget_id, "success", spent_before=cached, spent_after=budget.spent))

    logger.info(
        "budget_reconcile_sweep",
        processed=len(results),
        drifted=sum(1 for r in results if r.spent_after is not None and r.spent_after != r.spent_before),
    )
    return results
