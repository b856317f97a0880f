import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Field, Session, SQLModel

from ..core import budget_aggregator as agg
from ..core.scope import TOTAL_LABEL, BudgetScope, scope_from_column, scope_from_label
from ..core.security import get_current_user
from ..database import get_session
from ..models.budget import Budget, BudgetPeriod
from ..models.user import User


router = APIRouter(
    prefix="/budgets",
    tags=["budgets"],
)


class BudgetCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    # An expense category, or "total" for every category
    category: str = Field(default=TOTAL_LABEL, min_length=1, max_length=50)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    alert_thresholds: Optional[List[int]] = None
    alerts_enabled: bool = True
    auto_renew: bool = True


class BudgetUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    alerts_enabled: Optional[bool] = None
    auto_renew: Optional[bool] = None


class BudgetDuplicate(SQLModel):
    start_date: date
    end_date: date


class ThresholdRead(SQLModel):
    percentage: int
    triggered: bool
    triggered_at: Optional[datetime] = None


class BudgetRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    category: str
    amount: Decimal
    currency: str
    period: BudgetPeriod
    start_date: date
    end_date: date
    spent: Decimal
    alerts_enabled: bool
    auto_renew: bool
    is_active: bool
    renewed_from_id: Optional[uuid.UUID] = None
    thresholds: List[ThresholdRead]

    remaining: Decimal
    percentage_used: float
    status: str
    days_remaining: int
    daily_spending_rate: Decimal
    projected_spend: Decimal

    created_at: datetime
    updated_at: datetime


class BudgetAlertRead(SQLModel):
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


class BudgetSummaryRead(SQLModel):
    total_budget: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    budget_count: int
    over_budget_count: int
    overall_percentage: float


def _parse_scope(label: str) -> BudgetScope:
    try:
        return scope_from_label(label.strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid category: {label}")


def _to_read(session: Session, budget: Budget, now: datetime) -> BudgetRead:
    percentage = agg.percentage_used(budget)
    return BudgetRead(
        id=budget.id,
        user_id=budget.user_id,
        name=budget.name,
        category=scope_from_column(budget.category).label,
        amount=budget.amount,
        currency=budget.currency,
        period=budget.period,
        start_date=budget.start_date,
        end_date=budget.end_date,
        spent=budget.spent,
        alerts_enabled=budget.alerts_enabled,
        auto_renew=budget.auto_renew,
        is_active=budget.is_active,
        renewed_from_id=budget.renewed_from_id,
        thresholds=[
            ThresholdRead(percentage=t.percentage, triggered=t.triggered, triggered_at=t.triggered_at)
            for t in agg.load_thresholds(session, budget.id)
        ],
        remaining=agg.remaining(budget),
        percentage_used=round(percentage, 2),
        status=agg.classify(percentage),
        days_remaining=agg.days_remaining(budget, now),
        daily_spending_rate=agg.daily_spending_rate(budget, now),
        projected_spend=agg.projected_spend(budget, now),
        created_at=budget.created_at,
        updated_at=budget.updated_at,
    )


@router.get(
    "",
    response_model=List[BudgetRead],
    status_code=status.HTTP_200_OK,
)
def list_budgets(
    category: Optional[str] = None,
    period: Optional[BudgetPeriod] = None,
    active_only: bool = True,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Budgets covering today by default; ``active_only=false`` lists every budget ever created."""
    now = datetime.utcnow()
    scope = _parse_scope(category) if category else None
    budgets = agg.list_budgets(session, current_user.id, now.date(), active_only=active_only, scope=scope, period=period)
    return [_to_read(session, b, now) for b in budgets]


@router.post(
    "",
    response_model=BudgetRead,
    status_code=status.HTTP_201_CREATED,
)
def create_budget(
    payload: BudgetCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    budget = agg.create_budget(
        session,
        current_user.id,
        name=payload.name,
        scope=_parse_scope(payload.category),
        amount=payload.amount,
        currency=current_user.default_currency,
        period=payload.period,
        start_date=payload.start_date,
        end_date=payload.end_date,
        thresholds=payload.alert_thresholds,
        alerts_enabled=payload.alerts_enabled,
        auto_renew=payload.auto_renew,
        now=now,
    )
    return _to_read(session, budget, now)


@router.get(
    "/alerts",
    response_model=List[BudgetAlertRead],
    status_code=status.HTTP_200_OK,
)
def budget_alerts(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return [BudgetAlertRead(**vars(a)) for a in agg.budget_alerts(session, current_user.id)]


@router.get(
    "/summary",
    response_model=BudgetSummaryRead,
    status_code=status.HTTP_200_OK,
)
def budget_summary(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return BudgetSummaryRead(**vars(agg.budget_summary(session, current_user.id)))


@router.get(
    "/{budget_id}",
    response_model=BudgetRead,
    status_code=status.HTTP_200_OK,
)
def get_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return _to_read(session, agg.get_budget(session, current_user.id, budget_id), datetime.utcnow())


@router.patch(
    "/{budget_id}",
    response_model=BudgetRead,
    status_code=status.HTTP_200_OK,
)
def update_budget(
    budget_id: uuid.UUID,
    payload: BudgetUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    budget = agg.update_budget(
        session,
        current_user.id,
        budget_id,
        name=payload.name,
        amount=payload.amount,
        alerts_enabled=payload.alerts_enabled,
        auto_renew=payload.auto_renew,
        now=now,
    )
    return _to_read(session, budget, now)


@router.post(
    "/{budget_id}/recalculate",
    response_model=BudgetRead,
    status_code=status.HTTP_200_OK,
)
def recalculate_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    budget = agg.get_budget(session, current_user.id, budget_id)
    agg.reconcile_quietly(session, budget.id, now)
    session.refresh(budget)
    return _to_read(session, budget, now)


@router.post(
    "/{budget_id}/duplicate",
    response_model=BudgetRead,
    status_code=status.HTTP_201_CREATED,
)
def duplicate_budget(
    budget_id: uuid.UUID,
    payload: BudgetDuplicate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    budget = agg.duplicate_budget(session, current_user.id, budget_id, payload.start_date, payload.end_date, now)
    return _to_read(session, budget, now)


@router.delete(
    "/{budget_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    agg.deactivate_budget(session, current_user.id, budget_id)
    return None
