import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Field, Session, SQLModel

from ..core import income_rollup
from ..core.frequency import Frequency, monthly_equivalent
from ..core.security import get_current_user
from ..database import get_session
from ..models.income import Income, IncomeType
from ..models.user import User
from ..services import ledger
from .insights import InsightRead


router = APIRouter(
    prefix="/income",
    tags=["income"],
)


class IncomeCreate(SQLModel):
    source: str = Field(min_length=1, max_length=100)
    type: IncomeType = IncomeType.OTHER
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, regex="^[A-Z]{3}$")
    frequency: Frequency = Frequency.MONTHLY
    description: Optional[str] = Field(default=None, max_length=200)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_recurring: bool = True
    taxable: bool = True


class IncomeUpdate(SQLModel):
    source: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[IncomeType] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    frequency: Optional[Frequency] = None
    description: Optional[str] = Field(default=None, max_length=200)
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    is_recurring: Optional[bool] = None
    taxable: Optional[bool] = None


class ReceivedIn(SQLModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    received_on: Optional[date] = None


class IncomeRead(SQLModel):
    id: uuid.UUID
    source: str
    type: IncomeType
    amount: Decimal
    currency: str
    frequency: Frequency
    description: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    is_recurring: bool
    taxable: bool
    last_received: Optional[date] = None
    next_expected: Optional[date] = None
    total_received: Decimal
    monthly_amount: Decimal
    created_at: datetime
    updated_at: datetime


class SourceBreakdownRead(SQLModel):
    income_id: uuid.UUID
    source: str
    type: IncomeType
    frequency: Frequency
    annual_amount: Decimal


class IncomeSummaryRead(SQLModel):
    total_annual: Decimal
    total_monthly: Decimal
    source_count: int
    breakdown: List[SourceBreakdownRead]


class IncomeTypeRead(SQLModel):
    type: IncomeType
    total: Decimal
    count: int
    sources: List[dict]


class SavingsRead(SQLModel):
    savings_rate: float
    expense_to_income_ratio: float
    no_income: bool


class IncomeVsExpensesRead(SQLModel):
    annual_income: Decimal
    monthly_income: Decimal
    avg_monthly_expenses: Decimal
    total_expenses: Decimal
    months: int
    savings: SavingsRead
    insights: List[InsightRead]


def _to_read(income: Income) -> IncomeRead:
    monthly = monthly_equivalent(income.amount, income.frequency).quantize(Decimal("0.01"))
    return IncomeRead(**income.model_dump(), monthly_amount=monthly)


@router.get(
    "",
    response_model=List[IncomeRead],
)
def list_income(
    active_only: bool = True,
    type: Optional[IncomeType] = None,
    frequency: Optional[Frequency] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return [_to_read(i) for i in ledger.find_incomes(session, current_user.id, active_only, type, frequency)]


@router.post(
    "",
    response_model=IncomeRead,
    status_code=status.HTTP_201_CREATED,
)
def create_income(
    payload: IncomeCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return _to_read(ledger.create_income(session, current_user, **payload.model_dump()))


@router.get(
    "/summary",
    response_model=IncomeSummaryRead,
)
def income_summary(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    totals = income_rollup.total_annual_income(session, current_user.id)
    return IncomeSummaryRead(
        total_annual=totals.total_annual,
        total_monthly=totals.total_monthly,
        source_count=totals.source_count,
        breakdown=[SourceBreakdownRead(**vars(b)) for b in totals.breakdown],
    )


@router.get(
    "/by-type",
    response_model=List[IncomeTypeRead],
)
def income_by_type(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    rows = income_rollup.income_by_type(session, current_user.id, year or date.today().year)
    return [IncomeTypeRead(**vars(r)) for r in rows]


@router.get(
    "/upcoming",
    response_model=List[IncomeRead],
)
def upcoming_income(
    days: int = Query(default=30, ge=1, le=365),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return [_to_read(i) for i in income_rollup.upcoming_income(session, current_user.id, days)]


@router.get(
    "/analytics/vs-expenses",
    response_model=IncomeVsExpensesRead,
)
def income_vs_expenses(
    months: int = Query(default=6, ge=1, le=24),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    analysis = income_rollup.income_vs_expense_analysis(session, current_user.id, months, datetime.utcnow())
    return IncomeVsExpensesRead(
        annual_income=analysis.annual_income,
        monthly_income=analysis.monthly_income,
        avg_monthly_expenses=analysis.avg_monthly_expenses,
        total_expenses=analysis.total_expenses,
        months=analysis.months,
        savings=SavingsRead(**vars(analysis.savings)),
        insights=[InsightRead(**vars(i)) for i in analysis.insights],
    )


@router.get(
    "/{income_id}",
    response_model=IncomeRead,
)
def get_income(
    income_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return _to_read(ledger.get_income(session, current_user.id, income_id))


@router.patch(
    "/{income_id}",
    response_model=IncomeRead,
)
def update_income(
    income_id: uuid.UUID,
    payload: IncomeUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    changes = payload.model_dump(exclude_unset=True)
    return _to_read(ledger.update_income(session, current_user, income_id, **changes))


@router.post(
    "/{income_id}/received",
    response_model=IncomeRead,
)
def mark_received(
    income_id: uuid.UUID,
    payload: ReceivedIn,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    income = ledger.mark_income_received(session, current_user, income_id, payload.amount, payload.received_on)
    return _to_read(income)


@router.delete(
    "/{income_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_income(
    income_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    ledger.delete_income(session, current_user, income_id)
    return None
