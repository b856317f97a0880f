import uuid
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Field, Session, SQLModel

from ..core import expense_analytics as analytics
from ..core.security import get_current_user
from ..database import get_session
from ..models.expense import ExpenseCategory, ExpenseStatus
from ..models.user import User
from ..services import ledger

router = APIRouter(
    prefix="/expenses",
    tags=["expenses"],
)

# ─────────────────────────────
#   SCHEMAS (Pydantic/SQLModel)
# ─────────────────────────────

class ExpenseBase(SQLModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, regex="^[A-Z]{3}$")
    description: str = Field(min_length=1, max_length=255)
    category: ExpenseCategory = Field(default=ExpenseCategory.OTHER)
    expense_date: Optional[date] = None
    status: ExpenseStatus = Field(default=ExpenseStatus.COMPLETED)


class ExpenseCreate(ExpenseBase):
    recurring_template_id: Optional[uuid.UUID] = None


class ExpenseUpdate(SQLModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, regex="^[A-Z]{3}$")
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[ExpenseCategory] = None
    expense_date: Optional[date] = None
    status: Optional[ExpenseStatus] = None


class ExpenseRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    amount: Decimal
    currency: str
    description: str
    category: ExpenseCategory
    expense_date: date
    status: ExpenseStatus
    recurring_template_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class ExpensePage(SQLModel):
    items: List[ExpenseRead]
    total: int
    page: int
    limit: int


class ExpenseTotal(SQLModel):
    category: Optional[ExpenseCategory] = None
    start_date: date
    end_date: date
    total: Decimal


class CategoryStatRead(SQLModel):
    category: ExpenseCategory
    total: Decimal
    count: int
    avg_amount: Decimal


class MonthTotalRead(SQLModel):
    month: str
    total: Decimal


class DayTotalRead(SQLModel):
    day: int
    total: Decimal
    count: int


class ExpenseAnalyticsRead(SQLModel):
    year: int
    month: int
    monthly_stats: List[CategoryStatRead]
    spending_trend: List[MonthTotalRead]
    top_categories: List[CategoryStatRead]
    daily_spending: List[DayTotalRead]


class MonthComparisonRead(SQLModel):
    this_month: Decimal
    last_month: Decimal
    change_percentage: float
    trend: str


class RecurringCandidateRead(SQLModel):
    description: str
    category: ExpenseCategory
    frequency: int
    avg_amount: Decimal


class ExpenseInsightsRead(SQLModel):
    monthly_comparison: MonthComparisonRead
    top_categories: List[CategoryStatRead]
    recurring_candidates: List[RecurringCandidateRead]


def _not_in_future(value: Optional[date]) -> None:
    if value is not None and value > date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Expense date cannot be in the future",
        )


# ─────────────────────────────
#   ENDPOINTS
# ─────────────────────────────

@router.post(
    "",
    response_model=ExpenseRead,
    status_code=status.HTTP_201_CREATED,
)
def create_expense(
    expense_in: ExpenseCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Record an expense for the authenticated user.

    Budgets whose window and scope cover the expense are updated after the
    expense itself is stored.
    """
    _not_in_future(expense_in.expense_date)
    return ledger.record_expense(
        session,
        current_user,
        amount=expense_in.amount,
        category=expense_in.category,
        description=expense_in.description,
        expense_date=expense_in.expense_date,
        currency=expense_in.currency,
        status=expense_in.status,
        recurring_template_id=expense_in.recurring_template_id,
    )


@router.get(
    "",
    response_model=ExpensePage,
)
def list_expenses(
    category: Optional[ExpenseCategory] = None,
    status_filter: Optional[ExpenseStatus] = Query(default=ExpenseStatus.COMPLETED, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    sort_by: str = "expense_date",
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """List live expenses, newest first unless told otherwise."""
    flt = ledger.ExpenseFilter(
        category=category,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        descending=order == "desc",
        limit=limit,
        offset=(page - 1) * limit,
    )
    items, total = ledger.find_expenses(session, current_user.id, flt)
    return ExpensePage(
        items=[ExpenseRead.model_validate(e, from_attributes=True) for e in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/total",
    response_model=ExpenseTotal,
)
def expense_total(
    start_date: date,
    end_date: date,
    category: Optional[ExpenseCategory] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="End date must not be before start date",
        )
    total = ledger.sum_expenses(session, current_user.id, category, start_date, end_date)
    return ExpenseTotal(category=category, start_date=start_date, end_date=end_date, total=total)


@router.get(
    "/analytics/stats",
    response_model=ExpenseAnalyticsRead,
)
def expense_analytics(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Category, daily and six-month views of completed spend for one month (default: this month)."""
    stats = analytics.expense_analytics(session, current_user.id, year, month)
    return ExpenseAnalyticsRead(**asdict(stats))


@router.get(
    "/analytics/insights",
    response_model=ExpenseInsightsRead,
)
def expense_insights(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    insights = analytics.expense_insights(session, current_user.id)
    return ExpenseInsightsRead(**asdict(insights))


@router.get(
    "/{expense_id}",
    response_model=ExpenseRead,
)
def get_expense(
    expense_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ledger.get_expense(session, current_user.id, expense_id)


@router.patch(
    "/{expense_id}",
    response_model=ExpenseRead,
)
def update_expense(
    expense_id: uuid.UUID,
    expense_in: ExpenseUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Partial update; a change of amount, category, status or date moves the expense between budgets."""
    _not_in_future(expense_in.expense_date)
    return ledger.update_expense(
        session,
        current_user,
        expense_id,
        **expense_in.model_dump(exclude_unset=True),
    )


@router.delete(
    "/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_expense(
    expense_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Soft delete: marks deleted_at and takes the amount back out of every budget."""
    ledger.delete_expense(session, current_user, expense_id)
    return None
