import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Field, Session, SQLModel

from ..core import goal_tracker
from ..core.frequency import Frequency
from ..core.insights import goal_insights
from ..core.security import get_current_user
from ..database import get_session
from ..models.goal import ContributionSource, Goal, GoalCategory, GoalPriority
from ..models.user import User
from ..services import ledger
from .insights import InsightRead


router = APIRouter(
    prefix="/goals",
    tags=["goals"],
)


class GoalCreate(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    target_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    deadline: date
    category: GoalCategory = GoalCategory.OTHER
    description: Optional[str] = Field(default=None, max_length=500)
    priority: GoalPriority = GoalPriority.MEDIUM
    auto_save_enabled: bool = False
    auto_save_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    auto_save_frequency: Frequency = Frequency.MONTHLY


class GoalUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    deadline: Optional[date] = None
    category: Optional[GoalCategory] = None
    description: Optional[str] = Field(default=None, max_length=500)
    priority: Optional[GoalPriority] = None
    auto_save_enabled: Optional[bool] = None
    auto_save_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    auto_save_frequency: Optional[Frequency] = None


class ContributionIn(SQLModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=200)
    source: ContributionSource = ContributionSource.MANUAL


class ContributionRead(SQLModel):
    sequence: int
    amount: Decimal
    source: ContributionSource
    description: str
    contributed_at: datetime


class GoalRead(SQLModel):
    id: uuid.UUID
    name: str
    target_amount: Decimal
    current_amount: Decimal
    currency: str
    category: GoalCategory
    description: Optional[str] = None
    deadline: date
    priority: GoalPriority
    is_completed: bool
    completed_at: Optional[datetime] = None
    auto_save_enabled: bool
    auto_save_amount: Decimal
    auto_save_frequency: Frequency
    next_contribution: Optional[datetime] = None

    progress_percentage: float
    remaining_amount: Decimal
    days_remaining: int
    monthly_savings_needed: Decimal
    status: str

    created_at: datetime
    updated_at: datetime


class GoalDetail(GoalRead):
    contributions: List[ContributionRead]


class GoalSummaryRead(SQLModel):
    total_goals: int
    active_goals: int
    completed_goals: int
    total_target: Decimal
    total_saved: Decimal
    total_remaining: Decimal
    avg_progress: float
    overall_progress: float


class GoalCategoryRead(SQLModel):
    category: GoalCategory
    count: int
    total_target: Decimal
    total_saved: Decimal
    completed: int
    progress: float


def _derived(goal: Goal, now: datetime) -> dict:
    return dict(
        progress_percentage=round(goal_tracker.progress_percentage(goal), 2),
        remaining_amount=goal_tracker.remaining_amount(goal),
        days_remaining=goal_tracker.days_remaining(goal, now),
        monthly_savings_needed=goal_tracker.monthly_savings_needed(goal, now),
        status=goal_tracker.goal_status(goal, now),
    )


def _to_read(goal: Goal, now: datetime) -> GoalRead:
    return GoalRead(**goal.model_dump(), **_derived(goal, now))


@router.get(
    "",
    response_model=List[GoalRead],
)
def list_goals(
    status_filter: str = Query(default="all", alias="status", pattern="^(all|active|completed)$"),
    category: Optional[GoalCategory] = None,
    priority: Optional[GoalPriority] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    goals = goal_tracker.list_goals(session, current_user.id, status_filter, category, priority)
    return [_to_read(g, now) for g in goals]


@router.post(
    "",
    response_model=GoalRead,
    status_code=status.HTTP_201_CREATED,
)
def create_goal(
    payload: GoalCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    goal = goal_tracker.create_goal(
        session,
        current_user.id,
        currency=current_user.default_currency,
        now=now,
        **payload.model_dump(),
    )
    return _to_read(goal, now)


@router.get(
    "/summary",
    response_model=GoalSummaryRead,
)
def goal_summary(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return GoalSummaryRead(**vars(goal_tracker.goal_summary(session, current_user.id)))


@router.get(
    "/by-category",
    response_model=List[GoalCategoryRead],
)
def goals_by_category(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return [GoalCategoryRead(**vars(b)) for b in goal_tracker.goals_by_category(session, current_user.id)]


@router.get(
    "/insights",
    response_model=List[InsightRead],
)
def goal_insight_list(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    goals = goal_tracker.list_goals(session, current_user.id, status="active")
    return [InsightRead(**vars(i)) for i in goal_insights(goal_tracker.snapshot(g, now) for g in goals)]


@router.get(
    "/{goal_id}",
    response_model=GoalDetail,
)
def get_goal(
    goal_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    goal = goal_tracker.get_goal(session, current_user.id, goal_id)
    log = [ContributionRead.model_validate(c, from_attributes=True) for c in goal_tracker.contributions(session, goal.id)]
    return GoalDetail(**goal.model_dump(), **_derived(goal, now), contributions=log)


@router.patch(
    "/{goal_id}",
    response_model=GoalRead,
)
def update_goal(
    goal_id: uuid.UUID,
    payload: GoalUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    now = datetime.utcnow()
    goal = goal_tracker.update_goal(session, current_user.id, goal_id, now=now, **payload.model_dump(exclude_unset=True))
    return _to_read(goal, now)


@router.post(
    "/{goal_id}/contribute",
    response_model=GoalRead,
)
def contribute(
    goal_id: uuid.UUID,
    payload: ContributionIn,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Add money to a goal.

    Anything above the remaining target is clamped off; the goal completes
    the first time its target is reached.
    """
    now = datetime.utcnow()
    goal = ledger.contribute_to_goal(
        session,
        current_user,
        goal_id,
        payload.amount,
        description=payload.description,
        source=payload.source,
        now=now,
    )
    return _to_read(goal, now)


@router.delete(
    "/{goal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_goal(
    goal_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    goal_tracker.deactivate_goal(session, current_user.id, goal_id)
    return None
