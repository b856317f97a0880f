import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, SQLModel

from ..core import goal_tracker, income_rollup
from ..core.insights import generate_insights
from ..core.security import get_current_user
from ..database import get_session
from ..models.user import User


router = APIRouter(
    prefix="/insights",
    tags=["insights"],
)


class InsightRead(SQLModel):
    type: str
    message: str
    priority: str
    action: Optional[str] = None
    goal_id: Optional[uuid.UUID] = None
    goal_name: Optional[str] = None


@router.get(
    "",
    response_model=List[InsightRead],
)
def all_insights(
    months: int = Query(default=6, ge=1, le=24),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Savings rules and goal rules together, highest priority first."""
    now = datetime.utcnow()
    analysis = income_rollup.income_vs_expense_analysis(session, current_user.id, months, now)
    goals = goal_tracker.list_goals(session, current_user.id, status="active")
    insights = generate_insights(
        savings=analysis.savings,
        goals=[goal_tracker.snapshot(g, now) for g in goals],
    )
    return [InsightRead(**vars(i)) for i in insights]
