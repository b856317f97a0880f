"""
Scheduled sweeps, exposed over HTTP for an external scheduler.

Each sweep reports one result per item; a failing item never fails the
request. Guarded by the ``X-Job-Token`` header when JOBS_TOKEN is set.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, SQLModel

from ..core import budget_aggregator, goal_tracker, income_rollup
from ..core.security import require_job_token
from ..database import get_session


router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    dependencies=[Depends(require_job_token)],
)


class AutoSaveResultRead(SQLModel):
    goal_id: uuid.UUID
    goal_name: str
    amount: Decimal
    status: str
    applied: Optional[Decimal] = None
    error: Optional[str] = None


class RenewalResultRead(SQLModel):
    budget_id: uuid.UUID
    budget_name: str
    status: str
    start_date: date
    end_date: date
    successor_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class ExpectationResultRead(SQLModel):
    income_id: uuid.UUID
    source: str
    status: str
    next_expected: Optional[date] = None
    error: Optional[str] = None


class ReconcileResultRead(SQLModel):
    budget_id: uuid.UUID
    status: str
    spent_before: Optional[Decimal] = None
    spent_after: Optional[Decimal] = None
    error: Optional[str] = None


@router.post("/auto-save", response_model=List[AutoSaveResultRead])
def run_auto_save(session: Session = Depends(get_session)):
    return [AutoSaveResultRead(**vars(r)) for r in goal_tracker.process_auto_save_due(session)]


@router.post("/budget-renewal", response_model=List[RenewalResultRead])
def run_budget_renewal(session: Session = Depends(get_session)):
    return [RenewalResultRead(**vars(r)) for r in budget_aggregator.renew_expired_budgets(session)]


@router.post("/income-expectations", response_model=List[ExpectationResultRead])
def run_income_expectations(session: Session = Depends(get_session)):
    return [ExpectationResultRead(**vars(r)) for r in income_rollup.refresh_income_expectations(session)]


@router.post("/reconcile-budgets", response_model=List[ReconcileResultRead])
def run_reconcile(session: Session = Depends(get_session)):
    return [ReconcileResultRead(**vars(r)) for r in budget_aggregator.reconcile_all(session)]
