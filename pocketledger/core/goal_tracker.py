"""
Savings goal tracking.

A goal's ``current_amount`` is the sum of its append-only contribution log.
Contributions that would overshoot the target are clamped to what is left,
and the clamped amount is what gets logged, so the log always sums to
``current_amount`` and never past ``target_amount``.
"""

import math
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..config import settings
from ..errors import ConflictError, ConsistencyError, NotFoundError, ValidationError
from ..logger import get_logger
from ..models.goal import ContributionSource, Goal, GoalCategory, GoalContribution, GoalPriority
from .frequency import AUTO_SAVE_FREQUENCIES, Frequency, advance
from .insights import GoalSnapshot

logger = get_logger(__name__)

ZERO = Decimal("0")
AVG_DAYS_PER_MONTH = 30.44


# ─────────────────────────────
#   DERIVED FIELDS
# ─────────────────────────────

def progress_percentage(goal: Goal) -> float:
    return min(100.0, float(Decimal(goal.current_amount) / Decimal(goal.target_amount) * 100))


def remaining_amount(goal: Goal) -> Decimal:
    return max(ZERO, Decimal(goal.target_amount) - Decimal(goal.current_amount))


def days_remaining(goal: Goal, now: datetime) -> int:
    deadline_close = datetime.combine(goal.deadline + timedelta(days=1), dtime.min)
    return max(0, math.ceil((deadline_close - now).total_seconds() / 86400))


def monthly_savings_needed(goal: Goal, now: datetime) -> Decimal:
    months_left = max(1.0, days_remaining(goal, now) / AVG_DAYS_PER_MONTH)
    return (remaining_amount(goal) / Decimal(str(months_left))).quantize(Decimal("0.01"))


def goal_status(goal: Goal, now: datetime) -> str:
    if goal.is_completed:
        return "completed"
    left = days_remaining(goal, now)
    if left == 0:
        return "overdue"
    if left <= 30:
        return "urgent"
    if progress_percentage(goal) >= 75:
        return "on-track"
    return "active"


def next_contribution_date(frequency: Frequency, now: datetime) -> datetime:
    return advance(now, frequency)


def snapshot(goal: Goal, now: datetime) -> GoalSnapshot:
    return GoalSnapshot(
        goal_id=goal.id,
        name=goal.name,
        currency=goal.currency,
        progress=progress_percentage(goal),
        days_remaining=days_remaining(goal, now),
        remaining_amount=remaining_amount(goal),
        monthly_savings_needed=monthly_savings_needed(goal, now),
        auto_save_enabled=goal.auto_save_enabled,
        is_completed=goal.is_completed,
    )


# ─────────────────────────────
#   READS
# ─────────────────────────────

def get_goal(session: Session, user_id: uuid.UUID, goal_id: uuid.UUID, active_only: bool = True) -> Goal:
    goal = session.get(Goal, goal_id)
    if not goal or goal.user_id != user_id or (active_only and not goal.is_active):
        raise NotFoundError("Goal not found")
    return goal


def list_goals(
    session: Session,
    user_id: uuid.UUID,
    status: str = "all",
    category: Optional[GoalCategory] = None,
    priority: Optional[GoalPriority] = None,
) -> List[Goal]:
    stmt = select(Goal).where(Goal.user_id == user_id, Goal.is_active == True)  # noqa: E712
    if status == "active":
        stmt = stmt.where(Goal.is_completed == False)  # noqa: E712
    elif status == "completed":
        stmt = stmt.where(Goal.is_completed == True)  # noqa: E712
    if category is not None:
        stmt = stmt.where(Goal.category == category)
    if priority is not None:
        stmt = stmt.where(Goal.priority == priority)
    stmt = stmt.order_by(Goal.deadline.asc())
    return list(session.exec(stmt).all())


def contributions(session: Session, goal_id: uuid.UUID) -> List[GoalContribution]:
    stmt = (
        select(GoalContribution)
        .where(GoalContribution.goal_id == goal_id)
        .order_by(GoalContribution.sequence)
    )
    return list(session.exec(stmt).all())


def contribution_total(session: Session, goal_id: uuid.UUID) -> Decimal:
    stmt = select(func.coalesce(func.sum(GoalContribution.amount), 0)).where(GoalContribution.goal_id == goal_id)
    return Decimal(str(session.exec(stmt).one() or 0))


# ─────────────────────────────
#   CONTRIBUTIONS
# ─────────────────────────────

def _validate_auto_save(enabled: bool, amount: Optional[Decimal], frequency: Optional[Frequency]) -> None:
    if not enabled:
        return
    if amount is None or Decimal(amount) <= 0:
        raise ValidationError("Auto-save amount must be positive")
    if frequency is not None and Frequency(frequency) not in AUTO_SAVE_FREQUENCIES:
        raise ValidationError("Auto-save frequency must be weekly, monthly or quarterly")


def contribute(
    session: Session,
    goal_id: uuid.UUID,
    amount: Decimal,
    source: ContributionSource = ContributionSource.MANUAL,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Goal:
    """
    Append a contribution and roll it into ``current_amount``.

    Raises ValidationError for non-positive amounts and completed goals.
    Amounts above the remaining target are clamped, not rejected.
    """
    goal, _ = _contribute(session, goal_id, amount, source, description, now)
    return goal


def _contribute(
    session: Session,
    goal_id: uuid.UUID,
    amount: Decimal,
    source: ContributionSource,
    description: Optional[str],
    now: Optional[datetime],
    due_before: Optional[datetime] = None,
    next_contribution: Optional[datetime] = None,
):
    """
    Shared write path; returns the goal and the amount actually applied.

    With ``due_before`` the write also claims the auto-save slot: it only
    matches while ``next_contribution <= due_before`` and moves
    ``next_contribution`` forward in the same statement. A slot some other
    run already took raises ConflictError.
    """
    now = now or datetime.utcnow()
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Contribution amount must be positive")

    for attempt in range(settings.cas_max_retries):
        goal = session.get(Goal, goal_id, populate_existing=True)
        if goal is None or not goal.is_active:
            raise NotFoundError("Goal not found")
        if due_before is not None and (
            goal.is_completed
            or not goal.auto_save_enabled
            or goal.next_contribution is None
            or goal.next_contribution > due_before
        ):
            raise ConflictError(f"Auto-save for goal {goal_id} was already processed")
        if goal.is_completed:
            raise ValidationError("Goal is already completed")

        previous = Decimal(goal.current_amount)
        target = Decimal(goal.target_amount)
        new_amount = min(previous + amount, target)
        applied = new_amount - previous
        completes = new_amount >= target

        values = {"current_amount": new_amount, "version": goal.version + 1, "updated_at": now}
        if completes:
            values.update(is_completed=True, completed_at=now)

        conditions = [Goal.id == goal.id, Goal.version == goal.version, Goal.is_completed == False]  # noqa: E712
        if due_before is not None:
            conditions.append(Goal.next_contribution <= due_before)
            values["next_contribution"] = next_contribution

        stmt = (
            update(Goal)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if session.exec(stmt).rowcount != 1:
            session.rollback()
            logger.info("goal_cas_retry", goal_id=str(goal_id), attempt=attempt + 1)
            continue

        sequence = session.exec(
            select(func.count()).select_from(GoalContribution).where(GoalContribution.goal_id == goal_id)
        ).one()
        session.add(
            GoalContribution(
                goal_id=goal_id,
                sequence=sequence,
                amount=applied,
                source=ContributionSource(source),
                description=description or _default_description(source, goal),
                contributed_at=now,
            )
        )
        session.commit()

        if applied != amount:
            logger.info(
                "goal_contribution_clamped",
                goal_id=str(goal_id),
                requested=str(amount),
                applied=str(applied),
            )
        if completes:
            logger.info("goal_completed", goal_id=str(goal_id))

        session.refresh(goal)
        return goal, applied

    raise ConsistencyError(f"Could not contribute to goal {goal_id}: concurrent updates")


def _default_description(source: ContributionSource, goal: Goal) -> str:
    source = ContributionSource(source)
    if source == ContributionSource.AUTO_SAVE:
        return f"Auto-save contribution ({Frequency(goal.auto_save_frequency).value})"
    if source == ContributionSource.BONUS:
        return "Bonus contribution"
    return "Manual contribution"


# ─────────────────────────────
#   LIFECYCLE
# ─────────────────────────────

def create_goal(
    session: Session,
    user_id: uuid.UUID,
    currency: str,
    name: str,
    target_amount: Decimal,
    deadline: date,
    category: GoalCategory = GoalCategory.OTHER,
    current_amount: Decimal = ZERO,
    description: Optional[str] = None,
    priority: GoalPriority = GoalPriority.MEDIUM,
    auto_save_enabled: bool = False,
    auto_save_amount: Decimal = ZERO,
    auto_save_frequency: Frequency = Frequency.MONTHLY,
    now: Optional[datetime] = None,
) -> Goal:
    now = now or datetime.utcnow()
    name = (name or "").strip()
    if not name:
        raise ValidationError("Goal name is required")
    if target_amount is None or Decimal(target_amount) <= 0:
        raise ValidationError("Target amount must be greater than 0")
    if Decimal(current_amount) < 0:
        raise ValidationError("Current amount cannot be negative")
    if deadline <= now.date():
        raise ValidationError("Deadline must be in the future")
    _validate_auto_save(auto_save_enabled, auto_save_amount, auto_save_frequency)

    goal = Goal(
        id=uuid.uuid4(),
        user_id=user_id,
        name=name,
        target_amount=Decimal(target_amount),
        current_amount=ZERO,
        currency=currency,
        category=category,
        description=(description or "").strip() or None,
        deadline=deadline,
        priority=priority,
        auto_save_enabled=auto_save_enabled,
        auto_save_amount=Decimal(auto_save_amount or 0),
        auto_save_frequency=auto_save_frequency,
        next_contribution=next_contribution_date(auto_save_frequency, now) if auto_save_enabled else None,
        created_at=now,
        updated_at=now,
    )
    session.add(goal)
    session.commit()
    logger.info("goal_created", goal_id=str(goal.id), user_id=str(user_id))

    # Seed the log so it keeps summing to current_amount
    if Decimal(current_amount) > 0:
        contribute(session, goal.id, Decimal(current_amount), ContributionSource.MANUAL, "Initial contribution", now)
    session.refresh(goal)
    return goal


def update_goal(
    session: Session,
    user_id: uuid.UUID,
    goal_id: uuid.UUID,
    now: Optional[datetime] = None,
    **changes,
) -> Goal:
    now = now or datetime.utcnow()
    goal = get_goal(session, user_id, goal_id)
    if goal.is_completed:
        raise ValidationError("Cannot update completed goal")

    deadline = changes.get("deadline")
    if deadline is not None and deadline <= now.date():
        raise ValidationError("Deadline must be in the future")

    target = changes.get("target_amount")
    if target is not None:
        target = Decimal(target)
        if target <= 0:
            raise ValidationError("Target amount must be greater than 0")
        if target < Decimal(goal.current_amount):
            raise ValidationError("Target amount cannot be below the amount already saved")

    enabled = changes.get("auto_save_enabled", goal.auto_save_enabled)
    _validate_auto_save(
        enabled,
        changes.get("auto_save_amount", goal.auto_save_amount),
        changes.get("auto_save_frequency", goal.auto_save_frequency),
    )

    allowed = (
        "name", "target_amount", "category", "description", "deadline", "priority",
        "auto_save_enabled", "auto_save_amount", "auto_save_frequency",
    )
    for field in allowed:
        if changes.get(field) is not None:
            setattr(goal, field, changes[field])

    if enabled and (goal.next_contribution is None or "auto_save_frequency" in changes):
        goal.next_contribution = next_contribution_date(goal.auto_save_frequency, now)
    if not enabled:
        goal.next_contribution = None

    if Decimal(goal.current_amount) >= Decimal(goal.target_amount):
        goal.is_completed = True
        goal.completed_at = now

    goal.version += 1
    goal.updated_at = now
    session.add(goal)
    session.commit()
    session.refresh(goal)
    return goal


def deactivate_goal(session: Session, user_id: uuid.UUID, goal_id: uuid.UUID) -> None:
    goal = get_goal(session, user_id, goal_id)
    goal.is_active = False
    goal.updated_at = datetime.utcnow()
    session.add(goal)
    session.commit()
    logger.info("goal_deleted", goal_id=str(goal_id), user_id=str(user_id))


# ─────────────────────────────
#   SCHEDULED SWEEP
# ─────────────────────────────

@dataclass
class AutoSaveResult:
    goal_id: uuid.UUID
    goal_name: str
    amount: Decimal
    status: str
    applied: Optional[Decimal] = None
    error: Optional[str] = None


def find_auto_save_due(session: Session, now: datetime) -> List[Goal]:
    stmt = select(Goal).where(
        Goal.auto_save_enabled == True,  # noqa: E712
        Goal.next_contribution <= now,
        Goal.is_completed == False,  # noqa: E712
        Goal.is_active == True,  # noqa: E712
    )
    return list(session.exec(stmt).all())


def process_auto_save_due(session: Session, now: Optional[datetime] = None) -> List[AutoSaveResult]:
    """Run every due auto-save; each goal succeeds or fails on its own."""
    now = now or datetime.utcnow()
    due = [
        (g.id, g.name, Decimal(g.auto_save_amount), g.auto_save_frequency)
        for g in find_auto_save_due(session, now)
    ]

    results: List[AutoSaveResult] = []
    for goal_id, name, amount, frequency in due:
        try:
            _, applied = _contribute(
                session,
                goal_id,
                amount,
                ContributionSource.AUTO_SAVE,
                None,
                now,
                due_before=now,
                next_contribution=next_contribution_date(frequency, now),
            )
        except ConflictError as exc:
            session.rollback()
            logger.info("auto_save_skipped", goal_id=str(goal_id), reason=exc.detail)
            results.append(AutoSaveResult(goal_id, name, amount, "skipped", error=exc.detail))
        except Exception as exc:
            session.rollback()
            logger.warning("auto_save_failed", goal_id=str(goal_id), error=str(exc))
            results.append(AutoSaveResult(goal_id, name, amount, "failed", error=str(exc)))
        else:
            results.append(
                AutoSaveResult(goal_id, name, amount, "success", applied=applied)
            )

    logger.info(
        "auto_save_sweep",
        processed=len(results),
        failed=sum(1 for r in results if r.status == "failed"),
    )
    return results


# ─────────────────────────────
#   SUMMARIES
# ─────────────────────────────

@dataclass
class GoalSummary:
    total_goals: int
    active_goals: int
    completed_goals: int
    total_target: Decimal
    total_saved: Decimal
    total_remaining: Decimal
    avg_progress: float
    overall_progress: float


@dataclass
class GoalCategoryBreakdown:
    category: GoalCategory
    count: int
    total_target: Decimal
    total_saved: Decimal
    completed: int
    progress: float


def goal_summary(session: Session, user_id: uuid.UUID) -> GoalSummary:
    goals = list_goals(session, user_id)
    total_target = sum((Decimal(g.target_amount) for g in goals), ZERO)
    total_saved = sum((Decimal(g.current_amount) for g in goals), ZERO)
    completed = sum(1 for g in goals if g.is_completed)
    return GoalSummary(
        total_goals=len(goals),
        active_goals=len(goals) - completed,
        completed_goals=completed,
        total_target=total_target,
        total_saved=total_saved,
        total_remaining=total_target - total_saved,
        avg_progress=round(sum(progress_percentage(g) for g in goals) / len(goals), 1) if goals else 0.0,
        overall_progress=round(float(total_saved / total_target * 100), 1) if total_target > 0 else 0.0,
    )


def goals_by_category(session: Session, user_id: uuid.UUID) -> List[GoalCategoryBreakdown]:
    grouped = OrderedDict()
    for goal in list_goals(session, user_id):
        grouped.setdefault(GoalCategory(goal.category), []).append(goal)

    breakdown = []
    for category, goals in grouped.items():
        target = sum((Decimal(g.target_amount) for g in goals), ZERO)
        saved = sum((Decimal(g.current_amount) for g in goals), ZERO)
        breakdown.append(
            GoalCategoryBreakdown(
                category=category,
                count=len(goals),
                total_target=target,
                total_saved=saved,
                completed=sum(1 for g in goals if g.is_completed),
                progress=round(float(saved / target * 100), 1) if target > 0 else 0.0,
            )
        )
    breakdown.sort(key=lambda b: b.total_target, reverse=True)
    return breakdown
