"""
Insight rules.

Pure functions over aggregates that were already computed elsewhere: no
session, no clock reads beyond what the caller passes in. Every rule is
evaluated independently; the combined list is sorted by priority with ties
left in evaluation order.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


@dataclass
class Insight:
    type: str
    message: str
    priority: str
    action: Optional[str] = None
    goal_id: Optional[uuid.UUID] = None
    goal_name: Optional[str] = None


@dataclass
class GoalSnapshot:
    """What the goal rules need to know about one goal."""

    goal_id: uuid.UUID
    name: str
    currency: str
    progress: float
    days_remaining: int
    remaining_amount: Decimal
    monthly_savings_needed: Decimal
    auto_save_enabled: bool
    is_completed: bool = False


def sort_by_priority(insights: Iterable[Insight]) -> List[Insight]:
    return sorted(insights, key=lambda i: PRIORITY_ORDER.get(i.priority, 0), reverse=True)


def financial_insights(savings) -> List[Insight]:
    """Rules over a ``SavingsAnalysis``."""
    if savings.no_income:
        return [
            Insight(
                type="warning",
                message="No income sources added. Add your income to get better financial insights.",
                priority="high",
            )
        ]

    insights = []
    rate = savings.savings_rate
    if rate < 0:
        insights.append(
            Insight(
                type="critical",
                message="You are spending more than you earn. Consider reducing expenses or increasing income.",
                priority="high",
            )
        )
    elif rate < 10:
        insights.append(
            Insight(
                type="warning",
                message="Your savings rate is below 10%. Consider increasing your savings for better financial health.",
                priority="high",
            )
        )
    elif rate >= 20:
        insights.append(
            Insight(
                type="success",
                message="Great job! You're saving 20% or more of your income.",
                priority="low",
            )
        )

    if savings.expense_to_income_ratio > 80:
        insights.append(
            Insight(
                type="warning",
                message="You're spending over 80% of your income. Consider creating a budget to track expenses.",
                priority="medium",
            )
        )
    return sort_by_priority(insights)


def _money(currency: str, amount: Decimal) -> str:
    return f"{currency} {Decimal(amount):,.0f}"


def goal_insights(goals: Iterable[GoalSnapshot]) -> List[Insight]:
    insights = []
    for goal in goals:
        if goal.is_completed:
            continue
        progress = goal.progress
        days = goal.days_remaining

        if days <= 30 and progress < 80:
            insights.append(
                Insight(
                    type="warning",
                    goal_id=goal.goal_id,
                    goal_name=goal.name,
                    message=f"{goal.name} deadline is in {days} days but only {progress:.1f}% complete",
                    priority="high",
                    action=f"Save {_money(goal.currency, goal.monthly_savings_needed)} monthly to reach your goal",
                )
            )

        if progress < 25 and days <= 90:
            insights.append(
                Insight(
                    type="warning",
                    goal_id=goal.goal_id,
                    goal_name=goal.name,
                    message=f"{goal.name} needs more attention - only {progress:.1f}% complete",
                    priority="medium",
                    action="Consider increasing your monthly contributions",
                )
            )

        if progress >= 90:
            insights.append(
                Insight(
                    type="success",
                    goal_id=goal.goal_id,
                    goal_name=goal.name,
                    message=f"Almost there! {goal.name} is {progress:.1f}% complete",
                    priority="low",
                    action=f"Just {_money(goal.currency, goal.remaining_amount)} more to go!",
                )
            )

        if not goal.auto_save_enabled and progress < 50:
            insights.append(
                Insight(
                    type="suggestion",
                    goal_id=goal.goal_id,
                    goal_name=goal.name,
                    message=f"Enable auto-save for {goal.name} to stay on track",
                    priority="low",
                    action=f"Auto-save {_money(goal.currency, goal.monthly_savings_needed / 2)} monthly",
                )
            )

    return sort_by_priority(insights)


def generate_insights(savings=None, goals: Iterable[GoalSnapshot] = ()) -> List[Insight]:
    """Financial rules first, then goal rules, sorted once across both."""
    evaluated: List[Insight] = []
    if savings is not None:
        evaluated.extend(financial_insights(savings))
    evaluated.extend(goal_insights(goals))
    return sort_by_priority(evaluated)
