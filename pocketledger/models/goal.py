import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from ..core.frequency import Frequency


class GoalCategory(str, Enum):
    EMERGENCY = "emergency"
    VACATION = "vacation"
    GADGET = "gadget"
    CAR = "car"
    HOME = "home"
    EDUCATION = "education"
    GIFT = "gift"
    ENTERTAINMENT = "entertainment"
    HEALTH = "health"
    OTHER = "other"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ContributionSource(str, Enum):
    MANUAL = "manual"
    AUTO_SAVE = "auto-save"
    BONUS = "bonus"


class Goal(SQLModel, table=True):
    __tablename__ = "goals"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    name: str = Field(max_length=100)
    target_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    # Sum of the contribution log, capped at target_amount
    current_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    category: GoalCategory = Field(default=GoalCategory.OTHER)
    description: Optional[str] = Field(default=None, max_length=500)
    deadline: date
    priority: GoalPriority = Field(default=GoalPriority.MEDIUM)

    is_completed: bool = Field(default=False, index=True)
    completed_at: Optional[datetime] = Field(default=None)

    auto_save_enabled: bool = Field(default=False)
    auto_save_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    auto_save_frequency: Frequency = Field(default=Frequency.MONTHLY)
    next_contribution: Optional[datetime] = Field(default=None, index=True)

    is_active: bool = Field(default=True, index=True)
    version: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class GoalContribution(SQLModel, table=True):
    __tablename__ = "goal_contributions"
    __table_args__ = (UniqueConstraint("goal_id", "sequence", name="goal_contributions_goal_sequence_key"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    goal_id: uuid.UUID = Field(foreign_key="goals.id", index=True)

    sequence: int
    # Effective amount, after clamping to the remaining target
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    source: ContributionSource = Field(default=ContributionSource.MANUAL)
    description: str = Field(default="Manual contribution", max_length=200)
    contributed_at: datetime = Field(default_factory=datetime.utcnow)
