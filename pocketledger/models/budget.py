import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .expense import ExpenseCategory


class BudgetPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Budget(SQLModel, table=True):
    __tablename__ = "budgets"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    name: str = Field(max_length=100)

    # NULL means the budget covers every category; see core.scope.BudgetScope
    category: Optional[ExpenseCategory] = Field(default=None, index=True)

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    period: BudgetPeriod = Field(default=BudgetPeriod.MONTHLY)

    # Inclusive on both ends
    start_date: date = Field(index=True)
    end_date: date = Field(index=True)

    # Cache of the ledger sum; reconciled by core.budget_aggregator
    spent: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    version: int = Field(default=0)

    alerts_enabled: bool = Field(default=True)
    auto_renew: bool = Field(default=True)
    is_active: bool = Field(default=True, index=True)
    renewed_from_id: Optional[uuid.UUID] = Field(default=None, foreign_key="budgets.id")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class BudgetThreshold(SQLModel, table=True):
    __tablename__ = "budget_thresholds"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    budget_id: uuid.UUID = Field(foreign_key="budgets.id", index=True)

    percentage: int = Field(ge=1, le=100)
    triggered: bool = Field(default=False)
    triggered_at: Optional[datetime] = Field(default=None)
