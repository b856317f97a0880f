import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlmodel import SQLModel, Field


class ExpenseCategory(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    BILLS = "bills"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    TRAVEL = "travel"
    GROCERIES = "groceries"
    BUSINESS = "business"
    PERSONAL = "personal"
    RECHARGE = "recharge"
    INVESTMENT = "investment"
    OTHER = "other"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Expense(SQLModel, table=True):
    __tablename__ = "expenses"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True
    )

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    description: str
    category: ExpenseCategory = Field(default=ExpenseCategory.OTHER, index=True)
    expense_date: date = Field(default_factory=date.today, index=True)
    status: ExpenseStatus = Field(default=ExpenseStatus.COMPLETED)
    recurring_template_id: Optional[uuid.UUID] = Field(default=None, foreign_key="expenses.id")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def counts_toward_aggregates(self) -> bool:
        return self.deleted_at is None and self.status == ExpenseStatus.COMPLETED
