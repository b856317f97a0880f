import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from ..core.frequency import Frequency


class IncomeType(str, Enum):
    SALARY = "salary"
    FREELANCE = "freelance"
    BUSINESS = "business"
    INVESTMENT = "investment"
    RENTAL = "rental"
    BONUS = "bonus"
    GIFT = "gift"
    OTHER = "other"


class Income(SQLModel, table=True):
    __tablename__ = "incomes"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    source: str = Field(max_length=100)
    type: IncomeType = Field(default=IncomeType.OTHER, index=True)
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    frequency: Frequency = Field(default=Frequency.MONTHLY)
    description: Optional[str] = Field(default=None, max_length=200)

    start_date: date = Field(default_factory=date.today)
    # None means ongoing
    end_date: Optional[date] = Field(default=None)

    is_active: bool = Field(default=True, index=True)
    is_recurring: bool = Field(default=True)
    taxable: bool = Field(default=True)

    last_received: Optional[date] = Field(default=None)
    next_expected: Optional[date] = Field(default=None)
    total_received: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
