import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    email: str = Field(index=True, unique=True)
    hashed_password: str
    default_currency: str = Field(default="USD", max_length=3)

    # Cached stats; the income roll-up and the expense ledger are authoritative
    current_income_annual: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    current_income_monthly: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    current_income_updated_at: Optional[datetime] = Field(default=None)
    total_expenses: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = Field(default=None)
