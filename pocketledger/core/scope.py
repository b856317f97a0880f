"""
Budget scope: which expenses a budget counts.

A budget either tracks one category or every category. The wire format
keeps the "total" label for the latter; nothing past the API boundary
compares against that string.
"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import true

from ..models.budget import Budget
from ..models.expense import Expense, ExpenseCategory


TOTAL_LABEL = "total"

# Amounts are summed as stored. Expenses in different currencies land in the
# same total without conversion; budgets and goals carry a single currency tag
# that is informational only.
CROSS_CURRENCY_LIMITATION = (
    "Aggregates sum raw amounts regardless of their currency tag; "
    "no conversion is applied."
)


@dataclass(frozen=True)
class PerCategory:
    category: ExpenseCategory

    def matches(self, category: ExpenseCategory) -> bool:
        return ExpenseCategory(category) == self.category

    def expense_filter(self):
        return Expense.category == self.category

    def budget_filter(self):
        return Budget.category == self.category

    @property
    def column_value(self) -> Optional[ExpenseCategory]:
        return self.category

    @property
    def label(self) -> str:
        return self.category.value


@dataclass(frozen=True)
class AllCategories:
    def matches(self, category: ExpenseCategory) -> bool:
        return True

    def expense_filter(self):
        return true()

    def budget_filter(self):
        return Budget.category.is_(None)

    @property
    def column_value(self) -> Optional[ExpenseCategory]:
        return None

    @property
    def label(self) -> str:
        return TOTAL_LABEL


BudgetScope = Union[PerCategory, AllCategories]


def scope_from_column(category: Optional[ExpenseCategory]) -> BudgetScope:
    if category is None:
        return AllCategories()
    return PerCategory(ExpenseCategory(category))


def scope_from_label(label: str) -> BudgetScope:
    """Parse the wire value: a category name or "total"."""
    if label == TOTAL_LABEL:
        return AllCategories()
    return PerCategory(ExpenseCategory(label))
