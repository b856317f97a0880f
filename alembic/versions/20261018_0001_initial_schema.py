"""initial schema: users, expenses, budgets, thresholds, incomes, goals

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


EXPENSE_CATEGORIES = (
    "FOOD", "TRANSPORT", "ENTERTAINMENT", "SHOPPING", "BILLS", "HEALTHCARE", "EDUCATION",
    "TRAVEL", "GROCERIES", "BUSINESS", "PERSONAL", "RECHARGE", "INVESTMENT", "OTHER",
)
FREQUENCIES = ("ONE_TIME", "WEEKLY", "BI_WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY")


def _money(**kw):
    return sa.Numeric(precision=12, scale=2, **kw)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("default_currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("current_income_annual", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("current_income_monthly", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("current_income_updated_at", sa.DateTime(), nullable=True),
        sa.Column("total_expenses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "expenses",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("category", sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory"), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "CANCELLED", name="expensestatus"),
            nullable=False,
            server_default="COMPLETED",
        ),
        sa.Column("recurring_template_id", sa.Uuid(), sa.ForeignKey("expenses.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_expenses_user_id", "expenses", ["user_id"])
    op.create_index("ix_expenses_category", "expenses", ["category"])
    op.create_index("ix_expenses_expense_date", "expenses", ["expense_date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        # NULL covers every category
        sa.Column("category", sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory", create_type=False), nullable=True),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("period", sa.Enum("WEEKLY", "MONTHLY", "YEARLY", name="budgetperiod"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("spent", _money(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("alerts_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("renewed_from_id", sa.Uuid(), sa.ForeignKey("budgets.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="budgets_amount_positive"),
        sa.CheckConstraint("spent >= 0", name="budgets_spent_non_negative"),
        sa.CheckConstraint("end_date >= start_date", name="budgets_window_order"),
    )
    op.create_index("ix_budgets_user_id", "budgets", ["user_id"])
    op.create_index("ix_budgets_category", "budgets", ["category"])
    op.create_index("ix_budgets_start_date", "budgets", ["start_date"])
    op.create_index("ix_budgets_end_date", "budgets", ["end_date"])
    op.create_index("ix_budgets_is_active", "budgets", ["is_active"])

    op.create_table(
        "budget_thresholds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("budget_id", sa.Uuid(), sa.ForeignKey("budgets.id"), nullable=False),
        sa.Column("percentage", sa.Integer(), nullable=False),
        sa.Column("triggered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("triggered_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("percentage BETWEEN 1 AND 100", name="budget_thresholds_percentage_range"),
    )
    op.create_index("ix_budget_thresholds_budget_id", "budget_thresholds", ["budget_id"])

    op.create_table(
        "incomes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "SALARY", "FREELANCE", "BUSINESS", "INVESTMENT", "RENTAL", "BONUS", "GIFT", "OTHER",
                name="incometype",
            ),
            nullable=False,
        ),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="frequency"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("taxable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_received", sa.Date(), nullable=True),
        sa.Column("next_expected", sa.Date(), nullable=True),
        sa.Column("total_received", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="incomes_amount_non_negative"),
    )
    op.create_index("ix_incomes_user_id", "incomes", ["user_id"])
    op.create_index("ix_incomes_type", "incomes", ["type"])
    op.create_index("ix_incomes_is_active", "incomes", ["is_active"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_amount", _money(), nullable=False),
        sa.Column("current_amount", _money(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "category",
            sa.Enum(
                "EMERGENCY", "VACATION", "GADGET", "CAR", "HOME", "EDUCATION",
                "GIFT", "ENTERTAINMENT", "HEALTH", "OTHER",
                name="goalcategory",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("deadline", sa.Date(), nullable=False),
        sa.Column("priority", sa.Enum("LOW", "MEDIUM", "HIGH", name="goalpriority"), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("auto_save_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_save_amount", _money(), nullable=False, server_default="0"),
        sa.Column(
            "auto_save_frequency",
            sa.Enum(*FREQUENCIES, name="frequency", create_type=False),
            nullable=False,
        ),
        sa.Column("next_contribution", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_amount > 0", name="goals_target_positive"),
        sa.CheckConstraint(
            "current_amount >= 0 AND current_amount <= target_amount",
            name="goals_current_within_target",
        ),
    )
    op.create_index("ix_goals_user_id", "goals", ["user_id"])
    op.create_index("ix_goals_is_completed", "goals", ["is_completed"])
    op.create_index("ix_goals_next_contribution", "goals", ["next_contribution"])
    op.create_index("ix_goals_is_active", "goals", ["is_active"])

    op.create_table(
        "goal_contributions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("goal_id", sa.Uuid(), sa.ForeignKey("goals.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", _money(), nullable=False),
        sa.Column(
            "source",
            sa.Enum("MANUAL", "AUTO_SAVE", "BONUS", name="contributionsource"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("contributed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("goal_id", "sequence", name="goal_contributions_goal_sequence_key"),
    )
    op.create_index("ix_goal_contributions_goal_id", "goal_contributions", ["goal_id"])


def downgrade() -> None:
    op.drop_table("goal_contributions")
    op.drop_table("goals")
    op.drop_table("incomes")
    op.drop_table("budget_thresholds")
    op.drop_table("budgets")
    op.drop_table("expenses")
    op.drop_table("users")
