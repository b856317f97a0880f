from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlmodel import Session

from conftest import NOW, make_user
from pocketledger.core import budget_aggregator as agg
from pocketledger.core.scope import AllCategories, PerCategory, scope_from_label
from pocketledger.errors import ConflictError, ConsistencyError, NotFoundError, ValidationError
from pocketledger.models.budget import Budget, BudgetPeriod
from pocketledger.models.expense import ExpenseCategory, ExpenseStatus
from pocketledger.services import ledger

MARCH = date(2026, 3, 1)


def _budget(session, user, scope=None, amount="1000", thresholds=(50, 90, 100), start=MARCH, **kw):
    return agg.create_budget(
        session,
        user.id,
        name="March",
        scope=scope or PerCategory(ExpenseCategory.FOOD),
        amount=Decimal(amount),
        currency="USD",
        start_date=start,
        thresholds=list(thresholds),
        now=kw.pop("now", NOW),
        **kw,
    )


def _spend(session, user, amount, category=ExpenseCategory.FOOD, on=date(2026, 3, 10), **kw):
    return ledger.record_expense(
        session,
        user,
        amount=Decimal(amount),
        category=category,
        description="groceries",
        expense_date=on,
        now=NOW,
        **kw,
    )


def _triggered(session, budget):
    return {t.percentage: t.triggered for t in agg.load_thresholds(session, budget.id)}


def _ledger(session, budget):
    return agg.ledger_total(
        session, budget.user_id, agg.scope_from_column(budget.category), budget.start_date, budget.end_date
    )


def test_monthly_window_defaults_to_month_end(session, user):
    budget = _budget(session, user)
    assert budget.start_date == date(2026, 3, 1)
    assert budget.end_date == date(2026, 3, 31)
    assert agg.days_in_window(budget) == 31


def test_default_thresholds_are_materialized(session, user):
    budget = agg.create_budget(
        session, user.id, "Food", PerCategory(ExpenseCategory.FOOD), Decimal("100"), "USD", start_date=MARCH, now=NOW
    )
    assert sorted(_triggered(session, budget)) == [50, 75, 90, 100]


def test_threshold_walkthrough(session, user):
    budget = _budget(session, user)

    first = _spend(session, user, "600")
    session.refresh(budget)
    assert budget.spent == Decimal("600")
    assert agg.percentage_used(budget) == pytest.approx(60.0)
    assert _triggered(session, budget) == {50: True, 90: False, 100: False}

    _spend(session, user, "350")
    session.refresh(budget)
    assert budget.spent == Decimal("950")
    assert _triggered(session, budget) == {50: True, 90: True, 100: False}

    ledger.delete_expense(session, user, first.id, now=NOW)
    session.refresh(budget)
    assert budget.spent == Decimal("350")
    assert agg.percentage_used(budget) == pytest.approx(35.0)
    # Deltas only ever trip thresholds
    assert _triggered(session, budget) == {50: True, 90: True, 100: False}

    budget = agg.recompute_from_ledger(session, budget.id, NOW)
    assert budget.spent == Decimal("350")
    assert _triggered(session, budget) == {50: False, 90: False, 100: False}


def test_threshold_trips_exactly_at_boundary(session, user):
    budget = _budget(session, user, amount="300", thresholds=(50,))
    _spend(session, user, "150")
    assert _triggered(session, budget) == {50: True}


def test_recompute_is_idempotent(session, user):
    budget = _budget(session, user)
    _spend(session, user, "120.50")
    first = agg.recompute_from_ledger(session, budget.id, NOW).spent
    second = agg.recompute_from_ledger(session, budget.id, NOW).spent
    assert first == second == Decimal("120.50")


def test_cache_converges_with_ledger_through_every_mutation(session, user):
    food = _budget(session, user)
    total = _budget(session, user, scope=AllCategories(), amount="5000")
    checks = []

    def check():
        for budget in (food, total):
            session.refresh(budget)
            checks.append((budget.spent, _ledger(session, budget)))

    a = _spend(session, user, "100")
    check()
    b = _spend(session, user, "40", category=ExpenseCategory.TRANSPORT)
    check()
    ledger.update_expense(session, user, a.id, amount=Decimal("130"), now=NOW)
    check()
    ledger.update_expense(session, user, b.id, category=ExpenseCategory.FOOD, now=NOW)
    check()
    ledger.update_expense(session, user, a.id, expense_date=date(2026, 4, 2), now=NOW)
    check()
    ledger.update_expense(session, user, b.id, status=ExpenseStatus.CANCELLED, now=NOW)
    check()
    ledger.update_expense(session, user, b.id, status=ExpenseStatus.COMPLETED, now=NOW)
    check()
    ledger.delete_expense(session, user, b.id, now=NOW)
    check()

    for cached, authoritative in checks:
        assert cached == authoritative
    session.refresh(food)
    assert food.spent == Decimal("0")


def test_all_categories_scope_counts_every_category(session, user):
    total = _budget(session, user, scope=scope_from_label("total"), amount="500")
    food = _budget(session, user, amount="500")
    _spend(session, user, "50")
    _spend(session, user, "70", category=ExpenseCategory.BILLS)
    session.refresh(total)
    session.refresh(food)
    assert total.spent == Decimal("120")
    assert food.spent == Decimal("50")
    assert total.category is None


def test_expenses_outside_the_window_or_pending_do_not_count(session, user):
    budget = _budget(session, user)
    _spend(session, user, "10", on=date(2026, 2, 28))
    _spend(session, user, "20", on=date(2026, 4, 1))
    _spend(session, user, "30", status=ExpenseStatus.PENDING)
    _spend(session, user, "40", on=date(2026, 3, 31))
    session.refresh(budget)
    assert budget.spent == Decimal("40")


def test_budget_created_after_spending_picks_up_ledger(session, user):
    _spend(session, user, "75")
    budget = _budget(session, user, thresholds=(5,))
    assert budget.spent == Decimal("75")
    assert _triggered(session, budget) == {5: True}


def test_overlapping_window_for_same_scope_conflicts(session, user):
    _budget(session, user)
    with pytest.raises(ConflictError):
        _budget(session, user, start=date(2026, 3, 20))


def test_other_scope_or_other_user_does_not_conflict(session, user):
    _budget(session, user)
    _budget(session, user, scope=AllCategories())
    other = make_user(session, email="bo@example.com")
    _budget(session, other)


def test_deactivated_budget_frees_the_window(session, user):
    budget = _budget(session, user)
    agg.deactivate_budget(session, user.id, budget.id)
    _budget(session, user)


def test_create_rejects_bad_input(session, user):
    with pytest.raises(ValidationError):
        _budget(session, user, amount="0")
    with pytest.raises(ValidationError):
        _budget(session, user, thresholds=(0, 50))
    with pytest.raises(ValidationError):
        agg.create_budget(
            session,
            user.id,
            "Backwards",
            AllCategories(),
            Decimal("10"),
            "USD",
            start_date=date(2026, 3, 10),
            end_date=date(2026, 3, 1),
            now=NOW,
        )


def test_negative_delta_is_clamped_at_zero(session, user):
    budget = _budget(session, user)
    budget = agg.apply_delta(session, budget.id, Decimal("-25"), NOW)
    assert budget.spent == Decimal("0")


def test_exhausted_retries_raise_consistency_error(session, user, monkeypatch):
    budget = _budget(session, user)
    monkeypatch.setattr(agg, "_swap_spent", lambda *args, **kwargs: False)
    with pytest.raises(ConsistencyError):
        agg.apply_delta(session, budget.id, Decimal("10"), NOW)


def test_lost_update_is_repaired_by_reconcile(session, user, monkeypatch):
    budget = _budget(session, user)
    budget_id = budget.id
    with monkeypatch.context() as m:
        m.setattr(agg, "_swap_spent", lambda *args, **kwargs: False)
        expense = _spend(session, user, "80")
    assert expense.id is not None
    assert session.get(Budget, budget_id).spent == Decimal("0")

    results = agg.reconcile_all(session, NOW)
    assert [r.status for r in results] == ["success"]
    assert results[0].spent_before == Decimal("0")
    assert results[0].spent_after == Decimal("80")


def test_amount_change_re_evaluates_thresholds(session, user):
    budget = _budget(session, user, thresholds=(50,))
    _spend(session, user, "400")
    assert _triggered(session, budget) == {50: False}
    agg.update_budget(session, user.id, budget.id, amount=Decimal("600"), now=NOW)
    assert _triggered(session, budget) == {50: True}
    agg.update_budget(session, user.id, budget.id, amount=Decimal("1000"), now=NOW)
    assert _triggered(session, budget) == {50: False}


def test_update_does_not_reuse_a_version_bumped_elsewhere(engine, session, user):
    budget = _budget(session, user)
    version = budget.version

    with Session(engine) as other:
        agg.apply_delta(other, budget.id, Decimal("40"), now=NOW)

    # ``session`` still holds the budget as it was before the delta
    agg.update_budget(session, user.id, budget.id, name="Groceries", now=NOW)

    fresh = session.get(Budget, budget.id, populate_existing=True)
    assert fresh.version == version + 2
    assert fresh.spent == Decimal("40")
    assert fresh.name == "Groceries"


def test_get_budget_hides_other_users_budgets(session, user):
    budget = _budget(session, user)
    other = make_user(session, email="bo@example.com")
    with pytest.raises(NotFoundError):
        agg.get_budget(session, other.id, budget.id)


def test_projection_and_rates(session, user):
    budget = _budget(session, user)
    _spend(session, user, "300")
    session.refresh(budget)
    # 2026-03-15 12:00 is 14.5 days in, which counts as 15
    assert agg.days_elapsed(budget, NOW) == 15
    assert agg.daily_spending_rate(budget, NOW) == Decimal("20.00")
    assert agg.projected_spend(budget, NOW) == Decimal("620.00")
    assert agg.days_remaining(budget, NOW) == 17


def test_days_elapsed_is_at_least_one(session, user):
    budget = _budget(session, user, start=date(2026, 3, 15))
    assert agg.days_elapsed(budget, datetime(2026, 3, 15)) == 1


@pytest.mark.parametrize(
    "pct, label",
    [(0, "good"), (49.99, "good"), (50, "moderate"), (75, "warning"), (90, "critical"), (100, "exceeded")],
)
def test_classify(pct, label):
    assert agg.classify(pct) == label


def test_alerts_report_triggered_thresholds_and_projection(session, user):
    budget = _budget(session, user)
    _spend(session, user, "600")
    alerts = agg.budget_alerts(session, user.id, NOW)

    threshold_alerts = [a for a in alerts if a.type == "threshold"]
    assert [a.threshold for a in threshold_alerts] == [50]
    assert threshold_alerts[0].severity == "medium"
    assert threshold_alerts[0].budget_id == budget.id

    projection = [a for a in alerts if a.type == "projection"]
    assert len(projection) == 1
    assert projection[0].projected_spending > Decimal("1000")


def test_alerts_skip_disabled_budgets(session, user):
    _budget(session, user, alerts_enabled=False)
    _spend(session, user, "999")
    assert agg.budget_alerts(session, user.id, NOW) == []


def test_summary_covers_active_budgets(session, user):
    _budget(session, user, amount="100")
    _budget(session, user, scope=AllCategories(), amount="900")
    _spend(session, user, "150")
    summary = agg.budget_summary(session, user.id, NOW)
    assert summary.budget_count == 2
    assert summary.total_budget == Decimal("1000")
    assert summary.total_spent == Decimal("300")
    assert summary.over_budget_count == 1
    assert summary.overall_percentage == 30.0


def test_duplicate_copies_into_a_new_window(session, user):
    budget = _budget(session, user, thresholds=(80,))
    _spend(session, user, "900")
    copy = agg.duplicate_budget(session, user.id, budget.id, date(2026, 4, 1), date(2026, 4, 30), NOW)
    assert copy.id != budget.id
    assert copy.spent == Decimal("0")
    assert _triggered(session, copy) == {80: False}

    with pytest.raises(ConflictError):
        agg.duplicate_budget(session, user.id, budget.id, date(2026, 3, 20), date(2026, 4, 10), NOW)


def _weekly(session, user, start):
    return _budget(
        session,
        user,
        start=start,
        period=BudgetPeriod.WEEKLY,
        now=datetime.combine(start, datetime.min.time()),
    )


def test_renewal_rolls_expired_budget_forward(session, user):
    old = _weekly(session, user, date(2026, 3, 2))
    assert old.end_date == date(2026, 3, 8)
    _spend(session, user, "25", on=date(2026, 3, 10))

    results = agg.renew_expired_budgets(session, datetime(2026, 3, 12))
    assert [r.status for r in results] == ["success"]
    successor = session.get(Budget, results[0].successor_id)
    assert (successor.start_date, successor.end_date) == (date(2026, 3, 9), date(2026, 3, 15))
    assert successor.renewed_from_id == old.id
    assert successor.category == old.category
    assert successor.amount == old.amount
    assert successor.spent == Decimal("25")
    assert sorted(_triggered(session, successor)) == [50, 90, 100]

    session.refresh(old)
    assert old.auto_renew is False
    # Nothing left to renew
    assert agg.renew_expired_budgets(session, datetime(2026, 3, 12)) == []


def test_renewal_catches_up_one_window_per_sweep(session, user):
    _weekly(session, user, date(2026, 3, 2))
    later = datetime(2026, 3, 25)
    first = agg.renew_expired_budgets(session, later)
    second = agg.renew_expired_budgets(session, later)
    assert first[0].end_date == date(2026, 3, 15)
    assert second[0].end_date == date(2026, 3, 22)


def test_renewal_skips_when_next_window_is_taken(session, user):
    _weekly(session, user, date(2026, 3, 2))
    _weekly(session, user, date(2026, 3, 9))
    results = agg.renew_expired_budgets(session, datetime(2026, 3, 12))
    assert [r.status for r in results] == ["skipped"]


def test_renewal_failure_does_not_stop_the_sweep(session, user, monkeypatch):
    a = _weekly(session, user, date(2026, 3, 2))
    _budget(
        session,
        user,
        scope=AllCategories(),
        start=date(2026, 3, 2),
        period=BudgetPeriod.WEEKLY,
        now=datetime(2026, 3, 2),
    )
    real_renew = agg._renew

    def flaky(session, budget, start, end, now):
        if budget.id == a.id:
            raise RuntimeError("boom")
        return real_renew(session, budget, start, end, now)

    monkeypatch.setattr(agg, "_renew", flaky)
    results = agg.renew_expired_budgets(session, datetime(2026, 3, 12))
    by_id = {r.budget_id: r.status for r in results}
    assert by_id[a.id] == "failed"
    assert sorted(by_id.values()) == ["failed", "success"]


def test_list_budgets_filters(session, user):
    _budget(session, user)
    _budget(session, user, scope=AllCategories())
    assert len(agg.list_budgets(session, user.id, NOW.date())) == 2
    only_total = agg.list_budgets(session, user.id, NOW.date(), scope=AllCategories())
    assert [b.category for b in only_total] == [None]
    assert agg.list_budgets(session, user.id, NOW.date() + timedelta(days=30)) == []
    assert len(agg.list_budgets(session, user.id, NOW.date() + timedelta(days=30), active_only=False)) == 2
