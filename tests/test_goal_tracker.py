from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlmodel import Session

from conftest import NOW, make_user
from pocketledger.core import goal_tracker as gt
from pocketledger.core.frequency import Frequency
from pocketledger.errors import ConflictError, NotFoundError, ValidationError
from pocketledger.models.goal import ContributionSource, Goal, GoalCategory
from pocketledger.services import ledger

DEADLINE = date(2027, 1, 31)


def _goal(session, user, target="1000", **kw):
    return gt.create_goal(
        session,
        user.id,
        currency="USD",
        name=kw.pop("name", "Laptop"),
        target_amount=Decimal(target),
        deadline=kw.pop("deadline", DEADLINE),
        now=kw.pop("now", NOW),
        **kw,
    )


def _log_amounts(session, goal):
    return [c.amount for c in gt.contributions(session, goal.id)]


def test_over_contribution_is_clamped_and_completes_goal(session, user):
    goal = _goal(session, user)

    goal = gt.contribute(session, goal.id, Decimal("700"), now=NOW)
    assert goal.current_amount == Decimal("700")
    assert goal.is_completed is False

    goal = gt.contribute(session, goal.id, Decimal("500"), now=NOW)
    assert goal.current_amount == Decimal("1000")
    assert goal.is_completed is True
    assert goal.completed_at == NOW
    assert _log_amounts(session, goal) == [Decimal("700"), Decimal("300")]


def test_log_always_sums_to_current_amount(session, user):
    goal = _goal(session, user, target="250", current_amount=Decimal("40"))
    for amount in ("10", "60.55", "99.45", "75"):
        goal = gt.contribute(session, goal.id, Decimal(amount), now=NOW)
        assert gt.contribution_total(session, goal.id) == goal.current_amount
        assert Decimal("0") <= goal.current_amount <= goal.target_amount
    assert goal.is_completed
    assert [c.sequence for c in gt.contributions(session, goal.id)] == [0, 1, 2, 3, 4]


def test_initial_amount_is_logged_as_first_contribution(session, user):
    goal = _goal(session, user, current_amount=Decimal("150"))
    log = gt.contributions(session, goal.id)
    assert goal.current_amount == Decimal("150")
    assert [(c.amount, c.description) for c in log] == [(Decimal("150"), "Initial contribution")]


def test_completed_goal_rejects_contributions(session, user):
    goal = _goal(session, user, target="100")
    gt.contribute(session, goal.id, Decimal("100"), now=NOW)
    with pytest.raises(ValidationError):
        gt.contribute(session, goal.id, Decimal("1"), now=NOW)
    goal = session.get(Goal, goal.id)
    assert goal.completed_at == NOW


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_contribution_is_rejected(session, user, amount):
    goal = _goal(session, user)
    with pytest.raises(ValidationError):
        gt.contribute(session, goal.id, Decimal(amount), now=NOW)
    assert gt.contributions(session, goal.id) == []


def test_contribute_to_someone_elses_goal_is_not_found(session, user):
    goal = _goal(session, user)
    other = make_user(session, email="bo@example.com")
    with pytest.raises(NotFoundError):
        ledger.contribute_to_goal(session, other, goal.id, Decimal("10"), now=NOW)


def test_create_validation(session, user):
    with pytest.raises(ValidationError):
        _goal(session, user, target="0")
    with pytest.raises(ValidationError):
        _goal(session, user, deadline=NOW.date())
    with pytest.raises(ValidationError):
        _goal(session, user, auto_save_enabled=True, auto_save_amount=Decimal("0"))
    with pytest.raises(ValidationError):
        _goal(
            session,
            user,
            auto_save_enabled=True,
            auto_save_amount=Decimal("10"),
            auto_save_frequency=Frequency.YEARLY,
        )


def test_update_rules(session, user):
    goal = _goal(session, user, current_amount=Decimal("400"))
    with pytest.raises(ValidationError):
        gt.update_goal(session, user.id, goal.id, now=NOW, target_amount=Decimal("300"))
    with pytest.raises(ValidationError):
        gt.update_goal(session, user.id, goal.id, now=NOW, deadline=date(2026, 3, 1))

    goal = gt.update_goal(session, user.id, goal.id, now=NOW, name="New laptop", category=GoalCategory.GADGET)
    assert goal.name == "New laptop"
    assert goal.category == GoalCategory.GADGET

    goal = gt.update_goal(session, user.id, goal.id, now=NOW, target_amount=Decimal("400"))
    assert goal.is_completed is True
    with pytest.raises(ValidationError):
        gt.update_goal(session, user.id, goal.id, now=NOW, name="Too late")


def test_derived_fields(session, user):
    goal = _goal(session, user, target="1000", current_amount=Decimal("250"), deadline=date(2026, 4, 14))
    assert gt.progress_percentage(goal) == pytest.approx(25.0)
    assert gt.remaining_amount(goal) == Decimal("750")
    assert gt.days_remaining(goal, NOW) == 31
    # 31 days is just over one average month
    assert gt.monthly_savings_needed(goal, NOW) == Decimal("736.45")
    assert gt.goal_status(goal, NOW) == "active"
    assert gt.goal_status(goal, datetime(2026, 4, 1)) == "urgent"
    assert gt.goal_status(goal, datetime(2026, 4, 20)) == "overdue"


def test_monthly_savings_needed_uses_at_least_one_month(session, user):
    goal = _goal(session, user, target="300", deadline=date(2026, 3, 20))
    assert gt.monthly_savings_needed(goal, NOW) == Decimal("300.00")


def _auto_saver(session, user, name, amount="50", frequency=Frequency.MONTHLY, target="1000"):
    return _goal(
        session,
        user,
        target=target,
        name=name,
        auto_save_enabled=True,
        auto_save_amount=Decimal(amount),
        auto_save_frequency=frequency,
        now=datetime(2026, 2, 10),
    )


def test_auto_save_contributes_and_schedules_next(session, user):
    goal = _auto_saver(session, user, "Trip")
    assert goal.next_contribution == datetime(2026, 3, 10)

    results = gt.process_auto_save_due(session, NOW)
    assert [(r.goal_id, r.status, r.applied) for r in results] == [(goal.id, "success", Decimal("50"))]

    goal = session.get(Goal, goal.id)
    assert goal.current_amount == Decimal("50")
    assert goal.next_contribution == datetime(2026, 4, 15, 12)
    log = gt.contributions(session, goal.id)
    assert log[0].source == ContributionSource.AUTO_SAVE

    # Not due again until next month
    assert gt.process_auto_save_due(session, NOW) == []


def test_auto_save_clamps_the_final_payment(session, user):
    goal = _auto_saver(session, user, "Almost", amount="80", target="50")
    results = gt.process_auto_save_due(session, NOW)
    assert results[0].applied == Decimal("50")
    assert session.get(Goal, goal.id).is_completed


def test_auto_save_failures_are_isolated(session, user):
    broken = _auto_saver(session, user, "Broken")
    healthy = _auto_saver(session, user, "Healthy", frequency=Frequency.WEEKLY)
    # Corrupt one goal behind the validation layer
    row = session.get(Goal, broken.id)
    row.auto_save_amount = Decimal("0")
    session.add(row)
    session.commit()

    results = {r.goal_id: r for r in gt.process_auto_save_due(session, NOW)}
    assert results[broken.id].status == "failed"
    assert results[broken.id].error
    assert results[healthy.id].status == "success"
    assert session.get(Goal, healthy.id).current_amount == Decimal("50")


def test_summary_and_category_breakdown(session, user):
    a = _goal(session, user, target="1000", current_amount=Decimal("500"), category=GoalCategory.VACATION)
    _goal(session, user, target="200", current_amount=Decimal("200"), name="Gift", category=GoalCategory.GIFT)
    _goal(session, user, target="300", name="Trip 2", category=GoalCategory.VACATION)

    summary = gt.goal_summary(session, user.id)
    assert summary.total_goals == 3
    assert summary.completed_goals == 1
    assert summary.active_goals == 2
    assert summary.total_target == Decimal("1500")
    assert summary.total_saved == Decimal("700")
    assert summary.overall_progress == pytest.approx(46.7)

    breakdown = gt.goals_by_category(session, user.id)
    assert [b.category for b in breakdown] == [GoalCategory.VACATION, GoalCategory.GIFT]
    assert breakdown[0].count == 2
    assert breakdown[1].completed == 1

    gt.deactivate_goal(session, user.id, a.id)
    assert gt.goal_summary(session, user.id).total_goals == 2
    with pytest.raises(NotFoundError):
        gt.get_goal(session, user.id, a.id)


def test_overlapping_auto_save_runs_pay_each_due_date_once(engine, session, user, monkeypatch):
    goal = _auto_saver(session, user, "Trip")
    original = gt.find_auto_save_due
    overlapped = []

    def find_then_let_another_run_finish(sweep_session, now):
        due = original(sweep_session, now)
        if not overlapped:
            overlapped.append(True)
            with Session(engine) as other:
                overlapped.extend(gt.process_auto_save_due(other, now))
        return due

    monkeypatch.setattr(gt, "find_auto_save_due", find_then_let_another_run_finish)
    results = gt.process_auto_save_due(session, NOW)

    assert [r.status for r in overlapped[1:]] == ["success"]
    assert [(r.goal_id, r.status) for r in results] == [(goal.id, "skipped")]
    assert _log_amounts(session, goal) == [Decimal("50")]
    goal = session.get(Goal, goal.id, populate_existing=True)
    assert goal.current_amount == Decimal("50")
    assert goal.next_contribution == datetime(2026, 4, 15, 12)


def test_auto_save_skips_goal_that_is_no_longer_due(session, user):
    goal = _auto_saver(session, user, "Trip")
    stale = gt.find_auto_save_due(session, NOW)
    assert [g.id for g in stale] == [goal.id]

    gt.process_auto_save_due(session, NOW)
    with pytest.raises(ConflictError):
        gt._contribute(
            session,
            goal.id,
            Decimal("50"),
            ContributionSource.AUTO_SAVE,
            None,
            NOW,
            due_before=NOW,
            next_contribution=datetime(2026, 5, 15, 12),
        )
    assert gt.contribution_total(session, goal.id) == Decimal("50")


def test_completed_at_is_set_once(session, user):
    goal = _goal(session, user, target="100")
    first = datetime(2026, 3, 15, 12)
    gt.contribute(session, goal.id, Decimal("100"), now=first)

    with pytest.raises(ValidationError):
        gt.contribute(session, goal.id, Decimal("5"), now=datetime(2026, 3, 20))
    with pytest.raises(ValidationError):
        gt.update_goal(session, user.id, goal.id, now=datetime(2026, 3, 21), name="Renamed")
    gt.process_auto_save_due(session, datetime(2026, 6, 1))

    goal = session.get(Goal, goal.id, populate_existing=True)
    assert goal.is_completed is True
    assert goal.completed_at == first
    assert goal.name == "Laptop"
