from datetime import date
from types import SimpleNamespace

import pytest

from app.core.exceptions import BusinessRuleError, ConflictError
from app.services.review_state import (
    ReviewEvent,
    ReviewPhase,
    ReviewSide,
    SideState,
    WeekReviewState,
    commit_side,
    open_side,
    uncommit_side,
)
from app.services.review_workflow import calculate_kpis, ensure_week_ending, most_recent_friday


def test_empty_week_has_no_review():
    state = WeekReviewState()
    assert state.phase == ReviewPhase.NO_REVIEW
    assert not state.revealed


def test_manager_commit_alone_does_not_reveal():
    state = open_side(WeekReviewState(), ReviewSide.MANAGER)
    assert state.phase == ReviewPhase.DRAFTING

    state, events = commit_side(state, ReviewSide.MANAGER)
    assert state.manager == SideState.COMMITTED
    assert state.phase == ReviewPhase.AWAITING_COUNTERPART
    assert events == [ReviewEvent.MANAGER_SNAPSHOT_COMMITTED]


def test_second_commit_reveals():
    state = WeekReviewState(manager=SideState.COMMITTED, employee=SideState.DRAFT)
    state, events = commit_side(state, ReviewSide.EMPLOYEE)
    assert state.revealed
    assert state.phase == ReviewPhase.REVEALED
    assert events == [ReviewEvent.KPI_REVEALED]


def test_manager_committing_last_emits_both_events():
    state = WeekReviewState(manager=SideState.DRAFT, employee=SideState.COMMITTED)
    _, events = commit_side(state, ReviewSide.MANAGER)
    assert events == [ReviewEvent.MANAGER_SNAPSHOT_COMMITTED, ReviewEvent.KPI_REVEALED]


def test_commit_requires_draft():
    with pytest.raises(BusinessRuleError, match="no draft"):
        commit_side(WeekReviewState(), ReviewSide.EMPLOYEE)


def test_double_commit_rejected():
    state = WeekReviewState(manager=SideState.COMMITTED)
    with pytest.raises(BusinessRuleError, match="already committed"):
        commit_side(state, ReviewSide.MANAGER)


@pytest.mark.parametrize("existing", [SideState.DRAFT, SideState.COMMITTED])
def test_one_review_per_side_per_week(existing):
    with pytest.raises(ConflictError):
        open_side(WeekReviewState(employee=existing), ReviewSide.EMPLOYEE)


def test_uncommit_hides_again():
    state = WeekReviewState(manager=SideState.COMMITTED, employee=SideState.COMMITTED)
    state, events = uncommit_side(state, ReviewSide.MANAGER)
    assert state.manager == SideState.DRAFT
    assert not state.revealed
    assert events == []
    with pytest.raises(BusinessRuleError):
        uncommit_side(state, ReviewSide.MANAGER)


def test_state_from_review_rows():
    manager_review = SimpleNamespace(is_committed=True)
    self_reflection = SimpleNamespace(is_committed=False)
    state = WeekReviewState.from_reviews(manager_review, self_reflection)
    assert state == WeekReviewState(manager=SideState.COMMITTED, employee=SideState.DRAFT)


# --- week arithmetic / KPIs ------------------------------------------------

def test_most_recent_friday():
    assert most_recent_friday(date(2026, 2, 6)) == date(2026, 2, 6)
    assert most_recent_friday(date(2026, 2, 9)) == date(2026, 2, 6)
    assert most_recent_friday(date(2026, 2, 12)) == date(2026, 2, 6)


def test_review_date_must_be_friday():
    assert ensure_week_ending(date(2026, 2, 6)) == date(2026, 2, 6)
    with pytest.raises(BusinessRuleError):
        ensure_week_ending(date(2026, 2, 5))


def test_kpis():
    kpis = calculate_kpis({
        "tasks_completed": 8,
        "work_volume": 6,
        "problem_solving": 7,
        "communication": 9,
        "leadership": 5,
    })
    assert kpis == {"velocity": 7.0, "friction": 8.0, "cohesion": 7.0}


def test_kpis_need_all_ratings():
    assert calculate_kpis({"tasks_completed": 8}) is None
