"""
Blind-review state for one (employee, week) pair.

Each side (manager review, employee self-reflection) moves independently
through missing -> draft -> committed. Ratings are revealed to both parties
only once both sides are committed. Transitions are pure functions that
return the next state together with the events the caller should fan out.
"""
import enum
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from app.core.exceptions import BusinessRuleError, ConflictError


class ReviewSide(str, enum.Enum):
    MANAGER = "manager"
    EMPLOYEE = "self"


class SideState(str, enum.Enum):
    MISSING = "missing"
    DRAFT = "draft"
    COMMITTED = "committed"


class ReviewPhase(str, enum.Enum):
    NO_REVIEW = "no_review"
    DRAFTING = "drafting"
    AWAITING_COUNTERPART = "awaiting_counterpart"
    REVEALED = "revealed"


class ReviewEvent(str, enum.Enum):
    MANAGER_SNAPSHOT_COMMITTED = "manager_snapshot_committed"
    KPI_REVEALED = "kpi_revealed"


class InvalidTransition(BusinessRuleError):
    pass


def _side_state(review) -> SideState:
    if review is None:
        return SideState.MISSING
    return SideState.COMMITTED if review.is_committed else SideState.DRAFT


@dataclass(frozen=True)
class WeekReviewState:
    manager: SideState = SideState.MISSING
    employee: SideState = SideState.MISSING

    @classmethod
    def from_reviews(cls, manager_review=None, self_reflection=None) -> "WeekReviewState":
        return cls(manager=_side_state(manager_review), employee=_side_state(self_reflection))

    def side(self, side: ReviewSide) -> SideState:
        return self.manager if side == ReviewSide.MANAGER else self.employee

    def _with(self, side: ReviewSide, value: SideState) -> "WeekReviewState":
        if side == ReviewSide.MANAGER:
            return replace(self, manager=value)
        return replace(self, employee=value)

    @property
    def revealed(self) -> bool:
        return self.manager == SideState.COMMITTED and self.employee == SideState.COMMITTED

    @property
    def phase(self) -> ReviewPhase:
        if self.revealed:
            return ReviewPhase.REVEALED
        sides = (self.manager, self.employee)
        if all(s == SideState.MISSING for s in sides):
            return ReviewPhase.NO_REVIEW
        if SideState.COMMITTED in sides:
            return ReviewPhase.AWAITING_COUNTERPART
        return ReviewPhase.DRAFTING


def open_side(state: WeekReviewState, side: ReviewSide) -> WeekReviewState:
    current = state.side(side)
    if current == SideState.COMMITTED:
        if side == ReviewSide.MANAGER:
            raise ConflictError("A committed review already exists for this employee and week")
        raise ConflictError("A committed self-reflection already exists for this week")
    if current == SideState.DRAFT:
        if side == ReviewSide.MANAGER:
            raise ConflictError("A draft review already exists for this employee and week")
        raise ConflictError("A draft self-reflection already exists for this week")
    return state._with(side, SideState.DRAFT)


def commit_side(state: WeekReviewState, side: ReviewSide) -> Tuple[WeekReviewState, List[ReviewEvent]]:
    current = state.side(side)
    if current == SideState.MISSING:
        raise InvalidTransition("There is no draft to commit")
    if current == SideState.COMMITTED:
        raise InvalidTransition("Review is already committed")

    new_state = state._with(side, SideState.COMMITTED)
    events: List[ReviewEvent] = []
    if side == ReviewSide.MANAGER:
        events.append(ReviewEvent.MANAGER_SNAPSHOT_COMMITTED)
    if new_state.revealed:
        events.append(ReviewEvent.KPI_REVEALED)
    return new_state, events


def uncommit_side(state: WeekReviewState, side: ReviewSide) -> Tuple[WeekReviewState, List[ReviewEvent]]:
    if state.side(side) != SideState.COMMITTED:
        raise InvalidTransition("Review is not committed")
    return state._with(side, SideState.DRAFT), []


def side_of(review) -> ReviewSide:
    return ReviewSide.EMPLOYEE if review.is_self_assessment else ReviewSide.MANAGER


def counterpart_state(review, counterpart: Optional[object]) -> WeekReviewState:
    """State of the pair that ``review`` belongs to, given its counterpart row (if any)."""
    if review.is_self_assessment:
        return WeekReviewState.from_reviews(manager_review=counterpart, self_reflection=review)
    return WeekReviewState.from_reviews(manager_review=review, self_reflection=counterpart)
