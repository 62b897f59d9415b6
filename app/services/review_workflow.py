"""
Weekly review / self-reflection workflow.

Persists manager reviews and self-reflections, applies the blind-review
state transitions from review_state, and masks rating fields on every read
path until both sides of a week are committed.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import AccessDeniedError, BusinessRuleError, ConflictError, NotFoundError
from app.models.notification import NotificationType
from app.models.review import Review, RATING_FIELDS
from app.models.user import User, UserRole
from app.services.audit import AuditService
from app.services.notification import NotificationService
from app.services.review_state import (
    ReviewEvent,
    ReviewSide,
    WeekReviewState,
    commit_side,
    counterpart_state,
    open_side,
    side_of,
    uncommit_side,
)

logger = logging.getLogger(__name__)

OVERSIGHT_ROLES = (UserRole.ADMIN, UserRole.COMPLIANCE_OFFICER)
TEXT_FIELDS = ("goals", "achievements", "areas_for_improvement")


# --- Week arithmetic -------------------------------------------------------

def most_recent_friday(today: Optional[date] = None) -> date:
    """The current review week: today if Friday, otherwise the last Friday before today."""
    today = today or datetime.now(timezone.utc).date()
    return today - timedelta(days=(today.weekday() - 4) % 7)


def ensure_week_ending(value: date) -> date:
    if value.weekday() != 4:
        raise BusinessRuleError("review_date must be a week-ending Friday")
    return value


# --- KPI math --------------------------------------------------------------

def calculate_kpis(ratings: Dict[str, Optional[int]]) -> Optional[Dict[str, float]]:
    """
    velocity = mean(tasks_completed, work_volume, problem_solving)
    friction = mean(velocity, communication)
    cohesion = mean(problem_solving, communication, leadership)
    """
    if any(ratings.get(f) is None for f in RATING_FIELDS):
        return None
    velocity = (ratings["tasks_completed"] + ratings["work_volume"] + ratings["problem_solving"]) / 3
    friction = (velocity + ratings["communication"]) / 2
    cohesion = (ratings["problem_solving"] + ratings["communication"] + ratings["leadership"]) / 3
    return {
        "velocity": round(velocity, 2),
        "friction": round(friction, 2),
        "cohesion": round(cohesion, 2),
    }


# --- Serialization ---------------------------------------------------------

def ratings_visible(review: Review, viewer: User, revealed: bool) -> bool:
    if revealed or viewer.role in OVERSIGHT_ROLES:
        return True
    # Authors can always see the draft they are still editing
    return review.reviewer_id == viewer.id and not review.is_committed


def serialize_review(review: Review, viewer: User, revealed: bool, force_hidden: bool = False) -> dict:
    visible = ratings_visible(review, viewer, revealed) and not force_hidden
    data = {
        "id": review.id,
        "employee_id": review.employee_id,
        "employee_name": review.employee.full_name if review.employee else None,
        "reviewer_id": review.reviewer_id,
        "reviewer_name": review.reviewer.full_name if review.reviewer else None,
        "review_date": review.review_date,
        "is_self_assessment": review.is_self_assessment,
        "is_committed": review.is_committed,
        "committed_at": review.committed_at,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
        "ratings_hidden": not visible,
    }
    for field in TEXT_FIELDS:
        data[field] = getattr(review, field)
    for field in RATING_FIELDS:
        data[field] = getattr(review, field) if visible else None
    data["kpis"] = calculate_kpis(review.ratings()) if visible else None
    return data


class ReviewWorkflow:
    def __init__(self, db: Session, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id

    # --- lookups -----------------------------------------------------------

    def _query(self):
        return self.db.query(Review).filter(Review.tenant_id == self.tenant_id)

    def get(self, review_id: int) -> Review:
        review = self._query().filter(Review.id == review_id).first()
        if not review:
            raise NotFoundError("Review")
        return review

    def find_pair(self, employee_id: int, week: date) -> Tuple[Optional[Review], Optional[Review]]:
        rows = self._query().filter(Review.employee_id == employee_id, Review.review_date == week).all()
        manager_review = next((r for r in rows if not r.is_self_assessment), None)
        self_reflection = next((r for r in rows if r.is_self_assessment), None)
        return manager_review, self_reflection

    def week_state(self, employee_id: int, week: date) -> WeekReviewState:
        manager_review, self_reflection = self.find_pair(employee_id, week)
        return WeekReviewState.from_reviews(manager_review, self_reflection)

    def state_of(self, review: Review) -> WeekReviewState:
        manager_review, self_reflection = self.find_pair(review.employee_id, review.review_date)
        counterpart = manager_review if review.is_self_assessment else self_reflection
        return counterpart_state(review, counterpart)

    def _employee(self, employee_id: int) -> User:
        employee = self.db.query(User).filter(User.id == employee_id, User.tenant_id == self.tenant_id).first()
        if not employee:
            raise NotFoundError("Employee")
        return employee

    # --- access ------------------------------------------------------------

    def can_view(self, viewer: User, review: Review) -> bool:
        if viewer.role in OVERSIGHT_ROLES:
            return True
        if review.employee_id == viewer.id or review.reviewer_id == viewer.id:
            return True
        if viewer.role == UserRole.MANAGER:
            return review.employee is not None and review.employee.manager_id == viewer.id
        return False

    def list_for(self, viewer: User, employee_id: Optional[int] = None, limit: int = 100, offset: int = 0) -> List[dict]:
        query = self._query()
        if viewer.role in OVERSIGHT_ROLES:
            pass
        elif viewer.role == UserRole.MANAGER:
            report_ids = [row.id for row in self.db.query(User.id).filter(
                User.tenant_id == self.tenant_id, User.manager_id == viewer.id
            )]
            conditions = [Review.reviewer_id == viewer.id, Review.employee_id == viewer.id]
            if report_ids:
                conditions.append(Review.employee_id.in_(report_ids))
            query = query.filter(or_(*conditions))
        else:
            query = query.filter(Review.employee_id == viewer.id)
        if employee_id is not None:
            query = query.filter(Review.employee_id == employee_id)

        reviews = query.order_by(Review.review_date.desc(), Review.id.desc()).offset(offset).limit(limit).all()
        revealed_cache: Dict[Tuple[int, date], bool] = {}
        results = []
        for review in reviews:
            key = (review.employee_id, review.review_date)
            if key not in revealed_cache:
                revealed_cache[key] = self.week_state(*key).revealed
            results.append(serialize_review(review, viewer, revealed_cache[key]))
        return results

    def view(self, viewer: User, review_id: int) -> dict:
        review = self.get(review_id)
        if not self.can_view(viewer, review):
            raise AccessDeniedError("Access denied")
        state = self.state_of(review)
        return {**serialize_review(review, viewer, state.revealed), "state": state.phase.value}

    # --- creation ----------------------------------------------------------

    def create_review(self, author: User, employee_id: int, week: date, ratings: dict, text: dict) -> Review:
        week = ensure_week_ending(week)
        employee = self._employee(employee_id)
        if employee.id == author.id:
            raise BusinessRuleError("Use the self-reflection form to assess yourself")
        if author.role == UserRole.MANAGER and employee.manager_id != author.id:
            raise AccessDeniedError("You can only create reviews for your team members")

        open_side(self.week_state(employee.id, week), ReviewSide.MANAGER)
        review = Review(
            tenant_id=self.tenant_id,
            employee_id=employee.id,
            reviewer_id=author.id,
            review_date=week,
            is_self_assessment=False,
            is_committed=False,
            **ratings,
            **text,
        )
        self._insert(review, "A review already exists for this employee and week")
        logger.info(f"Manager review {review.id} drafted for employee {employee.id} week {week}")
        return review

    def create_self_reflection(self, author: User, week: date, ratings: dict, text: dict) -> Review:
        week = ensure_week_ending(week)
        open_side(self.week_state(author.id, week), ReviewSide.EMPLOYEE)
        review = Review(
            tenant_id=self.tenant_id,
            employee_id=author.id,
            reviewer_id=author.id,
            review_date=week,
            is_self_assessment=True,
            is_committed=False,
            **ratings,
            **text,
        )
        self._insert(review, "A self-reflection already exists for this week")
        logger.info(f"Self-reflection {review.id} drafted by user {author.id} week {week}")
        return review

    def _insert(self, review: Review, duplicate_message: str) -> None:
        # open_side checks first; the unique constraint settles concurrent creates
        self.db.add(review)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Concurrent duplicate for employee {review.employee_id} week {review.review_date} "
                f"(self={review.is_self_assessment})"
            )
            raise ConflictError(duplicate_message)
        self.db.refresh(review)

    def update(self, editor: User, review_id: int, changes: dict) -> Review:
        review = self.get(review_id)
        if review.is_committed:
            raise BusinessRuleError("Cannot edit a committed review")
        is_author = review.reviewer_id == editor.id
        admin_on_manager_review = editor.role == UserRole.ADMIN and not review.is_self_assessment
        if not (is_author or admin_on_manager_review):
            raise AccessDeniedError("You can only edit your own reviews")

        for field, value in changes.items():
            setattr(review, field, value)
        self.db.commit()
        self.db.refresh(review)
        return review

    # --- commit / uncommit -------------------------------------------------

    def commit(self, actor: User, review_id: int, side: ReviewSide) -> Tuple[Review, WeekReviewState]:
        review = self.get(review_id)
        if side_of(review) != side:
            if side == ReviewSide.EMPLOYEE:
                raise BusinessRuleError("This is not a self-reflection")
            raise BusinessRuleError("Self-reflections are committed through the self-reflection endpoint")
        if review.reviewer_id != actor.id:
            raise AccessDeniedError("You can only commit your own review")
        if any(getattr(review, f) is None for f in RATING_FIELDS):
            raise BusinessRuleError("All five ratings are required before committing")

        new_state, events = commit_side(self.state_of(review), side)

        # Single conditional write: a concurrent commit that got here first
        # leaves zero matching rows.
        updated = self._query().filter(
            Review.id == review.id,
            Review.is_committed == False,  # noqa: E712
        ).update(
            {Review.is_committed: True, Review.committed_at: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        if updated == 0:
            self.db.rollback()
            raise BusinessRuleError("Review is already committed")

        AuditService.log(
            self.db,
            action="commit_review",
            entity_type="self_reflection" if review.is_self_assessment else "review",
            entity_id=review.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"employee_id": review.employee_id, "review_date": review.review_date},
            tenant_id=self.tenant_id,
            before_state={"is_committed": False},
            after_state={"is_committed": True},
        )
        self.db.commit()
        self.db.refresh(review)
        logger.info(f"Review {review.id} committed ({side.value}); phase now {new_state.phase.value}")

        self._emit(events, review)
        return review, new_state

    def uncommit(self, admin: User, review_id: int) -> Tuple[Review, WeekReviewState]:
        review = self.get(review_id)
        new_state, _ = uncommit_side(self.state_of(review), side_of(review))

        updated = self._query().filter(
            Review.id == review.id,
            Review.is_committed == True,  # noqa: E712
        ).update(
            {Review.is_committed: False, Review.committed_at: None},
            synchronize_session=False,
        )
        if updated == 0:
            self.db.rollback()
            raise BusinessRuleError("Review is not committed")

        AuditService.log(
            self.db,
            action="uncommit_review",
            entity_type="self_reflection" if review.is_self_assessment else "review",
            entity_id=review.id,
            user_id=admin.id,
            user_role=admin.role,
            details={"employee_id": review.employee_id, "review_date": review.review_date},
            tenant_id=self.tenant_id,
            before_state={"is_committed": True},
            after_state={"is_committed": False},
        )
        self.db.commit()
        self.db.refresh(review)
        logger.info(f"Review {review.id} uncommitted by admin {admin.id}")
        return review, new_state

    def _emit(self, events: List[ReviewEvent], review: Review) -> None:
        week = review.review_date.isoformat()
        manager_review, _ = self.find_pair(review.employee_id, review.review_date)
        for event in events:
            if event == ReviewEvent.MANAGER_SNAPSHOT_COMMITTED:
                NotificationService.notify_user(
                    self.db, self.tenant_id, review.employee_id,
                    NotificationType.MANAGER_SNAPSHOT_COMMITTED,
                    "Your weekly snapshot is ready",
                    f"Your manager has committed your snapshot for the week ending {week}. "
                    f"Commit your self-reflection to reveal your KPIs.",
                    related_id=review.id,
                    related_type="review",
                )
            elif event == ReviewEvent.KPI_REVEALED:
                recipients = [review.employee_id, manager_review.reviewer_id if manager_review else None]
                NotificationService.notify_users(
                    self.db, self.tenant_id, recipients,
                    NotificationType.KPI_REVEALED,
                    "KPIs revealed",
                    f"Both the manager review and self-reflection for the week ending {week} are committed. "
                    f"KPIs are now visible.",
                    related_id=manager_review.id if manager_review else review.id,
                    related_type="review",
                )

    # --- employee dashboard ------------------------------------------------

    def reflection_status(self, viewer: User, week: Optional[date] = None, today: Optional[date] = None) -> dict:
        current_week = most_recent_friday(today)
        week = ensure_week_ending(week) if week else current_week
        manager_review, self_reflection = self.find_pair(viewer.id, week)
        state = WeekReviewState.from_reviews(manager_review, self_reflection)
        revealed = state.revealed
        if week == current_week:
            current_reflection = self_reflection
        else:
            current_reflection = self.find_pair(viewer.id, current_week)[1]

        def summary(review: Optional[Review]) -> Optional[dict]:
            if review is None:
                return None
            # Even the viewer's own numbers stay hidden until the week is revealed
            return serialize_review(review, viewer, revealed, force_hidden=not revealed)

        kpis = None
        if revealed:
            kpis = {
                "manager": calculate_kpis(manager_review.ratings()),
                "self": calculate_kpis(self_reflection.ratings()),
            }
        return {
            "current_week_friday": current_week,
            "week_ending": week,
            "has_current_week_reflection": current_reflection is not None,
            "self_committed": bool(self_reflection and self_reflection.is_committed),
            "manager_committed": bool(manager_review and manager_review.is_committed),
            "both_committed": revealed,
            "revealed": revealed,
            "state": state.phase.value,
            "self_reflection": summary(self_reflection),
            "manager_review": summary(manager_review),
            "kpis": kpis,
        }

    def latest_revealed_for(self, viewer: User) -> Optional[dict]:
        candidates = self._query().filter(
            Review.employee_id == viewer.id,
            Review.is_self_assessment == False,  # noqa: E712
            Review.is_committed == True,  # noqa: E712
        ).order_by(Review.review_date.desc()).limit(12).all()
        for review in candidates:
            if self.week_state(viewer.id, review.review_date).revealed:
                return serialize_review(review, viewer, True)
        return None
