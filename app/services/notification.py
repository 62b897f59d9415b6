"""
Notification fan-out.

Workflows commit their own state first and then call into this service;
each notification is committed on its own so a failure here is logged and
rolled back without touching the workflow that triggered it.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType
from app.models.review import Review
from app.models.user import User, UserRole, EmploymentStatus

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        tenant_id: int,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
        is_urgent: bool = False,
    ) -> Notification:
        """
        Internal utility for creating notifications. Commits.
        """
        notification = Notification(
            tenant_id=tenant_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            related_type=related_type,
            is_urgent=is_urgent,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def notify_user(
        db: Session,
        tenant_id: int,
        user_id: Optional[int],
        type: NotificationType,
        title: str,
        message: str,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
        is_urgent: bool = False,
    ) -> Optional[Notification]:
        """
        Standardized notification trigger. Never raises.
        """
        if user_id is None:
            return None
        try:
            return NotificationService.create_notification(
                db, tenant_id, user_id, type, title, message, related_id, related_type, is_urgent
            )
        except Exception:
            db.rollback()
            logger.error(f"Failed to create {type.value} notification for user {user_id}", exc_info=True)
            return None

    @staticmethod
    def notify_users(
        db: Session,
        tenant_id: int,
        user_ids: Iterable[Optional[int]],
        type: NotificationType,
        title: str,
        message: str,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
        is_urgent: bool = False,
    ) -> List[Notification]:
        sent = []
        seen = set()
        for user_id in user_ids:
            if user_id is None or user_id in seen:
                continue
            seen.add(user_id)
            notification = NotificationService.notify_user(
                db, tenant_id, user_id, type, title, message, related_id, related_type, is_urgent
            )
            if notification is not None:
                sent.append(notification)
        return sent

    @staticmethod
    def unread_count(db: Session, tenant_id: int, user_id: int) -> int:
        return db.query(func.count(Notification.id)).filter(
            Notification.tenant_id == tenant_id,
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        ).scalar() or 0

    @staticmethod
    def already_sent(
        db: Session, tenant_id: int, user_id: int, type: NotificationType, related_type: str, related_id: int
    ) -> bool:
        return db.query(Notification.id).filter(
            Notification.tenant_id == tenant_id,
            Notification.user_id == user_id,
            Notification.type == type,
            Notification.related_type == related_type,
            Notification.related_id == related_id,
        ).first() is not None


def previous_friday(today: date) -> date:
    """Most recent Friday strictly before ``today``."""
    days_back = (today.weekday() - 4) % 7 or 7
    return today - timedelta(days=days_back)


def check_overdue_snapshots(db: Session, tenant_id: int, today: Optional[date] = None) -> dict:
    """
    Weekly reminder sweep for last week's reviews.

    Only runs on Sunday or Monday. Managers are reminded about direct reports
    without a committed manager review; employees about a missing committed
    self-reflection. Reminders are keyed on the review week, so re-running the
    sweep never sends the same reminder twice.
    """
    today = today or datetime.now(timezone.utc).date()
    if today.weekday() not in (6, 0):
        return {"checked": False, "week_ending": None, "manager_reminders": 0, "employee_reminders": 0}

    week_ending = previous_friday(today)
    week_key = int(week_ending.strftime("%Y%m%d"))
    employees = db.query(User).filter(
        User.tenant_id == tenant_id,
        User.employment_status == EmploymentStatus.ACTIVE,
    ).all()

    committed = db.query(Review.employee_id, Review.is_self_assessment).filter(
        Review.tenant_id == tenant_id,
        Review.review_date == week_ending,
        Review.is_committed == True,  # noqa: E712
    ).all()
    manager_done = {employee_id for employee_id, is_self in committed if not is_self}
    self_done = {employee_id for employee_id, is_self in committed if is_self}

    missing_by_manager = {}
    employee_reminders = 0
    for employee in employees:
        if employee.manager_id is None or employee.role == UserRole.ADMIN:
            continue
        if employee.id not in manager_done:
            missing_by_manager.setdefault(employee.manager_id, []).append(employee.full_name)
        if employee.id not in self_done and not NotificationService.already_sent(
            db, tenant_id, employee.id, NotificationType.SELF_REFLECTION_OVERDUE, "review_week", week_key
        ):
            sent = NotificationService.notify_user(
                db, tenant_id, employee.id,
                NotificationType.SELF_REFLECTION_OVERDUE,
                "Self-reflection overdue",
                f"Your self-reflection for the week ending {week_ending.isoformat()} has not been committed.",
                related_id=week_key,
                related_type="review_week",
            )
            employee_reminders += 1 if sent else 0

    manager_reminders = 0
    for manager_id, names in missing_by_manager.items():
        if NotificationService.already_sent(
            db, tenant_id, manager_id, NotificationType.SNAPSHOT_OVERDUE, "review_week", week_key
        ):
            continue
        sent = NotificationService.notify_user(
            db, tenant_id, manager_id,
            NotificationType.SNAPSHOT_OVERDUE,
            "Weekly snapshots overdue",
            f"{len(names)} snapshot(s) for the week ending {week_ending.isoformat()} are not committed: {', '.join(sorted(names))}.",
            related_id=week_key,
            related_type="review_week",
        )
        manager_reminders += 1 if sent else 0

    logger.info(
        "Overdue snapshot check complete",
        extra={"tenant_id": tenant_id, "manager_reminders": manager_reminders, "employee_reminders": employee_reminders},
    )
    return {
        "checked": True,
        "week_ending": week_ending.isoformat(),
        "manager_reminders": manager_reminders,
        "employee_reminders": employee_reminders,
    }
