from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType
from app.models.user import User
from app.routers.auth_deps import get_current_user, get_tenant_db, require_manager
from app.services.notification import NotificationService, check_overdue_snapshots

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    related_id: Optional[int] = None
    related_type: Optional[str] = None
    is_read: bool
    is_urgent: bool
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def _own(db: Session, current_user: User):
    return db.query(Notification).filter(
        Notification.tenant_id == current_user.tenant_id,
        Notification.user_id == current_user.id,
    )


def _get_own(db: Session, current_user: User, notification_id: int) -> Notification:
    notification = _own(db, current_user).filter(Notification.id == notification_id).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("/")
def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user)
):
    query = _own(db, current_user)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    total = query.with_entities(func.count(Notification.id)).scalar() or 0
    notifications = query.order_by(
        Notification.is_read, Notification.created_at.desc(), Notification.id.desc()
    ).offset(offset).limit(limit).all()
    return {
        "notifications": [NotificationResponse.model_validate(n).model_dump() for n in notifications],
        "unread_count": NotificationService.unread_count(db, current_user.tenant_id, current_user.id),
        "total": total,
    }


@router.get("/unread-count")
def get_unread_count(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user)
):
    return {"count": NotificationService.unread_count(db, current_user.tenant_id, current_user.id)}


@router.put("/read-all")
def mark_all_notifications_as_read(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user)
):
    count = _own(db, current_user).filter(
        Notification.is_read == False  # noqa: E712
    ).update(
        {Notification.is_read: True, Notification.read_at: datetime.now(timezone.utc)},
        synchronize_session=False,
    )
    db.commit()
    return {"message": "All notifications marked as read", "count": count}


@router.put("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_as_read(
    notification_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user)
):
    notification = _get_own(db, current_user, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user)
):
    notification = _get_own(db, current_user, notification_id)
    db.delete(notification)
    db.commit()
    return {"message": "Notification deleted"}


@router.post("/check-overdue")
def run_overdue_check(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager())
):
    """Weekly snapshot reminder sweep, normally triggered by an external scheduler."""
    return check_overdue_snapshots(db, current_user.tenant_id)
