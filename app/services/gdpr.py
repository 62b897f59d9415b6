"""
GDPR data requests: subject-access exports and erasure requests.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import AppException, BusinessRuleError, ConflictError, NotFoundError
from app.models.data_request import DataRequest, DataRequestStatus, DataRequestType
from app.models.leave_request import LeaveRequest
from app.models.notification import Notification
from app.models.user import User
from app.schemas.auth import UserResponse
from app.services.audit import AuditService
from app.services.review_workflow import ReviewWorkflow

logger = logging.getLogger(__name__)

EXPORT_EXPIRY_DAYS = 30
MAX_EXPORTS_PER_DAY = 3


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_export(db: Session, user: User) -> dict:
    """Everything held about ``user``, as JSON-safe data."""
    leave = db.query(LeaveRequest).filter(
        LeaveRequest.tenant_id == user.tenant_id,
        LeaveRequest.employee_id == user.id,
    ).order_by(LeaveRequest.leave_start_date).all()
    notifications = db.query(Notification).filter(
        Notification.tenant_id == user.tenant_id,
        Notification.user_id == user.id,
    ).order_by(Notification.id).all()
    reviews = ReviewWorkflow(db, user.tenant_id).list_for(user, employee_id=user.id, limit=10000)

    return jsonable_encoder({
        "generated_at": datetime.now(timezone.utc),
        "profile": UserResponse.model_validate(user).model_dump(),
        "reviews": reviews,
        "leave_requests": [
            {
                "id": row.id,
                "absence_category": row.absence_category,
                "sick_reason": row.sick_reason,
                "leave_start_date": row.leave_start_date,
                "leave_end_date": row.leave_end_date,
                "total_days": row.total_days,
                "status": row.status,
                "notes": row.notes,
            }
            for row in leave
        ],
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "is_read": n.is_read,
                "created_at": n.created_at,
            }
            for n in notifications
        ],
    })


class GdprService:
    def __init__(self, db: Session, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id

    def get(self, request_id: int) -> DataRequest:
        data_request = self.db.query(DataRequest).filter(
            DataRequest.id == request_id,
            DataRequest.tenant_id == self.tenant_id,
        ).first()
        if data_request is None:
            raise NotFoundError("Data request")
        return data_request

    def _audit(self, actor: User, data_request: DataRequest, action: str, details: Optional[dict] = None):
        AuditService.log(
            self.db,
            action=action,
            entity_type="data_request",
            entity_id=data_request.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"employee_id": data_request.employee_id, **(details or {})},
            tenant_id=self.tenant_id,
        )

    def _complete_export(self, data_request: DataRequest, employee: User, actor: User) -> None:
        now = datetime.now(timezone.utc)
        data_request.export_data = build_export(self.db, employee)
        data_request.status = DataRequestStatus.COMPLETED
        data_request.processed_by = actor.id
        data_request.completed_at = now
        data_request.expires_at = now + timedelta(days=EXPORT_EXPIRY_DAYS)

    def request_export(self, user: User) -> DataRequest:
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        recent = self.db.query(func.count(DataRequest.id)).filter(
            DataRequest.tenant_id == self.tenant_id,
            DataRequest.employee_id == user.id,
            DataRequest.request_type == DataRequestType.EXPORT,
            DataRequest.created_at > since,
        ).scalar() or 0
        if recent >= MAX_EXPORTS_PER_DAY:
            raise AppException(
                f"You can request up to {MAX_EXPORTS_PER_DAY} data exports per 24 hours. Please try again later.",
                status_code=429,
                error_code="RATE_LIMITED",
            )

        data_request = DataRequest(
            tenant_id=self.tenant_id,
            employee_id=user.id,
            requested_by=user.id,
            request_type=DataRequestType.EXPORT,
            status=DataRequestStatus.PROCESSING,
        )
        self.db.add(data_request)
        self.db.flush()
        self._complete_export(data_request, user, user)
        self._audit(user, data_request, "gdpr_export")
        self.db.commit()
        self.db.refresh(data_request)
        return data_request

    def download(self, user: User, request_id: int) -> dict:
        data_request = self.get(request_id)
        if data_request.employee_id != user.id:
            raise AppException("You can only download your own data exports", status_code=403, error_code="PERMISSION_DENIED")
        if data_request.request_type != DataRequestType.EXPORT or data_request.status != DataRequestStatus.COMPLETED:
            raise BusinessRuleError("Export is not ready for download")
        expires_at = as_utc(data_request.expires_at)
        if expires_at is not None and expires_at < datetime.now(timezone.utc):
            raise AppException("This export link has expired", status_code=410, error_code="EXPIRED")
        return data_request.export_data or {}

    def request_deletion(self, actor: User, employee_id: int, reason: Optional[str]) -> DataRequest:
        if not reason or not reason.strip():
            raise BusinessRuleError("Reason is required for deletion requests")
        employee = self.db.query(User).filter(
            User.id == employee_id, User.tenant_id == self.tenant_id
        ).first()
        if employee is None:
            raise NotFoundError("Employee")
        pending = self.db.query(DataRequest.id).filter(
            DataRequest.tenant_id == self.tenant_id,
            DataRequest.employee_id == employee_id,
            DataRequest.request_type == DataRequestType.DELETION,
            DataRequest.status.in_((DataRequestStatus.PENDING, DataRequestStatus.PROCESSING)),
        ).first()
        if pending is not None:
            raise ConflictError("A deletion request is already pending for this employee")

        data_request = DataRequest(
            tenant_id=self.tenant_id,
            employee_id=employee_id,
            requested_by=actor.id,
            request_type=DataRequestType.DELETION,
            status=DataRequestStatus.PENDING,
            reason=reason.strip(),
        )
        self.db.add(data_request)
        self.db.flush()
        self._audit(actor, data_request, "gdpr_deletion_requested")
        self.db.commit()
        self.db.refresh(data_request)
        return data_request

    def process(self, actor: User, request_id: int, notes: Optional[str] = None) -> DataRequest:
        data_request = self.get(request_id)
        if data_request.status != DataRequestStatus.PENDING:
            raise BusinessRuleError(f"Cannot process a request with status '{data_request.status.value}'")

        if data_request.request_type == DataRequestType.EXPORT:
            employee = self.db.query(User).filter(User.id == data_request.employee_id).first()
            self._complete_export(data_request, employee, actor)
        else:
            # Erasure itself is carried out by HR outside the system
            data_request.status = DataRequestStatus.COMPLETED
            data_request.processed_by = actor.id
            data_request.completed_at = datetime.now(timezone.utc)
        self._audit(actor, data_request, "gdpr_request_processed", {"notes": notes})
        self.db.commit()
        self.db.refresh(data_request)
        return data_request

    def reject(self, actor: User, request_id: int, reason: Optional[str]) -> DataRequest:
        if not reason or not reason.strip():
            raise BusinessRuleError("Rejection reason is required")
        data_request = self.get(request_id)
        if data_request.status != DataRequestStatus.PENDING:
            raise BusinessRuleError(f"Cannot reject a request with status '{data_request.status.value}'")
        data_request.status = DataRequestStatus.REJECTED
        data_request.rejection_reason = reason.strip()
        data_request.processed_by = actor.id
        self._audit(actor, data_request, "gdpr_request_rejected", {"reason": reason})
        self.db.commit()
        self.db.refresh(data_request)
        return data_request

    def cleanup_expired(self, actor: User, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        completed = self.db.query(DataRequest).filter(
            DataRequest.tenant_id == self.tenant_id,
            DataRequest.request_type == DataRequestType.EXPORT,
            DataRequest.status == DataRequestStatus.COMPLETED,
            DataRequest.expires_at.isnot(None),
        ).all()
        cleaned = 0
        for data_request in completed:
            if as_utc(data_request.expires_at) < now:
                data_request.status = DataRequestStatus.EXPIRED
                data_request.export_data = None
                self._audit(actor, data_request, "gdpr_export_expired")
                cleaned += 1
        self.db.commit()
        logger.info(f"Expired {cleaned} GDPR export(s) for tenant {self.tenant_id}")
        return cleaned
