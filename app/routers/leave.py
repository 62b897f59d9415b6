from datetime import date, datetime, timezone
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.models.leave_request import AbsenceCategory, LeaveRequest, LeaveStatus
from app.models.notification import NotificationType
from app.models.user import User, UserRole
from app.routers.auth_deps import get_current_user, get_tenant_db, require_manager
from app.schemas.leave import LeaveDecision, LeaveRequestCreate, LeaveRequestResponse
from app.services.audit import AuditService
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leave", tags=["Leave"])


def required_notice_days(total_days: float) -> int:
    """Short breaks need twice their length in notice; a week or more needs 30 days."""
    if total_days < 5:
        return int(total_days * 2)
    return 30


def serialize_leave(leave: LeaveRequest) -> dict:
    data = LeaveRequestResponse.model_validate(leave).model_dump()
    data["employee_name"] = leave.employee.full_name if leave.employee else None
    return data


def _leave_state(leave: LeaveRequest) -> dict:
    return {
        "status": leave.status,
        "approved_by": leave.approved_by,
        "approved_at": leave.approved_at,
        "rejection_reason": leave.rejection_reason,
    }


def _get_leave(db: Session, tenant_id: int, leave_id: int) -> LeaveRequest:
    leave = db.query(LeaveRequest).filter(
        LeaveRequest.id == leave_id,
        LeaveRequest.tenant_id == tenant_id,
    ).first()
    if not leave:
        raise HTTPException(status_code=404, detail="Leave request not found")
    return leave


def _process(db: Session, leave: LeaveRequest, current_user: User, approve: bool, reason: Optional[str]) -> LeaveRequest:
    if leave.status != LeaveStatus.PENDING:
        raise HTTPException(status_code=400, detail="This leave request has already been processed")
    if current_user.role != UserRole.ADMIN and leave.manager_id != current_user.id:
        raise HTTPException(status_code=403, detail="You can only process leave requests for your team members")

    before_state = _leave_state(leave)
    leave.status = LeaveStatus.APPROVED if approve else LeaveStatus.REJECTED
    leave.approved_by = current_user.id
    leave.approved_at = datetime.now(timezone.utc)
    if not approve:
        leave.rejection_reason = reason

    AuditService.log(
        db,
        action="approve_leave" if approve else "reject_leave",
        entity_type="leave_request",
        entity_id=leave.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details={"employee_id": leave.employee_id, "total_days": leave.total_days},
        tenant_id=leave.tenant_id,
        before_state=before_state,
        after_state=_leave_state(leave),
    )
    db.commit()
    db.refresh(leave)

    period = f"{leave.leave_start_date.isoformat()} to {leave.leave_end_date.isoformat()}"
    if approve:
        NotificationService.notify_user(
            db, leave.tenant_id, leave.employee_id,
            NotificationType.LEAVE_REQUEST_APPROVED,
            "Leave approved",
            f"Your leave request for {period} has been approved.",
            related_id=leave.id, related_type="leave_request",
        )
    else:
        suffix = f" Reason: {reason}" if reason else ""
        NotificationService.notify_user(
            db, leave.tenant_id, leave.employee_id,
            NotificationType.LEAVE_REQUEST_REJECTED,
            "Leave rejected",
            f"Your leave request for {period} has been rejected.{suffix}",
            related_id=leave.id, related_type="leave_request",
        )
    return leave


# --- Endpoints ---

@router.post("/request", status_code=status.HTTP_201_CREATED)
def submit_leave_request(
    payload: LeaveRequestCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    today = date.today()
    if payload.leave_start_date < today:
        raise HTTPException(status_code=400, detail="Annual leave cannot start in the past")

    total_days = payload.total_days or float((payload.leave_end_date - payload.leave_start_date).days + 1)
    notice_days = (payload.leave_start_date - today).days
    required = required_notice_days(total_days)
    is_urgent = notice_days < required

    leave = LeaveRequest(
        tenant_id=current_user.tenant_id,
        employee_id=current_user.id,
        manager_id=current_user.manager_id,
        absence_category=AbsenceCategory.ANNUAL,
        request_date=today,
        leave_start_date=payload.leave_start_date,
        leave_end_date=payload.leave_end_date,
        total_days=total_days,
        notice_days=notice_days,
        is_urgent=is_urgent,
        notes=payload.notes,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.flush()
    AuditService.log(
        db,
        action="request_leave",
        entity_type="leave_request",
        entity_id=leave.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details={"total_days": total_days, "notice_days": notice_days, "is_urgent": is_urgent},
        tenant_id=current_user.tenant_id,
    )
    db.commit()
    db.refresh(leave)

    NotificationService.notify_user(
        db, current_user.tenant_id, current_user.manager_id,
        NotificationType.LEAVE_REQUEST_PENDING,
        "Urgent leave request" if is_urgent else "Leave request pending",
        f"{current_user.full_name} has requested {total_days:g} day(s) of leave from "
        f"{leave.leave_start_date.isoformat()} to {leave.leave_end_date.isoformat()}.",
        related_id=leave.id, related_type="leave_request", is_urgent=is_urgent,
    )
    return {
        "message": "Leave request submitted",
        "leave_request": serialize_leave(leave),
        "short_notice": is_urgent,
        "required_notice_days": required,
    }


@router.get("/my-requests", response_model=List[LeaveRequestResponse])
def my_leave_requests(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    leaves = db.query(LeaveRequest).filter(
        LeaveRequest.tenant_id == current_user.tenant_id,
        LeaveRequest.employee_id == current_user.id,
    ).order_by(LeaveRequest.leave_start_date.desc()).all()
    return [serialize_leave(l) for l in leaves]


@router.get("/pending", response_model=List[LeaveRequestResponse])
def pending_leave_requests(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    query = db.query(LeaveRequest).filter(
        LeaveRequest.tenant_id == current_user.tenant_id,
        LeaveRequest.status == LeaveStatus.PENDING,
    )
    if current_user.role != UserRole.ADMIN:
        query = query.filter(LeaveRequest.manager_id == current_user.id)
    leaves = query.order_by(LeaveRequest.is_urgent.desc(), LeaveRequest.leave_start_date).all()
    return [serialize_leave(l) for l in leaves]


@router.put("/{leave_id}/approve")
def approve_leave(
    leave_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    leave = _process(db, _get_leave(db, current_user.tenant_id, leave_id), current_user, True, None)
    return {"message": "Leave request approved", "leave_request": serialize_leave(leave)}


@router.put("/{leave_id}/reject")
def reject_leave(
    leave_id: int,
    decision: Optional[LeaveDecision] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    reason = decision.rejection_reason if decision else None
    leave = _process(db, _get_leave(db, current_user.tenant_id, leave_id), current_user, False, reason)
    return {"message": "Leave request rejected", "leave_request": serialize_leave(leave)}


@router.put("/{leave_id}/cancel")
def cancel_leave(
    leave_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    leave = _get_leave(db, current_user.tenant_id, leave_id)
    if leave.employee_id != current_user.id:
        raise HTTPException(status_code=403, detail="You can only cancel your own leave requests")
    if leave.status != LeaveStatus.PENDING:
        raise HTTPException(status_code=400, detail="Only pending requests can be cancelled")

    before_state = _leave_state(leave)
    leave.status = LeaveStatus.CANCELLED
    AuditService.log(
        db,
        action="cancel_leave",
        entity_type="leave_request",
        entity_id=leave.id,
        user_id=current_user.id,
        user_role=current_user.role,
        tenant_id=current_user.tenant_id,
        before_state=before_state,
        after_state=_leave_state(leave),
    )
    db.commit()
    db.refresh(leave)
    return {"message": "Leave request cancelled", "leave_request": serialize_leave(leave)}
