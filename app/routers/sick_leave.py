"""
Sickness and statutory absence reporting.

Sick, bereavement and compassionate absences are recorded as already
approved. Each report notifies the line manager and then feeds the
employee's absence history into pattern detection.
"""
from datetime import date, timedelta
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.models.leave_request import AbsenceCategory, LeaveRequest, LeaveStatus
from app.models.notification import NotificationType
from app.models.user import User
from app.routers.auth_deps import get_current_user, get_tenant_db
from app.routers.leave import serialize_leave
from app.schemas.leave import SickLeaveReport, StatutoryLeaveReport
from app.services.absence_patterns import AbsencePatternService
from app.services.audit import AuditService
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sick-leave", tags=["Sick Leave"])

MAX_BACKDATE_DAYS = 7
# Self-certification covers up to 7 calendar days
FIT_NOTE_AFTER_DAYS = 7
STATUTORY_CATEGORIES = (AbsenceCategory.BEREAVEMENT, AbsenceCategory.COMPASSIONATE)


def _record_absence(
    db: Session,
    employee: User,
    category: AbsenceCategory,
    start: date,
    end: date,
    notes,
    sick_reason=None,
) -> LeaveRequest:
    today = date.today()
    notice_days = (start - today).days
    absence = LeaveRequest(
        tenant_id=employee.tenant_id,
        employee_id=employee.id,
        manager_id=employee.manager_id,
        absence_category=category,
        sick_reason=sick_reason,
        request_date=today,
        leave_start_date=start,
        leave_end_date=end,
        total_days=float((end - start).days + 1),
        notice_days=notice_days,
        is_urgent=start <= today,
        notes=notes,
        status=LeaveStatus.APPROVED,
    )
    db.add(absence)
    db.flush()
    AuditService.log(
        db,
        action=f"report_{category.value}_leave",
        entity_type="leave_request",
        entity_id=absence.id,
        user_id=employee.id,
        user_role=employee.role,
        details={
            "leave_start_date": start,
            "leave_end_date": end,
            "sick_reason": sick_reason,
            "notice_days": notice_days,
        },
        tenant_id=employee.tenant_id,
    )
    db.commit()
    db.refresh(absence)
    return absence


def _notify_manager(db: Session, employee: User, absence: LeaveRequest, label: str) -> None:
    NotificationService.notify_user(
        db, employee.tenant_id, employee.manager_id,
        NotificationType.URGENT_SICK_LEAVE,
        f"{label} reported",
        f"{employee.full_name} has reported {label.lower()} from {absence.leave_start_date.isoformat()} "
        f"to {absence.leave_end_date.isoformat()}.",
        related_id=absence.id, related_type="leave_request", is_urgent=absence.is_urgent,
    )


@router.post("/report", status_code=status.HTTP_201_CREATED)
def report_sick_leave(
    payload: SickLeaveReport,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    today = date.today()
    if payload.leave_start_date < today - timedelta(days=MAX_BACKDATE_DAYS):
        raise HTTPException(status_code=400, detail="Cannot report sick leave more than 7 days in the past")

    end = payload.leave_end_date
    if end is None:
        if not payload.is_ongoing:
            raise HTTPException(status_code=400, detail="leave_end_date is required unless the absence is ongoing")
        # Ongoing absences are provisionally recorded as a single day
        end = max(payload.leave_start_date, today)
    if end < payload.leave_start_date:
        raise HTTPException(status_code=400, detail="leave_end_date must be on or after leave_start_date")

    absence = _record_absence(
        db, current_user, AbsenceCategory.SICK, payload.leave_start_date, end, payload.notes, payload.sick_reason
    )
    _notify_manager(db, current_user, absence, "Sick leave")
    AbsencePatternService(db, current_user.tenant_id).analyze_after_absence(current_user.id)

    return {
        "message": "Sick leave reported successfully",
        "leave_request": serialize_leave(absence),
        "fit_note_required": absence.total_days > FIT_NOTE_AFTER_DAYS,
    }


@router.post("/statutory", status_code=status.HTTP_201_CREATED)
def report_statutory_leave(
    payload: StatutoryLeaveReport,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    if payload.absence_category not in STATUTORY_CATEGORIES:
        raise HTTPException(status_code=400, detail="absence_category must be bereavement or compassionate")
    if payload.leave_end_date < payload.leave_start_date:
        raise HTTPException(status_code=400, detail="leave_end_date must be on or after leave_start_date")

    absence = _record_absence(
        db, current_user, payload.absence_category, payload.leave_start_date, payload.leave_end_date, payload.notes
    )
    _notify_manager(db, current_user, absence, f"{payload.absence_category.value.capitalize()} leave")
    AbsencePatternService(db, current_user.tenant_id).analyze_after_absence(current_user.id)

    return {
        "message": "Absence recorded successfully",
        "leave_request": serialize_leave(absence),
    }
