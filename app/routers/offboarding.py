from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.models.notification import NotificationType
from app.models.offboarding import (
    ChecklistItemType,
    ExitInterview,
    HandoverStatus,
    OffboardingChecklistItem,
    OffboardingHandover,
    OffboardingStatus,
    OffboardingWorkflow,
    TerminationType,
)
from app.models.user import User, UserRole
from app.routers.auth_deps import get_current_user, get_tenant_db, require_admin, require_role
from app.services.audit import AuditService
from app.services.notification import NotificationService
from app.services.offboarding import ACTIVE_STATUSES, OffboardingService, workflow_state

router = APIRouter(prefix="/offboarding", tags=["Offboarding"])

HR_ROLES = [UserRole.ADMIN, UserRole.HR_MANAGER]
OVERSIGHT_ROLES = [UserRole.ADMIN, UserRole.HR_MANAGER, UserRole.MANAGER]


# --- Pydantic Schemas ---
class OffboardingCreate(BaseModel):
    employee_id: Optional[int] = None
    termination_type: Optional[TerminationType] = None
    notice_date: Optional[date] = None
    last_working_day: Optional[date] = None
    reason: Optional[str] = None
    eligible_for_rehire: Optional[bool] = None
    reference_agreed: Optional[bool] = True
    hr_owner_id: Optional[int] = None
    notes: Optional[str] = None


class OffboardingUpdate(BaseModel):
    termination_type: Optional[TerminationType] = None
    notice_date: Optional[date] = None
    last_working_day: Optional[date] = None
    reason: Optional[str] = None
    eligible_for_rehire: Optional[bool] = None
    reference_agreed: Optional[bool] = None
    hr_owner_id: Optional[int] = None
    notes: Optional[str] = None


class ChecklistItemCreate(BaseModel):
    item_name: Optional[str] = None
    item_type: Optional[ChecklistItemType] = None
    description: Optional[str] = None
    assigned_role: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None


class ChecklistItemUpdate(BaseModel):
    completed: Optional[bool] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    completion_notes: Optional[str] = None


class ExitInterviewUpdate(BaseModel):
    interviewer_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    reason_for_leaving: Optional[str] = None
    would_recommend: Optional[bool] = None
    would_return: Optional[bool] = None
    overall_satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    feedback_management: Optional[str] = None
    feedback_culture: Optional[str] = None
    feedback_role: Optional[str] = None
    suggestions: Optional[str] = None
    hr_notes: Optional[str] = None
    completed: Optional[bool] = None


class HandoverCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    handover_to: Optional[int] = None
    due_date: Optional[date] = None


class HandoverUpdate(BaseModel):
    status: Optional[HandoverStatus] = None
    handover_to: Optional[int] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class ChecklistItemOut(BaseModel):
    id: int
    workflow_id: int
    item_type: ChecklistItemType
    item_name: str
    description: Optional[str] = None
    assigned_role: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    sort_order: int
    completed: bool
    completed_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ExitInterviewOut(BaseModel):
    id: int
    workflow_id: int
    employee_id: int
    interviewer_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    conducted_date: Optional[datetime] = None
    status: str
    reason_for_leaving: Optional[str] = None
    would_recommend: Optional[bool] = None
    would_return: Optional[bool] = None
    overall_satisfaction: Optional[int] = None
    feedback_management: Optional[str] = None
    feedback_culture: Optional[str] = None
    feedback_role: Optional[str] = None
    suggestions: Optional[str] = None
    hr_notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class HandoverOut(BaseModel):
    id: int
    workflow_id: int
    title: str
    description: Optional[str] = None
    handover_to: Optional[int] = None
    due_date: Optional[date] = None
    status: HandoverStatus
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WorkflowOut(BaseModel):
    id: int
    employee_id: int
    termination_type: TerminationType
    notice_date: date
    last_working_day: date
    reason: Optional[str] = None
    eligible_for_rehire: Optional[bool] = None
    reference_agreed: bool
    notes: Optional[str] = None
    status: OffboardingStatus
    initiated_by: Optional[int] = None
    manager_id: Optional[int] = None
    hr_owner_id: Optional[int] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- helpers ---

def _workflow(workflow: OffboardingWorkflow) -> dict:
    data = WorkflowOut.model_validate(workflow).model_dump()
    data["employee_name"] = workflow.employee.full_name if workflow.employee else None
    total = len(workflow.checklist)
    done = sum(1 for i in workflow.checklist if i.completed)
    data["checklist_total"] = total
    data["checklist_completed"] = done
    return data


def _interview(interview: ExitInterview, viewer: User) -> dict:
    data = ExitInterviewOut.model_validate(interview).model_dump()
    if viewer.role not in HR_ROLES:
        data.pop("hr_notes", None)
    return data


def _items(workflow: OffboardingWorkflow) -> List[dict]:
    return [ChecklistItemOut.model_validate(i).model_dump() for i in workflow.checklist]


def _can_view(user: User, workflow: OffboardingWorkflow) -> bool:
    if user.role in HR_ROLES:
        return True
    if workflow.manager_id == user.id or workflow.employee_id == user.id:
        return True
    return any(i.assigned_to == user.id for i in workflow.checklist) or any(
        h.handover_to == user.id for h in workflow.handovers
    )


def _visible_workflow(db: Session, user: User, workflow_id: int) -> OffboardingWorkflow:
    workflow = OffboardingService(db, user.tenant_id).get(workflow_id)
    if not _can_view(user, workflow):
        raise HTTPException(status_code=403, detail="Access denied")
    return workflow


def _managed_workflow(db: Session, user: User, workflow_id: int) -> OffboardingWorkflow:
    workflow = OffboardingService(db, user.tenant_id).get(workflow_id)
    if user.role not in HR_ROLES and workflow.manager_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return workflow


def _scoped(query, user: User):
    if user.role not in HR_ROLES:
        query = query.filter(OffboardingWorkflow.manager_id == user.id)
    return query


# --- Endpoints ---

@router.post("/", status_code=status.HTTP_201_CREATED)
def initiate_offboarding(
    payload: OffboardingCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(HR_ROLES)),
):
    if not (payload.employee_id and payload.termination_type and payload.notice_date and payload.last_working_day):
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: employee_id, termination_type, notice_date, last_working_day",
        )
    if payload.last_working_day < payload.notice_date:
        raise HTTPException(status_code=400, detail="last_working_day must be on or after notice_date")

    workflow = OffboardingService(db, current_user.tenant_id).initiate(
        current_user, payload.employee_id, payload.model_dump()
    )
    return {
        "message": "Offboarding workflow initiated",
        "workflow": _workflow(workflow),
        "checklist_items_created": len(workflow.checklist),
    }


@router.get("/stats")
def offboarding_stats(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(OVERSIGHT_ROLES)),
):
    workflows = _scoped(
        db.query(OffboardingWorkflow).filter(OffboardingWorkflow.tenant_id == current_user.tenant_id),
        current_user,
    ).all()
    today = date.today()
    month_ago = datetime.now(timezone.utc) - timedelta(days=30)

    def completed_recently(w):
        if w.status != OffboardingStatus.COMPLETED or w.completed_at is None:
            return False
        completed_at = w.completed_at
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        return completed_at >= month_ago

    return {
        "pending": sum(1 for w in workflows if w.status == OffboardingStatus.PENDING),
        "in_progress": sum(1 for w in workflows if w.status == OffboardingStatus.IN_PROGRESS),
        "completed_this_month": sum(1 for w in workflows if completed_recently(w)),
        "leaving_this_week": sum(
            1 for w in workflows
            if w.status in ACTIVE_STATUSES and today <= w.last_working_day <= today + timedelta(days=7)
        ),
    }


@router.get("/upcoming")
def upcoming_departures(
    days: int = Query(30, ge=0, le=365),
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(OVERSIGHT_ROLES)),
):
    today = date.today()
    workflows = _scoped(
        db.query(OffboardingWorkflow).filter(
            OffboardingWorkflow.tenant_id == current_user.tenant_id,
            OffboardingWorkflow.status.in_(ACTIVE_STATUSES),
            OffboardingWorkflow.last_working_day >= today,
            OffboardingWorkflow.last_working_day <= today + timedelta(days=days),
        ),
        current_user,
    ).order_by(OffboardingWorkflow.last_working_day).all()
    return {"workflows": [_workflow(w) for w in workflows]}


@router.get("/my-tasks/pending")
def my_pending_tasks(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    items = db.query(OffboardingChecklistItem).join(OffboardingWorkflow).filter(
        OffboardingChecklistItem.tenant_id == current_user.tenant_id,
        OffboardingChecklistItem.assigned_to == current_user.id,
        OffboardingChecklistItem.completed == False,  # noqa: E712
        OffboardingWorkflow.status.in_(ACTIVE_STATUSES),
    ).order_by(OffboardingWorkflow.last_working_day).all()
    handovers = db.query(OffboardingHandover).join(OffboardingWorkflow).filter(
        OffboardingHandover.tenant_id == current_user.tenant_id,
        OffboardingHandover.handover_to == current_user.id,
        OffboardingHandover.status != HandoverStatus.COMPLETED,
        OffboardingWorkflow.status.in_(ACTIVE_STATUSES),
    ).order_by(OffboardingWorkflow.last_working_day).all()

    def with_workflow(data: dict, workflow: OffboardingWorkflow) -> dict:
        data["employee_id"] = workflow.employee_id
        data["employee_name"] = workflow.employee.full_name if workflow.employee else None
        data["last_working_day"] = workflow.last_working_day
        return data

    return {
        "checklist_items": [
            with_workflow(ChecklistItemOut.model_validate(i).model_dump(), i.workflow) for i in items
        ],
        "handovers": [with_workflow(HandoverOut.model_validate(h).model_dump(), h.workflow) for h in handovers],
    }


@router.post("/check-deadlines")
def check_deadlines(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    return OffboardingService(db, current_user.tenant_id).check_deadlines()


@router.get("/")
def list_workflows(
    status: Optional[OffboardingStatus] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(OVERSIGHT_ROLES)),
):
    query = _scoped(
        db.query(OffboardingWorkflow).filter(OffboardingWorkflow.tenant_id == current_user.tenant_id),
        current_user,
    )
    if status:
        query = query.filter(OffboardingWorkflow.status == status)
    workflows = query.order_by(OffboardingWorkflow.last_working_day).all()
    return {"workflows": [_workflow(w) for w in workflows]}


@router.get("/{workflow_id}")
def get_workflow(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    data = _workflow(workflow)
    data["checklist"] = _items(workflow)
    data["exit_interview"] = _interview(workflow.exit_interview, current_user) if workflow.exit_interview else None
    data["handovers"] = [HandoverOut.model_validate(h).model_dump() for h in workflow.handovers]
    return {"workflow": data}


@router.put("/{workflow_id}")
def update_workflow(
    workflow_id: int,
    payload: OffboardingUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(HR_ROLES)),
):
    workflow = OffboardingService(db, current_user.tenant_id).get(workflow_id)
    if workflow.status == OffboardingStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Cannot modify completed workflow")
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    before = workflow_state(workflow)
    for key, value in changes.items():
        setattr(workflow, key, value)
    AuditService.log(
        db,
        action="offboarding_updated",
        entity_type="offboarding_workflow",
        entity_id=workflow.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details=changes,
        tenant_id=current_user.tenant_id,
        before_state=before,
        after_state=workflow_state(workflow),
    )
    db.commit()
    db.refresh(workflow)
    return {"workflow": _workflow(workflow), "message": "Workflow updated"}


@router.delete("/{workflow_id}")
def cancel_workflow(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    workflow = OffboardingService(db, current_user.tenant_id).get(workflow_id)
    if workflow.status == OffboardingStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Cannot cancel completed workflow")
    before = workflow_state(workflow)
    workflow.status = OffboardingStatus.CANCELLED
    AuditService.log(
        db,
        action="offboarding_cancelled",
        entity_type="offboarding_workflow",
        entity_id=workflow.id,
        user_id=current_user.id,
        user_role=current_user.role,
        tenant_id=current_user.tenant_id,
        before_state=before,
        after_state=workflow_state(workflow),
    )
    db.commit()
    return {"message": "Workflow cancelled"}


@router.get("/{workflow_id}/checklist")
def get_checklist(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    return {"checklist": _items(workflow)}


@router.post("/{workflow_id}/checklist", status_code=status.HTTP_201_CREATED)
def add_checklist_item(
    workflow_id: int,
    payload: ChecklistItemCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(OVERSIGHT_ROLES)),
):
    if not payload.item_name:
        raise HTTPException(status_code=400, detail="Item name required")
    workflow = _managed_workflow(db, current_user, workflow_id)
    item = OffboardingService(db, current_user.tenant_id).add_checklist_item(workflow, payload.model_dump())
    return {"item": ChecklistItemOut.model_validate(item).model_dump(), "message": "Custom item added"}


@router.put("/{workflow_id}/checklist/{item_id}")
def update_checklist_item(
    workflow_id: int,
    item_id: int,
    payload: ChecklistItemUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    if workflow.status in (OffboardingStatus.COMPLETED, OffboardingStatus.CANCELLED):
        raise HTTPException(status_code=400, detail="Workflow is closed")
    item = OffboardingService(db, current_user.tenant_id).update_checklist_item(
        current_user, workflow, item_id, payload.model_dump(exclude_unset=True)
    )
    return {
        "item": ChecklistItemOut.model_validate(item).model_dump(),
        "workflow_status": workflow.status.value,
        "message": "Checklist item updated",
    }


@router.get("/{workflow_id}/exit-interview")
def get_exit_interview(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    if workflow.exit_interview is None:
        raise HTTPException(status_code=404, detail="Exit interview not found")
    return {"exit_interview": _interview(workflow.exit_interview, current_user)}


@router.put("/{workflow_id}/exit-interview")
def update_exit_interview(
    workflow_id: int,
    payload: ExitInterviewUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    interview = workflow.exit_interview
    if interview is None:
        raise HTTPException(status_code=404, detail="Exit interview not found")

    changes = payload.model_dump(exclude_unset=True)
    completed = changes.pop("completed", None)
    if "hr_notes" in changes and current_user.role not in HR_ROLES:
        changes.pop("hr_notes")
    if not changes and not completed:
        raise HTTPException(status_code=400, detail="No fields to update")

    newly_scheduled = interview.scheduled_date is None and changes.get("scheduled_date") is not None
    for key, value in changes.items():
        setattr(interview, key, value)
    if newly_scheduled:
        interview.status = "scheduled"
    if completed:
        interview.status = "completed"
        interview.conducted_date = datetime.now(timezone.utc)
    db.commit()
    db.refresh(interview)

    if newly_scheduled:
        NotificationService.notify_user(
            db, current_user.tenant_id, interview.employee_id,
            NotificationType.EXIT_INTERVIEW_SCHEDULED,
            "Exit interview scheduled",
            f"Your exit interview has been scheduled for {interview.scheduled_date.date().isoformat()}.",
            related_id=workflow.id, related_type="exit_interview",
        )
    return {"exit_interview": _interview(interview, current_user), "message": "Exit interview updated"}


@router.get("/{workflow_id}/handovers")
def list_handovers(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    return {"handovers": [HandoverOut.model_validate(h).model_dump() for h in workflow.handovers]}


@router.post("/{workflow_id}/handovers", status_code=status.HTTP_201_CREATED)
def add_handover(
    workflow_id: int,
    payload: HandoverCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    if not payload.title:
        raise HTTPException(status_code=400, detail="Handover title required")
    workflow = _visible_workflow(db, current_user, workflow_id)
    if payload.handover_to is not None:
        recipient = db.query(User.id).filter(
            User.id == payload.handover_to, User.tenant_id == current_user.tenant_id
        ).first()
        if recipient is None:
            raise HTTPException(status_code=404, detail="Handover recipient not found")

    handover = OffboardingHandover(
        tenant_id=current_user.tenant_id,
        workflow_id=workflow.id,
        title=payload.title,
        description=payload.description,
        handover_to=payload.handover_to,
        due_date=payload.due_date,
    )
    db.add(handover)
    db.commit()
    db.refresh(handover)

    NotificationService.notify_user(
        db, current_user.tenant_id, handover.handover_to,
        NotificationType.HANDOVER_ASSIGNED,
        "Handover assigned",
        f"You have been assigned a handover from {workflow.employee.full_name}: {handover.title}",
        related_id=workflow.id, related_type="offboarding",
    )
    return {"handover": HandoverOut.model_validate(handover).model_dump(), "message": "Handover item added"}


@router.put("/{workflow_id}/handovers/{handover_id}")
def update_handover(
    workflow_id: int,
    handover_id: int,
    payload: HandoverUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = _visible_workflow(db, current_user, workflow_id)
    handover = db.query(OffboardingHandover).filter(
        OffboardingHandover.id == handover_id,
        OffboardingHandover.workflow_id == workflow.id,
        OffboardingHandover.tenant_id == current_user.tenant_id,
    ).first()
    if handover is None:
        raise HTTPException(status_code=404, detail="Handover item not found")

    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(handover, key, value)
    if handover.status == HandoverStatus.COMPLETED and handover.completed_at is None:
        handover.completed_at = datetime.now(timezone.utc)
    elif handover.status != HandoverStatus.COMPLETED:
        handover.completed_at = None
    db.commit()
    db.refresh(handover)
    return {"handover": HandoverOut.model_validate(handover).model_dump(), "message": "Handover updated"}


@router.post("/{workflow_id}/complete")
def complete_workflow(
    workflow_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_role(HR_ROLES)),
):
    workflow = OffboardingService(db, current_user.tenant_id).complete(current_user, workflow_id)
    return {
        "workflow": _workflow(workflow),
        "message": "Offboarding workflow completed. Employee status updated to offboarded.",
    }
