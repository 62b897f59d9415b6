"""
Offboarding checklist gate.

A workflow cannot be completed while any checklist item is open. Completing
it marks the employee as offboarded in the same transaction.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import BusinessRuleError, NotFoundError
from app.core.tenant_context import tenant_transaction
from app.models.notification import NotificationType
from app.models.offboarding import (
    ChecklistItemType,
    ExitInterview,
    OffboardingChecklistItem,
    OffboardingStatus,
    OffboardingWorkflow,
)
from app.models.user import EmploymentStatus, User
from app.services.audit import AuditService
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

DEFAULT_CHECKLIST = [
    (ChecklistItemType.EQUIPMENT_RETURN, "Return laptop/computer", "IT"),
    (ChecklistItemType.EQUIPMENT_RETURN, "Return mobile phone", "IT"),
    (ChecklistItemType.IT_ACCESS_REVOKE, "Revoke system access", "IT"),
    (ChecklistItemType.IT_ACCESS_REVOKE, "Disable email account", "IT"),
    (ChecklistItemType.BADGE_COLLECTION, "Collect ID badge", "HR"),
    (ChecklistItemType.KEY_RETURN, "Return office keys", "Manager"),
    (ChecklistItemType.HANDOVER_DOCS, "Complete handover documentation", "Employee"),
    (ChecklistItemType.EXIT_INTERVIEW, "Conduct exit interview", "HR"),
    (ChecklistItemType.FINAL_PAY, "Process final pay", "Payroll"),
    (ChecklistItemType.P45_ISSUED, "Issue P45", "Payroll"),
    (ChecklistItemType.DATA_RETENTION, "Flag records for GDPR retention", "HR"),
    (ChecklistItemType.MANAGER_SIGNOFF, "Manager sign-off", "Manager"),
    (ChecklistItemType.HR_SIGNOFF, "HR sign-off", "HR"),
]

# (days before last working day, label, urgent)
DEADLINE_MILESTONES = [
    (14, "2 weeks", False),
    (7, "1 week", False),
    (2, "2 days", True),
    (1, "tomorrow", True),
    (0, "today", True),
]

ACTIVE_STATUSES = (OffboardingStatus.PENDING, OffboardingStatus.IN_PROGRESS)


def workflow_state(workflow: OffboardingWorkflow) -> dict:
    return {
        "status": workflow.status,
        "last_working_day": workflow.last_working_day,
        "termination_type": workflow.termination_type,
        "completed_at": workflow.completed_at,
    }


class OffboardingService:
    def __init__(self, db: Session, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id

    def get(self, workflow_id: int) -> OffboardingWorkflow:
        workflow = self.db.query(OffboardingWorkflow).filter(
            OffboardingWorkflow.id == workflow_id,
            OffboardingWorkflow.tenant_id == self.tenant_id,
        ).first()
        if workflow is None:
            raise NotFoundError("Workflow")
        return workflow

    def active_for(self, employee_id: int) -> Optional[OffboardingWorkflow]:
        return self.db.query(OffboardingWorkflow).filter(
            OffboardingWorkflow.tenant_id == self.tenant_id,
            OffboardingWorkflow.employee_id == employee_id,
            OffboardingWorkflow.status.in_(ACTIVE_STATUSES),
        ).first()

    def initiate(self, actor: User, employee_id: int, details: dict) -> OffboardingWorkflow:
        employee = self.db.query(User).filter(
            User.id == employee_id, User.tenant_id == self.tenant_id
        ).first()
        if employee is None:
            raise NotFoundError("Employee")
        if employee.employment_status == EmploymentStatus.OFFBOARDED:
            raise BusinessRuleError("Employee is already offboarded")
        existing = self.active_for(employee_id)
        if existing is not None:
            raise BusinessRuleError(
                "Active offboarding workflow already exists for this employee",
                details={"existing_workflow_id": existing.id},
            )

        workflow = OffboardingWorkflow(
            tenant_id=self.tenant_id,
            employee_id=employee.id,
            termination_type=details["termination_type"],
            notice_date=details["notice_date"],
            last_working_day=details["last_working_day"],
            reason=details.get("reason"),
            eligible_for_rehire=details.get("eligible_for_rehire"),
            reference_agreed=details.get("reference_agreed", True) is not False,
            notes=details.get("notes"),
            status=OffboardingStatus.PENDING,
            initiated_by=actor.id,
            manager_id=employee.manager_id,
            hr_owner_id=details.get("hr_owner_id") or actor.id,
        )
        for order, (item_type, name, role) in enumerate(DEFAULT_CHECKLIST, start=1):
            workflow.checklist.append(OffboardingChecklistItem(
                tenant_id=self.tenant_id,
                item_type=item_type,
                item_name=name,
                assigned_role=role,
                sort_order=order,
            ))
        workflow.exit_interview = ExitInterview(tenant_id=self.tenant_id, employee_id=employee.id)
        self.db.add(workflow)
        self.db.flush()

        AuditService.log(
            self.db,
            action="offboarding_initiated",
            entity_type="offboarding_workflow",
            entity_id=workflow.id,
            user_id=actor.id,
            user_role=actor.role,
            details={"employee_id": employee.id},
            tenant_id=self.tenant_id,
            after_state=workflow_state(workflow),
        )
        self.db.commit()
        self.db.refresh(workflow)

        NotificationService.notify_user(
            self.db, self.tenant_id, employee.manager_id,
            NotificationType.OFFBOARDING_INITIATED,
            f"Offboarding initiated for {employee.full_name}",
            f"{employee.full_name} is leaving. Last working day: {workflow.last_working_day.isoformat()}. "
            "Please review handover requirements.",
            related_id=workflow.id, related_type="offboarding",
        )
        logger.info(f"Offboarding workflow {workflow.id} initiated for employee {employee.id}")
        return workflow

    def add_checklist_item(self, workflow: OffboardingWorkflow, fields: dict) -> OffboardingChecklistItem:
        max_order = self.db.query(func.max(OffboardingChecklistItem.sort_order)).filter(
            OffboardingChecklistItem.workflow_id == workflow.id
        ).scalar() or 0
        item = OffboardingChecklistItem(
            tenant_id=self.tenant_id,
            workflow_id=workflow.id,
            item_type=fields.get("item_type") or ChecklistItemType.CUSTOM,
            item_name=fields["item_name"],
            description=fields.get("description"),
            assigned_role=fields.get("assigned_role"),
            assigned_to=fields.get("assigned_to"),
            due_date=fields.get("due_date"),
            sort_order=max_order + 1,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def update_checklist_item(self, actor: User, workflow: OffboardingWorkflow, item_id: int, changes: dict):
        item = self.db.query(OffboardingChecklistItem).filter(
            OffboardingChecklistItem.id == item_id,
            OffboardingChecklistItem.workflow_id == workflow.id,
            OffboardingChecklistItem.tenant_id == self.tenant_id,
        ).first()
        if item is None:
            raise NotFoundError("Checklist item")

        if "completed" in changes and changes["completed"] is not None:
            item.completed = bool(changes["completed"])
            if item.completed:
                item.completed_by = actor.id
                item.completed_at = datetime.now(timezone.utc)
            else:
                item.completed_by = None
                item.completed_at = None
        for key in ("assigned_to", "due_date", "completion_notes"):
            if key in changes:
                setattr(item, key, changes[key])

        if item.completed and workflow.status == OffboardingStatus.PENDING:
            workflow.status = OffboardingStatus.IN_PROGRESS
        self.db.commit()
        self.db.refresh(item)
        return item

    def incomplete_items(self, workflow: OffboardingWorkflow) -> List[OffboardingChecklistItem]:
        return self.db.query(OffboardingChecklistItem).filter(
            OffboardingChecklistItem.workflow_id == workflow.id,
            OffboardingChecklistItem.completed == False,  # noqa: E712
        ).order_by(OffboardingChecklistItem.sort_order).all()

    def complete(self, actor: User, workflow_id: int) -> OffboardingWorkflow:
        workflow = self.get(workflow_id)
        if workflow.status == OffboardingStatus.COMPLETED:
            raise BusinessRuleError("Workflow already completed")
        if workflow.status == OffboardingStatus.CANCELLED:
            raise BusinessRuleError("Cannot complete a cancelled workflow")

        incomplete = self.incomplete_items(workflow)
        if incomplete:
            raise BusinessRuleError(
                "Cannot complete workflow with incomplete checklist items",
                details={
                    "incomplete_items": len(incomplete),
                    "incomplete_item_names": [i.item_name for i in incomplete],
                },
            )

        before = workflow_state(workflow)
        employee = workflow.employee
        with tenant_transaction(self.db, self.tenant_id, actor.id):
            workflow.status = OffboardingStatus.COMPLETED
            workflow.completed_at = datetime.now(timezone.utc)
            workflow.completed_by = actor.id
            employee.employment_status = EmploymentStatus.OFFBOARDED
            employee.end_date = workflow.last_working_day
            AuditService.log(
                self.db,
                action="offboarding_completed",
                entity_type="offboarding_workflow",
                entity_id=workflow.id,
                user_id=actor.id,
                user_role=actor.role,
                details={"employee_id": employee.id},
                tenant_id=self.tenant_id,
                before_state=before,
                after_state=workflow_state(workflow),
            )
        self.db.refresh(workflow)
        logger.info(f"Offboarding workflow {workflow.id} completed; employee {employee.id} offboarded")

        NotificationService.notify_user(
            self.db, self.tenant_id, workflow.manager_id,
            NotificationType.OFFBOARDING_COMPLETED,
            "Offboarding complete",
            f"Offboarding for {employee.full_name} has been completed.",
            related_id=workflow.id, related_type="offboarding",
        )
        return workflow

    def check_deadlines(self, today: Optional[date] = None) -> dict:
        """Reminder sweep for upcoming last working days; meant for a daily scheduler."""
        today = today or date.today()
        details = []
        for days, label, urgent in DEADLINE_MILESTONES:
            target = today + timedelta(days=days)
            workflows = self.db.query(OffboardingWorkflow).filter(
                OffboardingWorkflow.tenant_id == self.tenant_id,
                OffboardingWorkflow.status.in_(ACTIVE_STATUSES),
                OffboardingWorkflow.last_working_day == target,
            ).all()
            for workflow in workflows:
                name = workflow.employee.full_name
                if days == 0:
                    title = f"Last day: {name}"
                    message = f"Today is {name}'s last working day. Ensure all offboarding tasks are complete."
                else:
                    title = f"Offboarding reminder: {name}"
                    message = f"{name}'s last working day is {label} away ({workflow.last_working_day.isoformat()})."
                notified = set()
                for recipient, who in ((workflow.hr_owner_id, "HR Owner"), (workflow.manager_id, "Manager")):
                    if recipient in notified:
                        continue
                    notified.add(recipient)
                    sent = NotificationService.notify_user(
                        self.db, self.tenant_id, recipient,
                        NotificationType.OFFBOARDING_REMINDER, title, message,
                        related_id=workflow.id, related_type="offboarding", is_urgent=urgent,
                    )
                    if sent is not None:
                        details.append({"user": who, "employee": name, "milestone": label})
        return {
            "message": f"Checked {len(DEADLINE_MILESTONES)} milestones",
            "notifications_created": len(details),
            "details": details,
        }
