from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, StrEnumType
import enum


class TerminationType(str, enum.Enum):
    RESIGNATION = "resignation"
    TERMINATION = "termination"
    REDUNDANCY = "redundancy"
    RETIREMENT = "retirement"
    END_OF_CONTRACT = "end_of_contract"
    TUPE_TRANSFER = "tupe_transfer"
    DEATH_IN_SERVICE = "death_in_service"


class OffboardingStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ChecklistItemType(str, enum.Enum):
    EQUIPMENT_RETURN = "equipment_return"
    IT_ACCESS_REVOKE = "it_access_revoke"
    BADGE_COLLECTION = "badge_collection"
    KEY_RETURN = "key_return"
    HANDOVER_DOCS = "handover_docs"
    EXIT_INTERVIEW = "exit_interview"
    FINAL_PAY = "final_pay"
    P45_ISSUED = "p45_issued"
    DATA_RETENTION = "data_retention"
    MANAGER_SIGNOFF = "manager_signoff"
    HR_SIGNOFF = "hr_signoff"
    CUSTOM = "custom"


class HandoverStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class OffboardingWorkflow(Base):
    __tablename__ = "offboarding_workflows"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    termination_type = Column(StrEnumType(TerminationType), nullable=False)
    notice_date = Column(Date, nullable=False)
    last_working_day = Column(Date, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    eligible_for_rehire = Column(Boolean, nullable=True)
    reference_agreed = Column(Boolean, default=True, nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(StrEnumType(OffboardingStatus), default=OffboardingStatus.PENDING, nullable=False, index=True)
    initiated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    hr_owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
    checklist = relationship(
        "OffboardingChecklistItem",
        back_populates="workflow",
        order_by="OffboardingChecklistItem.sort_order",
        cascade="all, delete-orphan",
    )
    exit_interview = relationship("ExitInterview", back_populates="workflow", uselist=False, cascade="all, delete-orphan")
    handovers = relationship(
        "OffboardingHandover",
        back_populates="workflow",
        order_by="OffboardingHandover.id",
        cascade="all, delete-orphan",
    )


class OffboardingChecklistItem(Base):
    __tablename__ = "offboarding_checklist_items"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("offboarding_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type = Column(StrEnumType(ChecklistItemType), nullable=False)
    item_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    assigned_role = Column(String(50), nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    due_date = Column(Date, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)

    completed = Column(Boolean, default=False, nullable=False)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completion_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    workflow = relationship("OffboardingWorkflow", back_populates="checklist")


class ExitInterview(Base):
    __tablename__ = "exit_interviews"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("offboarding_workflows.id", ondelete="CASCADE"), nullable=False, unique=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    interviewer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    conducted_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(30), default="pending", nullable=False)

    reason_for_leaving = Column(Text, nullable=True)
    would_recommend = Column(Boolean, nullable=True)
    would_return = Column(Boolean, nullable=True)
    overall_satisfaction = Column(Integer, nullable=True)
    feedback_management = Column(Text, nullable=True)
    feedback_culture = Column(Text, nullable=True)
    feedback_role = Column(Text, nullable=True)
    suggestions = Column(Text, nullable=True)
    # Visible to Admin / HR Manager only
    hr_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    workflow = relationship("OffboardingWorkflow", back_populates="exit_interview")


class OffboardingHandover(Base):
    __tablename__ = "offboarding_handovers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    workflow_id = Column(Integer, ForeignKey("offboarding_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    handover_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    due_date = Column(Date, nullable=True)
    status = Column(StrEnumType(HandoverStatus), default=HandoverStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    workflow = relationship("OffboardingWorkflow", back_populates="handovers")
