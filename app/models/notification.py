from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, StrEnumType
import enum


class NotificationType(str, enum.Enum):
    MANAGER_SNAPSHOT_COMMITTED = "manager_snapshot_committed"
    SNAPSHOT_OVERDUE = "snapshot_overdue"
    SELF_REFLECTION_OVERDUE = "self_reflection_overdue"
    LEAVE_REQUEST_PENDING = "leave_request_pending"
    LEAVE_REQUEST_APPROVED = "leave_request_approved"
    LEAVE_REQUEST_REJECTED = "leave_request_rejected"
    EMPLOYEE_TRANSFERRED = "employee_transferred"
    NEW_DIRECT_REPORT = "new_direct_report"
    KPI_REVEALED = "kpi_revealed"
    URGENT_SICK_LEAVE = "urgent_sick_leave"
    URGENT_ABSENCE_REQUEST = "urgent_absence_request"
    OFFBOARDING_INITIATED = "offboarding_initiated"
    OFFBOARDING_COMPLETED = "offboarding_completed"
    OFFBOARDING_REMINDER = "offboarding_reminder"
    EXIT_INTERVIEW_SCHEDULED = "exit_interview_scheduled"
    HANDOVER_ASSIGNED = "handover_assigned"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(StrEnumType(NotificationType), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # Deep-link target, e.g. ("review", 12)
    related_id = Column(Integer, nullable=True)
    related_type = Column(String(50), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    is_urgent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    read_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
