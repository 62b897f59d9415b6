from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Text, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, StrEnumType
import enum


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class AbsenceCategory(str, enum.Enum):
    ANNUAL = "annual"
    SICK = "sick"
    BEREAVEMENT = "bereavement"
    COMPASSIONATE = "compassionate"
    OTHER = "other"


class SickReason(str, enum.Enum):
    ILLNESS = "illness"
    INJURY = "injury"
    MENTAL_HEALTH = "mental_health"
    MEDICAL_APPOINTMENT = "medical_appointment"
    OTHER = "other"


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    absence_category = Column(StrEnumType(AbsenceCategory), default=AbsenceCategory.ANNUAL, nullable=False, index=True)
    sick_reason = Column(StrEnumType(SickReason), nullable=True)
    request_date = Column(Date, nullable=False)
    leave_start_date = Column(Date, nullable=False, index=True)
    leave_end_date = Column(Date, nullable=False)
    total_days = Column(Float, nullable=False, default=1)
    # Days between request_date and leave_start_date; <= 0 means same-day/retrospective
    notice_days = Column(Integer, nullable=False, default=0)
    is_urgent = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(StrEnumType(LeaveStatus), default=LeaveStatus.PENDING, nullable=False, index=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
