from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime
from typing import Optional

from app.models.leave_request import AbsenceCategory, LeaveStatus, SickReason


class LeaveRequestCreate(BaseModel):
    leave_start_date: date
    leave_end_date: date
    total_days: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.leave_end_date < self.leave_start_date:
            raise ValueError("leave_end_date must be on or after leave_start_date")
        return self


class SickLeaveReport(BaseModel):
    leave_start_date: date
    leave_end_date: Optional[date] = None
    is_ongoing: bool = False
    sick_reason: SickReason = SickReason.ILLNESS
    notes: Optional[str] = None


class StatutoryLeaveReport(BaseModel):
    absence_category: AbsenceCategory
    leave_start_date: date
    leave_end_date: date
    notes: Optional[str] = None


class LeaveDecision(BaseModel):
    rejection_reason: Optional[str] = None


class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    employee_name: Optional[str] = None
    manager_id: Optional[int] = None
    absence_category: AbsenceCategory
    sick_reason: Optional[SickReason] = None
    request_date: date
    leave_start_date: date
    leave_end_date: date
    total_days: float
    notice_days: int
    is_urgent: bool
    notes: Optional[str] = None
    status: LeaveStatus
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
