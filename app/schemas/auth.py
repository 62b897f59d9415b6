from pydantic import BaseModel, EmailStr, ConfigDict, Field
from typing import List, Optional
from app.models.user import EmploymentStatus, UserRole
from datetime import date, datetime


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordVerify(BaseModel):
    password: Optional[str] = None


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)
    role: UserRole = UserRole.EMPLOYEE
    tier: Optional[int] = Field(default=None, ge=0, le=100)
    manager_id: Optional[int] = None
    additional_roles: List[str] = []
    permissions: List[str] = []
    employee_number: Optional[str] = None
    start_date: Optional[date] = None


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8)
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    tier: Optional[int] = Field(default=None, ge=0, le=100)
    manager_id: Optional[int] = None
    additional_roles: Optional[List[str]] = None
    permissions: Optional[List[str]] = None
    employee_number: Optional[str] = None
    employment_status: Optional[EmploymentStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    email: EmailStr
    full_name: str
    employee_number: Optional[str] = None
    role: UserRole
    tier: Optional[int] = None
    additional_roles: List[str] = []
    permissions: List[str] = []
    manager_id: Optional[int] = None
    employment_status: EmploymentStatus
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: Optional[datetime] = None


class AuditAccessStatus(BaseModel):
    verified: bool
    expires_at: Optional[float] = None
    remaining_ms: int = 0
