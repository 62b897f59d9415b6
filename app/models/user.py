"""
User Model with tenant-scoped RBAC.
Carries the role, seniority tier and additional role codes that the
session authorization gate evaluates.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from app.database import Base, StrEnumType


class UserRole(str, enum.Enum):
    """
    Primary roles.

    - ADMIN: full access within the tenant
    - HR_MANAGER: people operations (offboarding, GDPR, exit interviews)
    - MANAGER: approvals and reviews for direct reports
    - COMPLIANCE_OFFICER: read-only oversight of reviews
    - EMPLOYEE: self-service access
    """
    ADMIN = "Admin"
    HR_MANAGER = "HR Manager"
    MANAGER = "Manager"
    COMPLIANCE_OFFICER = "Compliance Officer"
    EMPLOYEE = "Employee"


class EmploymentStatus(str, enum.Enum):
    ACTIVE = "active"
    ON_LEAVE = "on_leave"
    SUSPENDED = "suspended"
    OFFBOARDED = "offboarded"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String(255), nullable=False)
    employee_number = Column(String(50), nullable=True)

    role = Column(StrEnumType(UserRole), default=UserRole.EMPLOYEE, nullable=False)
    # Higher number = more senior; NULL means untiered
    tier = Column(Integer, nullable=True)
    additional_roles = Column(JSON, default=list, nullable=False)
    permissions = Column(JSON, default=list, nullable=False)

    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    employment_status = Column(StrEnumType(EmploymentStatus), default=EmploymentStatus.ACTIVE, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tenant = relationship("Tenant", back_populates="users")
    manager = relationship("User", remote_side=[id], backref="direct_reports")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"

    @property
    def is_active(self) -> bool:
        return self.employment_status == EmploymentStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_hr(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.HR_MANAGER)
