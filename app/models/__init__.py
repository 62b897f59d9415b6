# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    tenant, user, review, leave_request, absence,
    offboarding, notification, audit_log, data_request
)

# Explicit class exports for cleaner imports
from .tenant import Tenant
from .user import User, UserRole, EmploymentStatus
from .review import Review
from .leave_request import LeaveRequest
from .absence import AbsenceInsight, AbsenceSummary, InsightReviewHistory
from .offboarding import OffboardingWorkflow, OffboardingChecklistItem, ExitInterview, OffboardingHandover
from .notification import Notification, NotificationType
from .audit_log import AuditLog
from .data_request import DataRequest

__all__ = [
    "Tenant",
    "User",
    "UserRole",
    "EmploymentStatus",
    "Review",
    "LeaveRequest",
    "AbsenceInsight",
    "AbsenceSummary",
    "InsightReviewHistory",
    "OffboardingWorkflow",
    "OffboardingChecklistItem",
    "ExitInterview",
    "OffboardingHandover",
    "Notification",
    "NotificationType",
    "AuditLog",
    "DataRequest",
]
