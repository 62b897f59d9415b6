from sqlalchemy import Column, Integer, DateTime, ForeignKey, Text, JSON
from sqlalchemy.sql import func
from app.database import Base, StrEnumType
import enum


class DataRequestType(str, enum.Enum):
    EXPORT = "export"
    DELETION = "deletion"


class DataRequestStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class DataRequest(Base):
    """GDPR subject-access (export) or erasure (deletion) request."""
    __tablename__ = "data_requests"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    request_type = Column(StrEnumType(DataRequestType), nullable=False)
    status = Column(StrEnumType(DataRequestStatus), default=DataRequestStatus.PENDING, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    export_data = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
