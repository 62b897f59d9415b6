from sqlalchemy import Column, Integer, String, Date, Float, ForeignKey, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, StrEnumType
import enum


class PatternType(str, enum.Enum):
    FREQUENCY = "frequency"
    MONDAY_FRIDAY = "monday_friday"
    POST_HOLIDAY = "post_holiday"
    DURATION_TREND = "duration_trend"
    SHORT_NOTICE = "short_notice"
    RECURRING_REASON = "recurring_reason"


class InsightPriority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InsightStatus(str, enum.Enum):
    NEW = "new"
    PENDING_REVIEW = "pending_review"
    REVIEWED = "reviewed"
    ACTION_TAKEN = "action_taken"
    DISMISSED = "dismissed"


class AbsenceInsight(Base):
    __tablename__ = "absence_insights"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    pattern_type = Column(StrEnumType(PatternType), nullable=False, index=True)
    priority = Column(StrEnumType(InsightPriority), default=InsightPriority.MEDIUM, nullable=False)
    status = Column(StrEnumType(InsightStatus), default=InsightStatus.NEW, nullable=False, index=True)

    detection_date = Column(Date, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    pattern_data = Column(JSON, default=dict, nullable=False)
    related_absence_ids = Column(JSON, default=list, nullable=False)
    summary = Column(Text, nullable=False)

    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)
    action_taken = Column(Text, nullable=True)
    action_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    action_at = Column(DateTime(timezone=True), nullable=True)
    follow_up_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
    history = relationship(
        "InsightReviewHistory",
        back_populates="insight",
        order_by="InsightReviewHistory.id",
        cascade="all, delete-orphan",
    )


class InsightReviewHistory(Base):
    __tablename__ = "insight_review_history"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    insight_id = Column(Integer, ForeignKey("absence_insights.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=False)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    insight = relationship("AbsenceInsight", back_populates="history")


class AbsenceSummary(Base):
    """Rolling 12-month aggregate per employee, upserted after every analysis."""
    __tablename__ = "absence_summaries"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)

    total_sick_days_12m = Column(Float, default=0, nullable=False)
    total_absences_12m = Column(Integer, default=0, nullable=False)
    avg_duration_12m = Column(Float, default=0, nullable=False)
    monday_absences_12m = Column(Integer, default=0, nullable=False)
    friday_absences_12m = Column(Integer, default=0, nullable=False)
    same_day_reports_12m = Column(Integer, default=0, nullable=False)
    bradford_factor = Column(Float, default=0, nullable=False)
    last_absence_date = Column(Date, nullable=True)
    last_absence_reason = Column(String(50), nullable=True)

    calculated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
