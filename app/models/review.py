from sqlalchemy import Column, Integer, Boolean, Date, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

RATING_FIELDS = ("tasks_completed", "work_volume", "problem_solving", "communication", "leadership")


class Review(Base):
    """
    One week's assessment of one employee.

    Manager reviews and self-reflections share the table; a self-reflection has
    ``is_self_assessment`` set and ``reviewer_id == employee_id``.
    """
    __tablename__ = "reviews"
    # One manager review and one self-reflection per employee per week
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "review_date", "is_self_assessment",
            name="uq_reviews_employee_week_kind",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    review_date = Column(Date, nullable=False, index=True)

    goals = Column(Text, nullable=True)
    achievements = Column(Text, nullable=True)
    areas_for_improvement = Column(Text, nullable=True)

    # 1-10 scale
    tasks_completed = Column(Integer, nullable=True)
    work_volume = Column(Integer, nullable=True)
    problem_solving = Column(Integer, nullable=True)
    communication = Column(Integer, nullable=True)
    leadership = Column(Integer, nullable=True)

    is_self_assessment = Column(Boolean, default=False, nullable=False)
    is_committed = Column(Boolean, default=False, nullable=False)
    committed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
    reviewer = relationship("User", foreign_keys=[reviewer_id])

    def ratings(self) -> dict:
        return {field: getattr(self, field) for field in RATING_FIELDS}
