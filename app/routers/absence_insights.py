from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models.absence import (
    AbsenceInsight,
    AbsenceSummary,
    InsightPriority,
    InsightReviewHistory,
    InsightStatus,
    PatternType,
)
from app.models.leave_request import LeaveRequest
from app.models.user import User, UserRole
from app.routers.auth_deps import get_tenant_db, require_admin, require_manager
from app.routers.leave import serialize_leave
from app.services.absence_patterns import AbsencePatternService
from app.services.audit import AuditService

router = APIRouter(prefix="/absence-insights", tags=["Absence Insights"])

OPEN_EXCLUDED = (InsightStatus.DISMISSED, InsightStatus.ACTION_TAKEN)
FOLLOW_UP_WINDOW_DAYS = 7

STATUS_RANK = case(
    (AbsenceInsight.status == InsightStatus.NEW, 1),
    (AbsenceInsight.status == InsightStatus.PENDING_REVIEW, 2),
    (AbsenceInsight.status == InsightStatus.REVIEWED, 3),
    (AbsenceInsight.status == InsightStatus.ACTION_TAKEN, 4),
    else_=5,
)
PRIORITY_RANK = case(
    (AbsenceInsight.priority == InsightPriority.HIGH, 1),
    (AbsenceInsight.priority == InsightPriority.MEDIUM, 2),
    else_=3,
)


# --- Pydantic Schemas ---
class InsightReview(BaseModel):
    notes: Optional[str] = None


class InsightAction(BaseModel):
    action_taken: Optional[str] = None
    follow_up_date: Optional[date] = None
    notes: Optional[str] = None


class InsightDismiss(BaseModel):
    reason: Optional[str] = None


class InsightOut(BaseModel):
    id: int
    employee_id: int
    pattern_type: PatternType
    priority: InsightPriority
    status: InsightStatus
    detection_date: date
    period_start: date
    period_end: date
    pattern_data: dict
    related_absence_ids: List[int]
    summary: str
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    action_taken: Optional[str] = None
    action_by: Optional[int] = None
    action_at: Optional[datetime] = None
    follow_up_date: Optional[date] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SummaryOut(BaseModel):
    employee_id: int
    total_sick_days_12m: float
    total_absences_12m: int
    avg_duration_12m: float
    monday_absences_12m: int
    friday_absences_12m: int
    same_day_reports_12m: int
    bradford_factor: float
    last_absence_date: Optional[date] = None
    last_absence_reason: Optional[str] = None
    calculated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- helpers ---

def _serialize(insight: AbsenceInsight) -> dict:
    data = InsightOut.model_validate(insight).model_dump()
    data["employee_name"] = insight.employee.full_name if insight.employee else None
    data["employee_number"] = insight.employee.employee_number if insight.employee else None
    return data


def _summary(summary: Optional[AbsenceSummary]) -> Optional[dict]:
    return SummaryOut.model_validate(summary).model_dump() if summary else None


def _team_ids(db: Session, manager: User):
    return db.query(User.id).filter(User.tenant_id == manager.tenant_id, User.manager_id == manager.id)


def _scoped(query, db: Session, user: User, column):
    """Managers only see their direct reports."""
    if user.role != UserRole.ADMIN:
        query = query.filter(column.in_(_team_ids(db, user)))
    return query


def _ensure_employee_visible(db: Session, user: User, employee_id: int) -> User:
    employee = db.query(User).filter(User.id == employee_id, User.tenant_id == user.tenant_id).first()
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")
    if user.role != UserRole.ADMIN and employee.manager_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return employee


def _get_insight(db: Session, user: User, insight_id: int) -> AbsenceInsight:
    insight = db.query(AbsenceInsight).filter(
        AbsenceInsight.id == insight_id,
        AbsenceInsight.tenant_id == user.tenant_id,
    ).first()
    if not insight:
        raise HTTPException(status_code=404, detail="Insight not found")
    if user.role != UserRole.ADMIN and (insight.employee is None or insight.employee.manager_id != user.id):
        raise HTTPException(status_code=403, detail="Access denied")
    return insight


def _transition(db: Session, user: User, insight: AbsenceInsight, new_status: InsightStatus, notes: Optional[str]):
    before = {"status": insight.status}
    AbsencePatternService(db, user.tenant_id).change_status(insight, new_status, user.id, notes)
    AuditService.log(
        db,
        action=f"insight_{new_status.value}",
        entity_type="absence_insight",
        entity_id=insight.id,
        user_id=user.id,
        user_role=user.role,
        details={"employee_id": insight.employee_id, "pattern_type": insight.pattern_type, "notes": notes},
        tenant_id=user.tenant_id,
        before_state=before,
        after_state={"status": new_status},
    )
    db.commit()
    db.refresh(insight)
    return insight


# --- Endpoints ---

@router.get("/")
def list_insights(
    status: Optional[InsightStatus] = None,
    priority: Optional[InsightPriority] = None,
    pattern_type: Optional[PatternType] = None,
    employee_id: Optional[int] = None,
    include_dismissed: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    filters = [AbsenceInsight.tenant_id == current_user.tenant_id]
    if status:
        filters.append(AbsenceInsight.status == status)
    elif not include_dismissed:
        filters.append(AbsenceInsight.status != InsightStatus.DISMISSED)
    if priority:
        filters.append(AbsenceInsight.priority == priority)
    if pattern_type:
        filters.append(AbsenceInsight.pattern_type == pattern_type)
    if employee_id:
        filters.append(AbsenceInsight.employee_id == employee_id)

    query = _scoped(db.query(AbsenceInsight).filter(*filters), db, current_user, AbsenceInsight.employee_id)
    insights = query.order_by(
        STATUS_RANK, PRIORITY_RANK, AbsenceInsight.detection_date.desc(), AbsenceInsight.id.desc()
    ).offset(offset).limit(limit).all()

    count_query = _scoped(
        db.query(AbsenceInsight.status, func.count(AbsenceInsight.id)).filter(*filters),
        db, current_user, AbsenceInsight.employee_id,
    )
    counts = {
        (s.value if hasattr(s, "value") else s): n
        for s, n in count_query.group_by(AbsenceInsight.status).all()
    }
    return {
        "insights": [_serialize(i) for i in insights],
        "counts": counts,
        "pagination": {"limit": limit, "offset": offset, "total": sum(counts.values())},
    }


@router.get("/dashboard")
def insights_dashboard(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    base = _scoped(
        db.query(AbsenceInsight).filter(AbsenceInsight.tenant_id == current_user.tenant_id),
        db, current_user, AbsenceInsight.employee_id,
    )
    insights = base.all()
    recent_cutoff = date.today() - timedelta(days=7)
    open_insights = [i for i in insights if i.status not in OPEN_EXCLUDED]

    overview = {
        "pending_count": sum(1 for i in insights if i.status in (InsightStatus.NEW, InsightStatus.PENDING_REVIEW)),
        "new_count": sum(1 for i in insights if i.status == InsightStatus.NEW),
        "high_priority_count": sum(1 for i in open_insights if i.priority == InsightPriority.HIGH),
        "recent_count": sum(1 for i in insights if i.detection_date >= recent_cutoff),
    }

    breakdown = {}
    for insight in open_insights:
        key = insight.pattern_type.value
        breakdown[key] = breakdown.get(key, 0) + 1
    pattern_breakdown = [
        {"pattern_type": k, "count": v}
        for k, v in sorted(breakdown.items(), key=lambda kv: kv[1], reverse=True)
    ]

    high_priority = sorted(
        (i for i in open_insights if i.priority == InsightPriority.HIGH),
        key=lambda i: i.detection_date,
        reverse=True,
    )[:5]

    bradford = _scoped(
        db.query(AbsenceSummary).filter(
            AbsenceSummary.tenant_id == current_user.tenant_id,
            AbsenceSummary.bradford_factor > 0,
        ),
        db, current_user, AbsenceSummary.employee_id,
    ).order_by(AbsenceSummary.bradford_factor.desc()).limit(10).all()

    return {
        "overview": overview,
        "pattern_breakdown": pattern_breakdown,
        "high_priority_insights": [_serialize(i) for i in high_priority],
        "top_bradford_scores": [
            {
                "employee_id": s.employee_id,
                "employee_name": s.employee.full_name if s.employee else None,
                "employee_number": s.employee.employee_number if s.employee else None,
                "bradford_factor": s.bradford_factor,
                "total_absences_12m": s.total_absences_12m,
                "total_sick_days_12m": s.total_sick_days_12m,
            }
            for s in bradford
        ],
    }


@router.get("/follow-ups/pending")
def pending_follow_ups(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    horizon = date.today() + timedelta(days=FOLLOW_UP_WINDOW_DAYS)
    query = _scoped(
        db.query(AbsenceInsight).filter(
            AbsenceInsight.tenant_id == current_user.tenant_id,
            AbsenceInsight.status == InsightStatus.ACTION_TAKEN,
            AbsenceInsight.follow_up_date.isnot(None),
            AbsenceInsight.follow_up_date <= horizon,
        ),
        db, current_user, AbsenceInsight.employee_id,
    )
    return {"follow_ups": [_serialize(i) for i in query.order_by(AbsenceInsight.follow_up_date).all()]}


@router.get("/employee/{employee_id}")
def employee_insights(
    employee_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    _ensure_employee_visible(db, current_user, employee_id)
    insights = db.query(AbsenceInsight).filter(
        AbsenceInsight.tenant_id == current_user.tenant_id,
        AbsenceInsight.employee_id == employee_id,
    ).order_by(AbsenceInsight.detection_date.desc()).all()
    summary = db.query(AbsenceSummary).filter(
        AbsenceSummary.tenant_id == current_user.tenant_id,
        AbsenceSummary.employee_id == employee_id,
    ).first()
    return {"insights": [_serialize(i) for i in insights], "summary": _summary(summary)}


@router.post("/run-detection/{employee_id}")
def run_detection(
    employee_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    _ensure_employee_visible(db, current_user, employee_id)
    summary, insights = AbsencePatternService(db, current_user.tenant_id).analyze(employee_id)
    return {
        "message": f"Pattern detection complete. {len(insights)} new insight(s) generated.",
        "summary": _summary(summary),
        "insights": [_serialize(i) for i in insights],
    }


@router.get("/{insight_id}")
def get_insight(
    insight_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    insight = _get_insight(db, current_user, insight_id)
    related = []
    if insight.related_absence_ids:
        related = db.query(LeaveRequest).filter(
            LeaveRequest.tenant_id == current_user.tenant_id,
            LeaveRequest.id.in_(insight.related_absence_ids),
        ).order_by(LeaveRequest.leave_start_date.desc()).all()
    summary = db.query(AbsenceSummary).filter(
        AbsenceSummary.tenant_id == current_user.tenant_id,
        AbsenceSummary.employee_id == insight.employee_id,
    ).first()
    history = db.query(InsightReviewHistory).filter(
        InsightReviewHistory.insight_id == insight.id,
    ).order_by(InsightReviewHistory.id.desc()).all()

    data = _serialize(insight)
    data["related_absences"] = [serialize_leave(a) for a in related]
    data["review_history"] = [
        {
            "previous_status": h.previous_status,
            "new_status": h.new_status,
            "changed_by": h.changed_by,
            "notes": h.notes,
            "created_at": h.created_at,
        }
        for h in history
    ]
    data["employee_summary"] = _summary(summary)
    return {"insight": data}


@router.put("/{insight_id}/review")
def review_insight(
    insight_id: int,
    payload: InsightReview,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    insight = _get_insight(db, current_user, insight_id)
    insight.reviewed_by = current_user.id
    insight.reviewed_at = datetime.now(timezone.utc)
    insight.review_notes = payload.notes
    insight = _transition(db, current_user, insight, InsightStatus.REVIEWED, payload.notes)
    return {"insight": _serialize(insight), "message": "Insight marked as reviewed"}


@router.put("/{insight_id}/action")
def record_action(
    insight_id: int,
    payload: InsightAction,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    if not payload.action_taken or not payload.action_taken.strip():
        raise HTTPException(status_code=400, detail="Action description required")
    insight = _get_insight(db, current_user, insight_id)
    insight.action_taken = payload.action_taken.strip()
    insight.action_by = current_user.id
    insight.action_at = datetime.now(timezone.utc)
    insight.follow_up_date = payload.follow_up_date
    if insight.reviewed_by is None:
        insight.reviewed_by = current_user.id
        insight.reviewed_at = insight.action_at
    insight = _transition(db, current_user, insight, InsightStatus.ACTION_TAKEN, payload.notes or insight.action_taken)
    return {"insight": _serialize(insight), "message": "Action recorded"}


@router.put("/{insight_id}/dismiss")
def dismiss_insight(
    insight_id: int,
    payload: Optional[InsightDismiss] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    reason = (payload.reason if payload else None) or "Dismissed by reviewer"
    insight = _get_insight(db, current_user, insight_id)
    insight.reviewed_by = current_user.id
    insight.reviewed_at = datetime.now(timezone.utc)
    insight.review_notes = reason
    insight = _transition(db, current_user, insight, InsightStatus.DISMISSED, reason)
    return {"insight": _serialize(insight), "message": "Insight dismissed"}
