"""
Absence pattern detection.

A fixed set of heuristic checks is evaluated over an employee's last
12 months of sickness, bereavement and compassionate absences. Each check
compares a count or ratio against a threshold and may yield one insight.
Results are recomputed wholesale on every trigger (a newly reported
absence or a manual admin run).
"""
import calendar
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from app.models.absence import (
    AbsenceInsight,
    AbsenceSummary,
    InsightPriority,
    InsightStatus,
    InsightReviewHistory,
    PatternType,
)
from app.models.leave_request import AbsenceCategory, LeaveRequest, LeaveStatus

logger = logging.getLogger(__name__)

TRACKED_CATEGORIES = (AbsenceCategory.SICK, AbsenceCategory.BEREAVEMENT, AbsenceCategory.COMPASSIONATE)

THRESHOLDS = {
    "frequency": {"absences_per_90_days": 3, "high_at": 5},
    "monday_friday": {"min_absences": 4, "percentage": 50, "high_at": 70},
    "post_holiday": {"occurrences": 2, "days_after": 2, "high_at": 3},
    "duration_trend": {"min_periods": 2, "increase_percentage": 50, "high_at": 100},
    "short_notice": {"min_absences": 3, "same_day_count": 3, "percentage": 40, "high_at": 60},
    "recurring_reason": {"count": 3, "high_at": 5},
}

REASON_LABELS = {
    "illness": "General illness",
    "injury": "Injury",
    "mental_health": "Mental health",
    "medical_appointment": "Medical appointments",
    "other": "Other reasons",
}

# Insights with a period_start this close to an existing open one are duplicates
DEDUP_WINDOW_DAYS = 30


@dataclass
class PatternCandidate:
    pattern_type: PatternType
    priority: InsightPriority
    period_start: date
    period_end: date
    summary: str
    pattern_data: dict = field(default_factory=dict)
    related_absence_ids: List[int] = field(default_factory=list)


# --- date helpers ----------------------------------------------------------

def months_ago(today: date, months: int) -> date:
    year, month = divmod(today.year * 12 + (today.month - 1) - months, 12)
    month += 1
    day = min(today.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def duration_days(absence) -> int:
    """Calendar days, inclusive of both ends."""
    return (absence.leave_end_date - absence.leave_start_date).days + 1


def _percent(part: int, whole: int) -> int:
    return int(part * 100 / whole + 0.5) if whole else 0


def _category(absence) -> str:
    value = absence.absence_category
    return value.value if hasattr(value, "value") else value


def _reason(absence) -> Optional[str]:
    value = absence.sick_reason
    return value.value if hasattr(value, "value") else value


# --- Bradford factor / summary --------------------------------------------

def bradford_factor(spells: int, days: float) -> float:
    """S² × D: short, frequent absences score far higher than one long one."""
    return (spells * spells) * days


def calculate_summary(absences: Sequence, today: date) -> dict:
    window_start = months_ago(today, 12)
    recent = [a for a in absences if a.leave_start_date >= window_start]
    spells = len(recent)
    total_days = sum(duration_days(a) for a in recent)
    last = max(absences, key=lambda a: a.leave_start_date, default=None)
    return {
        "total_sick_days_12m": total_days,
        "total_absences_12m": spells,
        "avg_duration_12m": round(total_days / spells, 2) if spells else 0,
        "monday_absences_12m": sum(1 for a in recent if a.leave_start_date.weekday() == 0),
        "friday_absences_12m": sum(1 for a in recent if a.leave_start_date.weekday() == 4),
        "same_day_reports_12m": sum(1 for a in recent if a.notice_days is not None and a.notice_days <= 0),
        "bradford_factor": bradford_factor(spells, total_days),
        "last_absence_date": last.leave_start_date if last else None,
        "last_absence_reason": _reason(last) if last else None,
    }


# --- individual rules -----------------------------------------------------

def detect_frequency(absences: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["frequency"]
    window_start = today - timedelta(days=90)
    recent = [a for a in absences if a.leave_start_date >= window_start]
    if len(recent) < rule["absences_per_90_days"]:
        return None
    return PatternCandidate(
        pattern_type=PatternType.FREQUENCY,
        priority=InsightPriority.HIGH if len(recent) >= rule["high_at"] else InsightPriority.MEDIUM,
        period_start=window_start,
        period_end=today,
        pattern_data={
            "absence_count": len(recent),
            "period_days": 90,
            "threshold": rule["absences_per_90_days"],
        },
        related_absence_ids=[a.id for a in recent],
        summary=f"{len(recent)} absences in the last 90 days (threshold: {rule['absences_per_90_days']})",
    )


def detect_monday_friday(absences: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["monday_friday"]
    window_start = months_ago(today, 6)
    recent = [a for a in absences if a.leave_start_date >= window_start]
    if len(recent) < rule["min_absences"]:
        return None

    mondays = [a for a in recent if a.leave_start_date.weekday() == 0]
    fridays = [a for a in recent if a.leave_start_date.weekday() == 4]
    adjacent = len(mondays) + len(fridays)
    percentage = _percent(adjacent, len(recent))
    if percentage < rule["percentage"]:
        return None
    return PatternCandidate(
        pattern_type=PatternType.MONDAY_FRIDAY,
        priority=InsightPriority.HIGH if percentage >= rule["high_at"] else InsightPriority.MEDIUM,
        period_start=window_start,
        period_end=today,
        pattern_data={
            "monday_count": len(mondays),
            "friday_count": len(fridays),
            "total_absences": len(recent),
            "percentage": percentage,
        },
        related_absence_ids=[a.id for a in mondays + fridays],
        summary=f"{percentage}% of absences ({adjacent}/{len(recent)}) fall on Monday or Friday",
    )


def detect_post_holiday(absences: Sequence, holidays: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["post_holiday"]
    sick = [a for a in absences if _category(a) == AbsenceCategory.SICK.value]
    occurrences = []
    for holiday in holidays:
        for absence in sick:
            gap = (absence.leave_start_date - holiday.leave_end_date).days
            if 0 <= gap <= rule["days_after"]:
                occurrences.append({
                    "holiday_end": holiday.leave_end_date.isoformat(),
                    "absence_start": absence.leave_start_date.isoformat(),
                    "absence_id": absence.id,
                    "days_after": gap,
                })
    if len(occurrences) < rule["occurrences"]:
        return None
    return PatternCandidate(
        pattern_type=PatternType.POST_HOLIDAY,
        priority=InsightPriority.HIGH if len(occurrences) >= rule["high_at"] else InsightPriority.MEDIUM,
        period_start=months_ago(today, 12),
        period_end=today,
        pattern_data={
            "occurrences": occurrences,
            "threshold": rule["occurrences"],
            "days_window": rule["days_after"],
        },
        related_absence_ids=sorted({o["absence_id"] for o in occurrences}),
        summary=(
            f"Absent within {rule['days_after']} day(s) of returning from annual leave "
            f"on {len(occurrences)} occasions"
        ),
    )


def _quarter_key(day: date) -> str:
    return f"{day.year}-Q{(day.month - 1) // 3 + 1}"


def detect_duration_trend(absences: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["duration_trend"]
    quarters: Dict[str, List[int]] = {}
    for absence in absences:
        quarters.setdefault(_quarter_key(absence.leave_start_date), []).append(duration_days(absence))
    if len(quarters) < rule["min_periods"]:
        return None

    periods = OrderedDict(
        (key, round(sum(days) / len(days), 1)) for key, days in sorted(quarters.items())
    )
    first_avg = next(iter(periods.values()))
    last_avg = next(reversed(periods.values()))
    if first_avg <= 0 or last_avg <= first_avg:
        return None
    increase = int((last_avg - first_avg) / first_avg * 100 + 0.5)
    if increase < rule["increase_percentage"]:
        return None
    return PatternCandidate(
        pattern_type=PatternType.DURATION_TREND,
        priority=InsightPriority.HIGH if increase >= rule["high_at"] else InsightPriority.MEDIUM,
        period_start=months_ago(today, 12),
        period_end=today,
        pattern_data={
            "periods": [{"period": k, "avg_days": v} for k, v in periods.items()],
            "first_period_avg": first_avg,
            "last_period_avg": last_avg,
            "increase_percentage": increase,
        },
        related_absence_ids=[a.id for a in absences],
        summary=f"Average absence duration increased by {increase}% (from {first_avg} to {last_avg} days)",
    )


def detect_short_notice(absences: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["short_notice"]
    window_start = today - timedelta(days=90)
    recent = [a for a in absences if a.leave_start_date >= window_start]
    if len(recent) < rule["min_absences"]:
        return None
    same_day = [a for a in recent if a.notice_days is not None and a.notice_days <= 0]
    percentage = _percent(len(same_day), len(recent))
    if len(same_day) < rule["same_day_count"] and percentage < rule["percentage"]:
        return None
    return PatternCandidate(
        pattern_type=PatternType.SHORT_NOTICE,
        priority=InsightPriority.HIGH if percentage >= rule["high_at"] else InsightPriority.MEDIUM,
        period_start=window_start,
        period_end=today,
        pattern_data={
            "same_day_count": len(same_day),
            "total_absences": len(recent),
            "percentage": percentage,
            "threshold_count": rule["same_day_count"],
            "threshold_percentage": rule["percentage"],
        },
        related_absence_ids=[a.id for a in same_day],
        summary=f"{len(same_day)} of {len(recent)} absences ({percentage}%) reported on the day",
    )


def detect_recurring_reason(absences: Sequence, today: date) -> Optional[PatternCandidate]:
    rule = THRESHOLDS["recurring_reason"]
    sick = [a for a in absences if _category(a) == AbsenceCategory.SICK.value and _reason(a)]
    by_reason: Dict[str, List[int]] = OrderedDict()
    for absence in sick:
        by_reason.setdefault(_reason(absence), []).append(absence.id)

    for reason, ids in by_reason.items():
        if len(ids) < rule["count"]:
            continue
        label = REASON_LABELS.get(reason, reason)
        return PatternCandidate(
            pattern_type=PatternType.RECURRING_REASON,
            priority=InsightPriority.HIGH if len(ids) >= rule["high_at"] else InsightPriority.LOW,
            period_start=months_ago(today, 12),
            period_end=today,
            pattern_data={
                "reason": reason,
                "reason_label": label,
                "count": len(ids),
                "total_sick_absences": len(sick),
            },
            related_absence_ids=ids,
            summary=f'{len(ids)} absences citing "{label}" in the last 12 months',
        )
    return None


def detect_patterns(absences: Sequence, holidays: Sequence, today: date) -> List[PatternCandidate]:
    """Run every rule; ``absences`` should already be limited to tracked, non-cancelled rows."""
    if not absences:
        return []
    ordered = sorted(absences, key=lambda a: a.leave_start_date, reverse=True)
    candidates = [
        detect_frequency(ordered, today),
        detect_monday_friday(ordered, today),
        detect_post_holiday(ordered, holidays, today),
        detect_duration_trend(ordered, today),
        detect_short_notice(ordered, today),
        detect_recurring_reason(ordered, today),
    ]
    return [c for c in candidates if c is not None]


class AbsencePatternService:
    def __init__(self, db: Session, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id

    def tracked_absences(self, employee_id: int, today: date) -> List[LeaveRequest]:
        return self.db.query(LeaveRequest).filter(
            LeaveRequest.tenant_id == self.tenant_id,
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.absence_category.in_(TRACKED_CATEGORIES),
            LeaveRequest.leave_start_date >= months_ago(today, 12),
            LeaveRequest.status != LeaveStatus.CANCELLED,
        ).order_by(LeaveRequest.leave_start_date.desc()).all()

    def approved_holidays(self, employee_id: int, today: date) -> List[LeaveRequest]:
        return self.db.query(LeaveRequest).filter(
            LeaveRequest.tenant_id == self.tenant_id,
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.absence_category == AbsenceCategory.ANNUAL,
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.leave_end_date >= months_ago(today, 12),
        ).all()

    def update_summary(self, employee_id: int, today: date) -> AbsenceSummary:
        values = calculate_summary(self.tracked_absences(employee_id, today), today)
        summary = self.db.query(AbsenceSummary).filter(
            AbsenceSummary.tenant_id == self.tenant_id,
            AbsenceSummary.employee_id == employee_id,
        ).first()
        if summary is None:
            summary = AbsenceSummary(tenant_id=self.tenant_id, employee_id=employee_id)
            self.db.add(summary)
        for key, value in values.items():
            setattr(summary, key, value)
        summary.calculated_at = datetime.now(timezone.utc)
        return summary

    def has_open_duplicate(self, employee_id: int, candidate: PatternCandidate) -> bool:
        return self.db.query(AbsenceInsight.id).filter(
            AbsenceInsight.tenant_id == self.tenant_id,
            AbsenceInsight.employee_id == employee_id,
            AbsenceInsight.pattern_type == candidate.pattern_type,
            AbsenceInsight.status != InsightStatus.DISMISSED,
            AbsenceInsight.period_start >= candidate.period_start - timedelta(days=DEDUP_WINDOW_DAYS),
        ).first() is not None

    def save(self, employee_id: int, candidates: Iterable[PatternCandidate], today: date) -> List[AbsenceInsight]:
        saved = []
        for candidate in candidates:
            if self.has_open_duplicate(employee_id, candidate):
                logger.debug(f"Skipping duplicate {candidate.pattern_type.value} insight for employee {employee_id}")
                continue
            insight = AbsenceInsight(
                tenant_id=self.tenant_id,
                employee_id=employee_id,
                pattern_type=candidate.pattern_type,
                priority=candidate.priority,
                status=InsightStatus.NEW,
                detection_date=today,
                period_start=candidate.period_start,
                period_end=candidate.period_end,
                pattern_data=candidate.pattern_data,
                related_absence_ids=candidate.related_absence_ids,
                summary=candidate.summary,
            )
            self.db.add(insight)
            self.db.flush()
            self.db.add(InsightReviewHistory(
                tenant_id=self.tenant_id,
                insight_id=insight.id,
                previous_status=None,
                new_status=InsightStatus.NEW.value,
                changed_by=None,
                notes="Detected automatically",
            ))
            saved.append(insight)
        return saved

    def analyze(self, employee_id: int, today: Optional[date] = None) -> Tuple[AbsenceSummary, List[AbsenceInsight]]:
        """Refresh the summary, run every rule, persist new insights. Commits."""
        today = today or datetime.now(timezone.utc).date()
        summary = self.update_summary(employee_id, today)
        candidates = detect_patterns(
            self.tracked_absences(employee_id, today),
            self.approved_holidays(employee_id, today),
            today,
        )
        saved = self.save(employee_id, candidates, today)
        self.db.commit()
        if saved:
            logger.info(f"Created {len(saved)} absence insight(s) for employee {employee_id}")
        return summary, saved

    def analyze_after_absence(self, employee_id: int, today: Optional[date] = None) -> List[AbsenceInsight]:
        """Best-effort hook for absence recording; never raises."""
        try:
            _, saved = self.analyze(employee_id, today)
            return saved
        except Exception:
            self.db.rollback()
            logger.error(f"Absence pattern analysis failed for employee {employee_id}", exc_info=True)
            return []

    def change_status(
        self,
        insight: AbsenceInsight,
        new_status: InsightStatus,
        changed_by: int,
        notes: Optional[str] = None,
    ) -> AbsenceInsight:
        """Move an insight to ``new_status`` and append a history row. Caller commits."""
        previous = insight.status
        insight.status = new_status
        self.db.add(InsightReviewHistory(
            tenant_id=self.tenant_id,
            insight_id=insight.id,
            previous_status=previous.value if previous is not None else None,
            new_status=new_status.value,
            changed_by=changed_by,
            notes=notes,
        ))
        return insight
