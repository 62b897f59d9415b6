from datetime import date, timedelta
from types import SimpleNamespace

from app.models.absence import AbsenceInsight, InsightPriority, InsightStatus, PatternType
from app.models.leave_request import AbsenceCategory, LeaveRequest, LeaveStatus, SickReason
from app.services.absence_patterns import (
    AbsencePatternService,
    bradford_factor,
    calculate_summary,
    detect_duration_trend,
    detect_frequency,
    detect_monday_friday,
    detect_patterns,
    detect_post_holiday,
    detect_recurring_reason,
    detect_short_notice,
    months_ago,
)

TODAY = date(2026, 6, 15)  # a Monday


def absence(start, days=1, notice=1, category="sick", reason="illness", id=None):
    return SimpleNamespace(
        id=id or start.toordinal(),
        leave_start_date=start,
        leave_end_date=start + timedelta(days=days - 1),
        notice_days=notice,
        absence_category=category,
        sick_reason=reason,
    )


def holiday(end):
    return SimpleNamespace(leave_end_date=end)


# --- Bradford factor / summary --------------------------------------------

def test_bradford_factor():
    assert bradford_factor(2, 10) == 40
    assert bradford_factor(1, 10) == 10
    assert bradford_factor(0, 0) == 0


def test_summary_over_twelve_months():
    absences = [
        absence(date(2026, 6, 8), days=3, notice=0),    # Monday
        absence(date(2026, 5, 1), days=7),              # Friday
        absence(date(2025, 1, 10), days=20),            # outside the window
    ]
    summary = calculate_summary(absences, TODAY)
    assert summary["total_absences_12m"] == 2
    assert summary["total_sick_days_12m"] == 10
    assert summary["bradford_factor"] == 40
    assert summary["avg_duration_12m"] == 5
    assert summary["monday_absences_12m"] == 1
    assert summary["friday_absences_12m"] == 1
    assert summary["same_day_reports_12m"] == 1
    assert summary["last_absence_date"] == date(2026, 6, 8)


def test_months_ago_clamps_day():
    assert months_ago(date(2026, 3, 31), 1) == date(2026, 2, 28)
    assert months_ago(TODAY, 12) == date(2025, 6, 15)


# --- individual rules -----------------------------------------------------

def test_frequency_threshold():
    two = [absence(TODAY - timedelta(days=d)) for d in (5, 30)]
    assert detect_frequency(two, TODAY) is None

    three = [absence(TODAY - timedelta(days=d)) for d in (5, 30, 60)]
    result = detect_frequency(three, TODAY)
    assert result.pattern_type == PatternType.FREQUENCY
    assert result.priority == InsightPriority.MEDIUM
    assert result.pattern_data["absence_count"] == 3

    five = [absence(TODAY - timedelta(days=d)) for d in (5, 20, 30, 45, 60)]
    assert detect_frequency(five, TODAY).priority == InsightPriority.HIGH


def test_frequency_ignores_older_absences():
    absences = [absence(TODAY - timedelta(days=d)) for d in (5, 30, 120)]
    assert detect_frequency(absences, TODAY) is None


def test_monday_friday_pattern():
    absences = [
        absence(date(2026, 6, 8)),   # Monday
        absence(date(2026, 6, 1)),   # Monday
        absence(date(2026, 5, 22)),  # Friday
        absence(date(2026, 5, 20)),  # Wednesday
    ]
    result = detect_monday_friday(absences, TODAY)
    assert result.pattern_data["percentage"] == 75
    assert result.priority == InsightPriority.HIGH


def test_monday_friday_needs_minimum_sample():
    absences = [absence(date(2026, 6, 8)), absence(date(2026, 6, 1)), absence(date(2026, 5, 22))]
    assert detect_monday_friday(absences, TODAY) is None


def test_monday_friday_below_percentage():
    absences = [
        absence(date(2026, 6, 8)),   # Monday
        absence(date(2026, 6, 3)),   # Wednesday
        absence(date(2026, 5, 20)),  # Wednesday
        absence(date(2026, 5, 13)),  # Wednesday
    ]
    assert detect_monday_friday(absences, TODAY) is None


def test_post_holiday_pattern():
    holidays = [holiday(date(2026, 4, 10)), holiday(date(2026, 5, 29))]
    absences = [absence(date(2026, 4, 12)), absence(date(2026, 5, 30)), absence(date(2026, 3, 2))]
    result = detect_post_holiday(absences, holidays, TODAY)
    assert result.pattern_type == PatternType.POST_HOLIDAY
    assert result.priority == InsightPriority.MEDIUM
    assert [o["days_after"] for o in result.pattern_data["occurrences"]] == [2, 1]


def test_post_holiday_ignores_non_sick_and_late_returns():
    holidays = [holiday(date(2026, 4, 10)), holiday(date(2026, 5, 29))]
    absences = [
        absence(date(2026, 4, 11), category="bereavement", reason=None),
        absence(date(2026, 6, 5)),
    ]
    assert detect_post_holiday(absences, holidays, TODAY) is None


def test_duration_trend():
    absences = [
        absence(date(2026, 1, 12), days=1),
        absence(date(2026, 2, 9), days=1),
        absence(date(2026, 5, 4), days=3),
    ]
    result = detect_duration_trend(absences, TODAY)
    assert result.pattern_data["first_period_avg"] == 1.0
    assert result.pattern_data["last_period_avg"] == 3.0
    assert result.pattern_data["increase_percentage"] == 200
    assert result.priority == InsightPriority.HIGH


def test_duration_trend_needs_two_periods():
    absences = [absence(date(2026, 4, 6), days=1), absence(date(2026, 5, 4), days=5)]
    assert detect_duration_trend(absences, TODAY) is None


def test_short_notice():
    absences = [absence(TODAY - timedelta(days=d), notice=0) for d in (3, 10, 20)]
    result = detect_short_notice(absences, TODAY)
    assert result.pattern_data["percentage"] == 100
    assert result.priority == InsightPriority.HIGH


def test_short_notice_percentage_rule():
    absences = [
        absence(TODAY - timedelta(days=3), notice=0),
        absence(TODAY - timedelta(days=10), notice=-1),
        absence(TODAY - timedelta(days=20), notice=5),
        absence(TODAY - timedelta(days=30), notice=5),
        absence(TODAY - timedelta(days=40), notice=5),
    ]
    result = detect_short_notice(absences, TODAY)
    assert result.pattern_data["same_day_count"] == 2
    assert result.pattern_data["percentage"] == 40
    assert result.priority == InsightPriority.MEDIUM


def test_recurring_reason():
    absences = [absence(date(2026, m, 3), reason="mental_health") for m in (2, 3, 4)]
    result = detect_recurring_reason(absences, TODAY)
    assert result.pattern_data["reason_label"] == "Mental health"
    assert result.priority == InsightPriority.LOW

    five = [absence(date(2026, m, 3), reason="injury") for m in (1, 2, 3, 4, 5)]
    assert detect_recurring_reason(five, TODAY).priority == InsightPriority.HIGH


def test_no_absences_no_patterns():
    assert detect_patterns([], [], TODAY) == []


# --- persistence ----------------------------------------------------------

def _record_sick_days(db_session, employee, offsets):
    today = date.today()
    for offset in offsets:
        start = today - timedelta(days=offset)
        db_session.add(LeaveRequest(
            tenant_id=employee.tenant_id,
            employee_id=employee.id,
            manager_id=employee.manager_id,
            absence_category=AbsenceCategory.SICK,
            sick_reason=SickReason.ILLNESS,
            request_date=start,
            leave_start_date=start,
            leave_end_date=start,
            total_days=1,
            notice_days=0,
            is_urgent=True,
            status=LeaveStatus.APPROVED,
        ))
    db_session.commit()


def test_analyze_saves_insights_and_deduplicates(db_session, employee_user):
    _record_sick_days(db_session, employee_user, (5, 20, 40))
    service = AbsencePatternService(db_session, employee_user.tenant_id)

    summary, saved = service.analyze(employee_user.id)
    assert summary.total_absences_12m == 3
    assert summary.bradford_factor == 27
    assert {i.pattern_type for i in saved} == {
        PatternType.FREQUENCY, PatternType.SHORT_NOTICE, PatternType.RECURRING_REASON,
    }
    assert all(i.status == InsightStatus.NEW for i in saved)

    _, again = service.analyze(employee_user.id)
    assert again == []
    assert db_session.query(AbsenceInsight).count() == 3


def test_dismissed_insight_can_be_detected_again(db_session, employee_user, manager_user):
    _record_sick_days(db_session, employee_user, (5, 20, 40))
    service = AbsencePatternService(db_session, employee_user.tenant_id)
    _, saved = service.analyze(employee_user.id)

    frequency = next(i for i in saved if i.pattern_type == PatternType.FREQUENCY)
    service.change_status(frequency, InsightStatus.DISMISSED, manager_user.id, "Known medical condition")
    db_session.commit()

    _, again = service.analyze(employee_user.id)
    assert [i.pattern_type for i in again] == [PatternType.FREQUENCY]


# --- API ------------------------------------------------------------------

def test_insight_review_flow(login, db_session, admin_user, manager_user, employee_user):
    _record_sick_days(db_session, employee_user, (5, 20, 40))
    admin = login(admin_user)

    run = admin.post(f"/api/absence-insights/run-detection/{employee_user.id}")
    assert run.status_code == 200
    assert len(run.json()["insights"]) == 3
    assert run.json()["summary"]["bradford_factor"] == 27

    manager = login(manager_user)
    listing = manager.get("/api/absence-insights/")
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total"] == 3
    first = listing.json()["insights"][0]
    assert first["priority"] == "high"

    reviewed = manager.put(f"/api/absence-insights/{first['id']}/review", json={"notes": "Spoke to Elliot"})
    assert reviewed.json()["insight"]["status"] == "reviewed"

    missing_action = manager.put(f"/api/absence-insights/{first['id']}/action", json={})
    assert missing_action.status_code == 400
    assert missing_action.json()["error"] == "Action description required"

    dismissed = manager.put(f"/api/absence-insights/{first['id']}/dismiss")
    assert dismissed.json()["insight"]["status"] == "dismissed"
    assert dismissed.json()["insight"]["review_notes"] == "Dismissed by reviewer"

    detail = manager.get(f"/api/absence-insights/{first['id']}").json()["insight"]
    assert [h["new_status"] for h in detail["review_history"]] == ["dismissed", "reviewed", "new"]
    assert len(detail["related_absences"]) >= 1

    assert manager.get("/api/absence-insights/").json()["pagination"]["total"] == 2
    with_dismissed = manager.get("/api/absence-insights/", params={"include_dismissed": True})
    assert with_dismissed.json()["pagination"]["total"] == 3


def test_manager_cannot_see_other_teams(login, db_session, make_user, admin_user, manager_user):
    outsider = make_user("outsider@acme.com", manager=admin_user)
    _record_sick_days(db_session, outsider, (5, 20, 40))
    login(admin_user).post(f"/api/absence-insights/run-detection/{outsider.id}")

    manager = login(manager_user)
    assert manager.get("/api/absence-insights/").json()["pagination"]["total"] == 0
    assert manager.get(f"/api/absence-insights/employee/{outsider.id}").status_code == 403


def test_employees_cannot_read_insights(login, employee_user):
    assert login(employee_user).get("/api/absence-insights/").status_code == 403
