from datetime import date, timedelta

from app.models.absence import AbsenceSummary
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.notification import Notification, NotificationType
from app.routers.leave import required_notice_days


def _request_leave(client, start_offset=40, days=5):
    start = date.today() + timedelta(days=start_offset)
    end = start + timedelta(days=days - 1)
    return client.post(
        "/api/leave/request",
        json={"leave_start_date": start.isoformat(), "leave_end_date": end.isoformat(), "notes": "Family trip"},
    )


def test_required_notice_days():
    assert required_notice_days(1) == 2
    assert required_notice_days(2.5) == 5
    assert required_notice_days(5) == 30
    assert required_notice_days(15) == 30


def test_submit_leave_request_notifies_manager(login, db_session, manager_user, employee_user):
    response = _request_leave(login(employee_user))
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Leave request submitted"
    assert body["short_notice"] is False
    assert body["required_notice_days"] == 30
    assert body["leave_request"]["status"] == "pending"
    assert body["leave_request"]["manager_id"] == manager_user.id

    pending = db_session.query(Notification).filter(
        Notification.user_id == manager_user.id,
        Notification.type == NotificationType.LEAVE_REQUEST_PENDING,
    ).one()
    assert pending.is_urgent is False


def test_short_notice_request_flagged_urgent(login, employee_user):
    body = _request_leave(login(employee_user), start_offset=3, days=5).json()
    assert body["short_notice"] is True
    assert body["leave_request"]["is_urgent"] is True


def test_leave_cannot_start_in_past(login, employee_user):
    response = _request_leave(login(employee_user), start_offset=-1)
    assert response.status_code == 400
    assert response.json()["error"] == "Annual leave cannot start in the past"


def test_leave_end_before_start_rejected(login, employee_user):
    start = date.today() + timedelta(days=10)
    response = login(employee_user).post(
        "/api/leave/request",
        json={"leave_start_date": start.isoformat(), "leave_end_date": (start - timedelta(days=1)).isoformat()},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


def test_manager_approves_once(login, db_session, manager_user, employee_user):
    leave_id = _request_leave(login(employee_user)).json()["leave_request"]["id"]
    manager = login(manager_user)

    pending = manager.get("/api/leave/pending")
    assert [r["id"] for r in pending.json()] == [leave_id]

    approved = manager.put(f"/api/leave/{leave_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["leave_request"]["status"] == "approved"
    assert approved.json()["leave_request"]["approved_by"] == manager_user.id

    again = manager.put(f"/api/leave/{leave_id}/reject", json={"rejection_reason": "Too late"})
    assert again.status_code == 400
    assert again.json()["error"] == "This leave request has already been processed"

    assert db_session.query(Notification).filter(
        Notification.user_id == employee_user.id,
        Notification.type == NotificationType.LEAVE_REQUEST_APPROVED,
    ).count() == 1


def test_reject_with_reason(login, manager_user, employee_user):
    leave_id = _request_leave(login(employee_user)).json()["leave_request"]["id"]
    response = login(manager_user).put(f"/api/leave/{leave_id}/reject", json={"rejection_reason": "Release week"})
    assert response.json()["leave_request"]["status"] == "rejected"
    assert response.json()["leave_request"]["rejection_reason"] == "Release week"


def test_other_manager_cannot_approve(login, make_user, admin_user, employee_user):
    from app.models.user import UserRole
    other = make_user("other.manager@acme.com", role=UserRole.MANAGER, tier=50, manager=admin_user)
    leave_id = _request_leave(login(employee_user)).json()["leave_request"]["id"]

    response = login(other).put(f"/api/leave/{leave_id}/approve")
    assert response.status_code == 403


def test_missing_leave_request(login, manager_user):
    response = login(manager_user).put("/api/leave/9999/approve")
    assert response.status_code == 404
    assert response.json()["error"] == "Leave request not found"


def test_cancel_own_pending_request(login, manager_user, employee_user):
    employee = login(employee_user)
    leave_id = _request_leave(employee).json()["leave_request"]["id"]

    assert login(manager_user).put(f"/api/leave/{leave_id}/cancel").status_code == 403

    cancelled = employee.put(f"/api/leave/{leave_id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["leave_request"]["status"] == "cancelled"

    again = employee.put(f"/api/leave/{leave_id}/cancel")
    assert again.status_code == 400
    assert again.json()["error"] == "Only pending requests can be cancelled"

    mine = employee.get("/api/leave/my-requests").json()
    assert [r["status"] for r in mine] == ["cancelled"]


# --- sick leave -----------------------------------------------------------

def test_report_sick_leave(login, db_session, manager_user, employee_user):
    today = date.today()
    response = login(employee_user).post(
        "/api/sick-leave/report",
        json={"leave_start_date": today.isoformat(), "leave_end_date": today.isoformat(), "sick_reason": "injury"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Sick leave reported successfully"
    assert body["fit_note_required"] is False
    assert body["leave_request"]["status"] == "approved"
    assert body["leave_request"]["is_urgent"] is True
    assert body["leave_request"]["notice_days"] == 0

    urgent = db_session.query(Notification).filter(
        Notification.user_id == manager_user.id,
        Notification.type == NotificationType.URGENT_SICK_LEAVE,
    ).one()
    assert urgent.is_urgent is True

    summary = db_session.query(AbsenceSummary).filter(AbsenceSummary.employee_id == employee_user.id).one()
    assert summary.total_absences_12m == 1
    assert summary.bradford_factor == 1


def test_long_sick_leave_needs_fit_note(login, employee_user):
    start = date.today() - timedelta(days=2)
    response = login(employee_user).post(
        "/api/sick-leave/report",
        json={"leave_start_date": start.isoformat(), "leave_end_date": (start + timedelta(days=9)).isoformat()},
    )
    assert response.json()["fit_note_required"] is True


def test_sick_leave_backdating_limit(login, employee_user):
    start = date.today() - timedelta(days=8)
    response = login(employee_user).post(
        "/api/sick-leave/report",
        json={"leave_start_date": start.isoformat(), "leave_end_date": start.isoformat()},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Cannot report sick leave more than 7 days in the past"


def test_sick_leave_end_date_required_unless_ongoing(login, db_session, employee_user):
    employee = login(employee_user)
    start = date.today() - timedelta(days=1)
    missing = employee.post("/api/sick-leave/report", json={"leave_start_date": start.isoformat()})
    assert missing.status_code == 400

    ongoing = employee.post(
        "/api/sick-leave/report", json={"leave_start_date": start.isoformat(), "is_ongoing": True}
    )
    assert ongoing.status_code == 201
    assert ongoing.json()["leave_request"]["leave_end_date"] == date.today().isoformat()


def test_statutory_leave(login, db_session, employee_user):
    employee = login(employee_user)
    today = date.today()
    recorded = employee.post(
        "/api/sick-leave/statutory",
        json={"absence_category": "bereavement", "leave_start_date": today.isoformat(), "leave_end_date": today.isoformat()},
    )
    assert recorded.status_code == 201
    assert db_session.query(LeaveRequest).filter(LeaveRequest.status == LeaveStatus.APPROVED).count() == 1

    wrong = employee.post(
        "/api/sick-leave/statutory",
        json={"absence_category": "annual", "leave_start_date": today.isoformat(), "leave_end_date": today.isoformat()},
    )
    assert wrong.status_code == 400
