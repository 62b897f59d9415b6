from datetime import date, timedelta

from app.models.notification import Notification, NotificationType
from app.models.offboarding import TerminationType
from app.models.user import EmploymentStatus, User
from app.services.offboarding import DEFAULT_CHECKLIST, OffboardingService


def _initiate(client, employee_id, last_day_offset=30):
    today = date.today()
    return client.post("/api/offboarding/", json={
        "employee_id": employee_id,
        "termination_type": "resignation",
        "notice_date": today.isoformat(),
        "last_working_day": (today + timedelta(days=last_day_offset)).isoformat(),
        "reason": "New role elsewhere",
    })


def test_initiate_creates_default_checklist(login, db_session, hr_user, manager_user, employee_user):
    response = _initiate(login(hr_user), employee_user.id)
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Offboarding workflow initiated"
    assert body["checklist_items_created"] == len(DEFAULT_CHECKLIST) == 13
    assert body["workflow"]["status"] == "pending"
    assert body["workflow"]["hr_owner_id"] == hr_user.id
    assert body["workflow"]["manager_id"] == manager_user.id

    assert db_session.query(Notification).filter(
        Notification.user_id == manager_user.id,
        Notification.type == NotificationType.OFFBOARDING_INITIATED,
    ).count() == 1


def test_initiate_requires_fields(login, hr_user, employee_user):
    response = login(hr_user).post("/api/offboarding/", json={"employee_id": employee_user.id})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Missing required fields")


def test_only_one_active_workflow(login, hr_user, employee_user):
    hr = login(hr_user)
    first_id = _initiate(hr, employee_user.id).json()["workflow"]["id"]

    second = _initiate(hr, employee_user.id)
    assert second.status_code == 400
    assert second.json()["existing_workflow_id"] == first_id


def test_managers_cannot_initiate(login, manager_user, employee_user):
    assert _initiate(login(manager_user), employee_user.id).status_code == 403


def test_completion_gated_on_checklist(login, db_session, hr_user, manager_user, employee_user):
    hr = login(hr_user)
    workflow_id = _initiate(hr, employee_user.id).json()["workflow"]["id"]

    blocked = hr.post(f"/api/offboarding/{workflow_id}/complete")
    assert blocked.status_code == 400
    assert blocked.json()["error"] == "Cannot complete workflow with incomplete checklist items"
    assert blocked.json()["incomplete_items"] == 13
    assert "Issue P45" in blocked.json()["incomplete_item_names"]

    checklist = hr.get(f"/api/offboarding/{workflow_id}/checklist").json()["checklist"]
    first = hr.put(f"/api/offboarding/{workflow_id}/checklist/{checklist[0]['id']}", json={"completed": True})
    assert first.json()["item"]["completed"] is True
    assert first.json()["item"]["completed_by"] == hr_user.id
    assert first.json()["workflow_status"] == "in_progress"

    for item in checklist[1:-1]:
        hr.put(f"/api/offboarding/{workflow_id}/checklist/{item['id']}", json={"completed": True})
    still_blocked = hr.post(f"/api/offboarding/{workflow_id}/complete")
    assert still_blocked.json()["incomplete_item_names"] == ["HR sign-off"]

    hr.put(f"/api/offboarding/{workflow_id}/checklist/{checklist[-1]['id']}", json={"completed": True})
    done = hr.post(f"/api/offboarding/{workflow_id}/complete")
    assert done.status_code == 200
    assert done.json()["workflow"]["status"] == "completed"

    db_session.expire_all()
    employee = db_session.get(User, employee_user.id)
    assert employee.employment_status == EmploymentStatus.OFFBOARDED
    assert employee.end_date == date.today() + timedelta(days=30)

    again = hr.post(f"/api/offboarding/{workflow_id}/complete")
    assert again.status_code == 400
    assert again.json()["error"] == "Workflow already completed"


def test_custom_checklist_item_appended(login, hr_user, employee_user):
    hr = login(hr_user)
    workflow_id = _initiate(hr, employee_user.id).json()["workflow"]["id"]

    missing = hr.post(f"/api/offboarding/{workflow_id}/checklist", json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "Item name required"

    added = hr.post(f"/api/offboarding/{workflow_id}/checklist", json={"item_name": "Return parking permit"})
    assert added.status_code == 201
    assert added.json()["item"]["item_type"] == "custom"
    assert added.json()["item"]["sort_order"] == 14


def test_exit_interview_hr_notes_hidden_from_employee(login, db_session, hr_user, employee_user):
    hr = login(hr_user)
    workflow_id = _initiate(hr, employee_user.id).json()["workflow"]["id"]

    scheduled = hr.put(f"/api/offboarding/{workflow_id}/exit-interview", json={
        "scheduled_date": "2030-03-02T10:00:00",
        "hr_notes": "Flight risk in team",
    })
    assert scheduled.status_code == 200
    assert scheduled.json()["exit_interview"]["hr_notes"] == "Flight risk in team"
    assert db_session.query(Notification).filter(
        Notification.user_id == employee_user.id,
        Notification.type == NotificationType.EXIT_INTERVIEW_SCHEDULED,
    ).count() == 1

    employee = login(employee_user)
    seen = employee.get(f"/api/offboarding/{workflow_id}/exit-interview").json()["exit_interview"]
    assert "hr_notes" not in seen

    employee.put(f"/api/offboarding/{workflow_id}/exit-interview", json={
        "would_recommend": True,
        "hr_notes": "overwritten",
    })
    assert hr.get(f"/api/offboarding/{workflow_id}/exit-interview").json()["exit_interview"]["hr_notes"] == (
        "Flight risk in team"
    )


def test_handover_assignment_notifies_recipient(login, db_session, make_user, hr_user, manager_user, employee_user):
    colleague = make_user("colleague@acme.com", manager=manager_user)
    hr = login(hr_user)
    workflow_id = _initiate(hr, employee_user.id).json()["workflow"]["id"]

    created = hr.post(f"/api/offboarding/{workflow_id}/handovers", json={
        "title": "Payroll import scripts",
        "handover_to": colleague.id,
    })
    assert created.status_code == 201

    tasks = login(colleague).get("/api/offboarding/my-tasks/pending").json()
    assert [h["title"] for h in tasks["handovers"]] == ["Payroll import scripts"]
    assert db_session.query(Notification).filter(
        Notification.user_id == colleague.id,
        Notification.type == NotificationType.HANDOVER_ASSIGNED,
    ).count() == 1


def test_manager_sees_only_own_team(login, make_user, admin_user, hr_user, manager_user, employee_user):
    outsider = make_user("outsider@acme.com", manager=admin_user)
    hr = login(hr_user)
    _initiate(hr, employee_user.id)
    outsider_id = _initiate(hr, outsider.id).json()["workflow"]["id"]

    manager = login(manager_user)
    listed = manager.get("/api/offboarding/").json()["workflows"]
    assert [w["employee_id"] for w in listed] == [employee_user.id]
    assert manager.get(f"/api/offboarding/{outsider_id}").status_code == 403


def test_deadline_reminders(db_session, hr_user, manager_user, employee_user):
    service = OffboardingService(db_session, hr_user.tenant_id)
    today = date(2030, 1, 7)
    service.initiate(hr_user, employee_user.id, {
        "termination_type": TerminationType.RESIGNATION,
        "notice_date": today,
        "last_working_day": today + timedelta(days=7),
    })

    result = service.check_deadlines(today)
    assert result["message"] == "Checked 5 milestones"
    assert result["notifications_created"] == 2
    assert {d["user"] for d in result["details"]} == {"HR Owner", "Manager"}

    assert service.check_deadlines(today + timedelta(days=1))["notifications_created"] == 0
