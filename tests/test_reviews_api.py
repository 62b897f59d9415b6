from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

import app.services.review_workflow as review_workflow
from app.core.exceptions import ConflictError
from app.models.notification import Notification, NotificationType
from app.models.review import Review
from app.services.review_workflow import ReviewWorkflow

WEEK = "2026-02-06"

MANAGER_RATINGS = {
    "tasks_completed": 8,
    "work_volume": 6,
    "problem_solving": 7,
    "communication": 9,
    "leadership": 5,
}
SELF_RATINGS = {
    "tasks_completed": 7,
    "work_volume": 7,
    "problem_solving": 7,
    "communication": 7,
    "leadership": 7,
}


def _draft_manager_review(manager_client, employee_id, week=WEEK):
    return manager_client.post(
        "/api/reviews/",
        json={"employee_id": employee_id, "review_date": week, "goals": "Ship the importer", **MANAGER_RATINGS},
    )


def test_blind_review_reveals_after_both_commits(login, db_session, admin_user, manager_user, employee_user):
    manager = login(manager_user)
    employee = login(employee_user)

    created = _draft_manager_review(manager, employee_user.id)
    assert created.status_code == 201
    review_id = created.json()["id"]
    # The author can see the draft being edited
    assert created.json()["tasks_completed"] == 8

    committed = manager.post(f"/api/reviews/{review_id}/commit")
    assert committed.status_code == 200
    assert committed.json()["state"] == "awaiting_counterpart"
    assert committed.json()["revealed"] is False

    hidden = employee.get(f"/api/reviews/{review_id}")
    assert hidden.status_code == 200
    assert hidden.json()["ratings_hidden"] is True
    assert hidden.json()["tasks_completed"] is None
    assert hidden.json()["kpis"] is None
    assert hidden.json()["goals"] == "Ship the importer"

    notified = db_session.query(Notification).filter(
        Notification.user_id == employee_user.id,
        Notification.type == NotificationType.MANAGER_SNAPSHOT_COMMITTED,
    ).count()
    assert notified == 1

    reflection = employee.post("/api/reviews/self-reflection", json={"review_date": WEEK, **SELF_RATINGS})
    assert reflection.status_code == 201

    status_before = employee.get("/api/reviews/my-reflection-status", params={"week_ending": WEEK}).json()
    assert status_before["state"] == "awaiting_counterpart"
    assert status_before["self_reflection"]["ratings_hidden"] is True

    revealed = employee.post(f"/api/reviews/self-reflection/{reflection.json()['id']}/commit")
    assert revealed.status_code == 200
    assert revealed.json()["revealed"] is True
    assert revealed.json()["state"] == "revealed"

    visible = employee.get(f"/api/reviews/{review_id}").json()
    assert visible["ratings_hidden"] is False
    assert visible["tasks_completed"] == 8
    assert visible["kpis"] == {"velocity": 7.0, "friction": 8.0, "cohesion": 7.0}

    status_after = employee.get("/api/reviews/my-reflection-status", params={"week_ending": WEEK}).json()
    assert status_after["both_committed"] is True
    assert status_after["kpis"]["self"]["velocity"] == 7.0

    kpi_recipients = {
        n.user_id for n in db_session.query(Notification).filter(Notification.type == NotificationType.KPI_REVEALED)
    }
    assert kpi_recipients == {employee_user.id, manager_user.id}


def test_manager_cannot_see_own_committed_ratings_before_reveal(login, manager_user, employee_user):
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, employee_user.id).json()["id"]
    manager.post(f"/api/reviews/{review_id}/commit")

    response = manager.get(f"/api/reviews/{review_id}")
    assert response.json()["ratings_hidden"] is True


def test_compliance_officer_sees_ratings(login, manager_user, employee_user, compliance_user):
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, employee_user.id).json()["id"]
    manager.post(f"/api/reviews/{review_id}/commit")

    response = login(compliance_user).get(f"/api/reviews/{review_id}")
    assert response.status_code == 200
    assert response.json()["tasks_completed"] == 8


def test_duplicate_review_for_week_conflicts(login, manager_user, employee_user):
    manager = login(manager_user)
    assert _draft_manager_review(manager, employee_user.id).status_code == 201

    duplicate = _draft_manager_review(manager, employee_user.id)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "CONFLICT"


def test_double_commit_rejected(login, manager_user, employee_user):
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, employee_user.id).json()["id"]
    assert manager.post(f"/api/reviews/{review_id}/commit").status_code == 200

    again = manager.post(f"/api/reviews/{review_id}/commit")
    assert again.status_code == 400
    assert again.json()["error"] == "Review is already committed"


def test_committed_review_is_read_only(login, manager_user, employee_user):
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, employee_user.id).json()["id"]
    manager.post(f"/api/reviews/{review_id}/commit")

    response = manager.put(f"/api/reviews/{review_id}", json={"leadership": 10})
    assert response.status_code == 400
    assert response.json()["error"] == "Cannot edit a committed review"


def test_review_date_must_be_friday(login, manager_user, employee_user):
    response = _draft_manager_review(login(manager_user), employee_user.id, week="2026-02-05")
    assert response.status_code == 400
    assert response.json()["error"] == "review_date must be a week-ending Friday"


def test_manager_limited_to_direct_reports(login, make_user, admin_user, manager_user):
    outsider = make_user("outsider@acme.com", manager=admin_user)
    response = _draft_manager_review(login(manager_user), outsider.id)
    assert response.status_code == 403


def test_only_admin_can_uncommit(login, admin_user, manager_user, employee_user):
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, employee_user.id).json()["id"]
    manager.post(f"/api/reviews/{review_id}/commit")

    assert manager.post(f"/api/reviews/{review_id}/uncommit").status_code == 403
    assert login(employee_user).post(f"/api/reviews/{review_id}/uncommit").status_code == 403

    response = login(admin_user).post(f"/api/reviews/{review_id}/uncommit")
    assert response.status_code == 200
    assert response.json()["review"]["is_committed"] is False
    assert response.json()["state"] == "drafting"


def test_employee_cannot_view_colleague_review(login, make_user, manager_user, employee_user):
    colleague = make_user("colleague@acme.com", manager=manager_user)
    manager = login(manager_user)
    review_id = _draft_manager_review(manager, colleague.id).json()["id"]

    response = login(employee_user).get(f"/api/reviews/{review_id}")
    assert response.status_code == 403


def test_reviews_are_tenant_isolated(login, db_session, make_user, manager_user, employee_user):
    from app.models.tenant import Tenant
    from app.models.user import UserRole

    other_tenant = Tenant(name="Globex", slug="globex")
    db_session.add(other_tenant)
    db_session.commit()
    outsider_admin = make_user("admin@globex.com", role=UserRole.ADMIN, tenant_id=other_tenant.id)

    review_id = _draft_manager_review(login(manager_user), employee_user.id).json()["id"]

    outsider = login(outsider_admin)
    assert outsider.get(f"/api/reviews/{review_id}").status_code == 404
    assert outsider.get("/api/reviews/").json() == []


def test_racing_manager_drafts_end_in_conflict(db_session, monkeypatch, manager_user, employee_user):
    workflow = ReviewWorkflow(db_session, manager_user.tenant_id)
    week = date(2026, 2, 6)
    first = workflow.create_review(manager_user, employee_user.id, week, MANAGER_RATINGS, {})

    # Both requests read "no draft yet" before either one inserted
    monkeypatch.setattr(review_workflow, "open_side", lambda state, side: None)
    with pytest.raises(ConflictError) as exc_info:
        workflow.create_review(manager_user, employee_user.id, week, MANAGER_RATINGS, {})
    assert exc_info.value.status_code == 409

    manager_reviews = db_session.query(Review).filter(
        Review.employee_id == employee_user.id,
        Review.review_date == week,
        Review.is_self_assessment == False,  # noqa: E712
    ).all()
    assert [r.id for r in manager_reviews] == [first.id]


def test_racing_self_reflections_end_in_conflict(db_session, monkeypatch, employee_user):
    workflow = ReviewWorkflow(db_session, employee_user.tenant_id)
    week = date(2026, 2, 6)
    workflow.create_self_reflection(employee_user, week, SELF_RATINGS, {})

    monkeypatch.setattr(review_workflow, "open_side", lambda state, side: None)
    with pytest.raises(ConflictError):
        workflow.create_self_reflection(employee_user, week, SELF_RATINGS, {})
    assert db_session.query(Review).filter(Review.is_self_assessment == True).count() == 1  # noqa: E712


def test_second_manager_review_for_a_week_is_rejected_by_the_database(db_session, manager_user, employee_user):
    for _ in range(2):
        db_session.add(Review(
            tenant_id=employee_user.tenant_id,
            employee_id=employee_user.id,
            reviewer_id=manager_user.id,
            review_date=date(2026, 2, 6),
            is_self_assessment=False,
        ))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_reflection_status_reports_current_week_separately(db_session, employee_user):
    workflow = ReviewWorkflow(db_session, employee_user.tenant_id)
    workflow.create_self_reflection(employee_user, date(2026, 2, 6), SELF_RATINGS, {})

    past = workflow.reflection_status(employee_user, week=date(2026, 2, 6), today=date(2026, 2, 20))
    assert past["current_week_friday"] == date(2026, 2, 20)
    assert past["self_reflection"] is not None
    assert past["has_current_week_reflection"] is False

    current = workflow.reflection_status(employee_user, today=date(2026, 2, 9))
    assert current["week_ending"] == date(2026, 2, 6)
    assert current["has_current_week_reflection"] is True
