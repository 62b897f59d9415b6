from app.models.audit_log import AuditLog
from app.models.tenant import Tenant
from app.models.user import UserRole

NEW_PASSWORD = "Welcome2026!"
RATINGS = {"tasks_completed": 6, "work_volume": 6, "problem_solving": 6, "communication": 6, "leadership": 6}


def _new_hire(admin, **overrides):
    payload = {
        "email": "New.Hire@acme.com",
        "password": NEW_PASSWORD,
        "full_name": "Noor Hale",
        "role": "Employee",
        "tier": 20,
        **overrides,
    }
    return admin.post("/api/users/", json=payload)


def test_directory_is_tenant_scoped(login, db_session, make_user, admin_user, manager_user, employee_user):
    globex = Tenant(name="Globex", slug="globex")
    db_session.add(globex)
    db_session.commit()
    make_user("someone@globex.com", tenant_id=globex.id)

    listed = login(employee_user).get("/api/users/").json()["users"]
    assert [u["full_name"] for u in listed] == ["Avery Admin", "Elliot Evans", "Morgan Mills"]
    assert all("hashed_password" not in u for u in listed)

    team = login(employee_user).get("/api/users/", params={"manager_id": manager_user.id}).json()["users"]
    assert [u["id"] for u in team] == [employee_user.id]


def test_get_user(login, db_session, make_user, employee_user, manager_user):
    response = login(employee_user).get(f"/api/users/{manager_user.id}")
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "Manager"

    globex = Tenant(name="Globex", slug="globex")
    db_session.add(globex)
    db_session.commit()
    outsider = make_user("someone@globex.com", tenant_id=globex.id)
    missing = login(employee_user).get(f"/api/users/{outsider.id}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "User not found"


def test_roles_listing(login, employee_user):
    roles = login(employee_user).get("/api/users/roles").json()["roles"]
    assert {"role_name": "HR Manager"} in roles
    assert len(roles) == len(UserRole)


def test_admin_creates_user_who_can_log_in(login, client, db_session, admin_user, manager_user):
    created = _new_hire(login(admin_user), manager_id=manager_user.id, additional_roles=["first_aider"])
    assert created.status_code == 201
    user = created.json()["user"]
    assert user["email"] == "new.hire@acme.com"
    assert user["manager_id"] == manager_user.id
    assert user["additional_roles"] == ["first_aider"]
    assert user["employment_status"] == "active"

    response = client.post("/api/auth/login", json={"email": "new.hire@acme.com", "password": NEW_PASSWORD})
    assert response.status_code == 200

    entry = db_session.query(AuditLog).filter(AuditLog.action == "create_user").one()
    assert entry.entity_id == user["id"]
    assert entry.user_id == admin_user.id


def test_new_report_is_reviewable_by_assigned_manager(login, admin_user, manager_user):
    hire_id = _new_hire(login(admin_user), manager_id=manager_user.id).json()["user"]["id"]
    response = login(manager_user).post(
        "/api/reviews/", json={"employee_id": hire_id, "review_date": "2026-02-06", **RATINGS}
    )
    assert response.status_code == 201


def test_only_admins_manage_users(login, hr_user, manager_user, employee_user):
    assert _new_hire(login(hr_user)).status_code == 403
    assert login(manager_user).put(f"/api/users/{employee_user.id}", json={"tier": 90}).status_code == 403


def test_create_rejects_duplicates_and_bad_input(login, admin_user, employee_user):
    admin = login(admin_user)
    duplicate = _new_hire(admin, email="EMPLOYEE@acme.com")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "Email already in use"

    short = _new_hire(admin, password="short")
    assert short.status_code == 400
    assert short.json()["error"] == "Validation failed"

    unknown_manager = _new_hire(admin, manager_id=9999)
    assert unknown_manager.status_code == 400
    assert unknown_manager.json()["error"] == "Manager not found"


def test_update_reporting_line_and_tier(login, db_session, make_user, admin_user, manager_user, employee_user):
    second_manager = make_user("lead@acme.com", role=UserRole.MANAGER, tier=50, manager=admin_user)
    admin = login(admin_user)

    response = admin.put(f"/api/users/{employee_user.id}", json={
        "manager_id": second_manager.id,
        "tier": 35,
        "additional_roles": ["payroll_officer"],
    })
    assert response.status_code == 200
    body = response.json()["user"]
    assert body["manager_id"] == second_manager.id
    assert body["tier"] == 35
    assert body["additional_roles"] == ["payroll_officer"]

    # The old manager loses the employee, the new one gains them
    assert login(manager_user).get("/api/users/", params={"manager_id": manager_user.id}).json()["users"] == []
    review = login(second_manager).post(
        "/api/reviews/", json={"employee_id": employee_user.id, "review_date": "2026-02-06", **RATINGS}
    )
    assert review.status_code == 201

    entry = db_session.query(AuditLog).filter(AuditLog.action == "update_user").one()
    assert entry.before_state["manager_id"] == manager_user.id
    assert entry.after_state["tier"] == 35


def test_update_can_clear_tier_and_reset_password(login, client, admin_user, employee_user):
    admin = login(admin_user)
    response = admin.put(f"/api/users/{employee_user.id}", json={"tier": None, "password": NEW_PASSWORD})
    assert response.json()["user"]["tier"] is None

    relogin = client.post("/api/auth/login", json={"email": employee_user.email, "password": NEW_PASSWORD})
    assert relogin.status_code == 200


def test_update_guards(login, admin_user, manager_user, employee_user):
    admin = login(admin_user)

    empty = admin.put(f"/api/users/{employee_user.id}", json={})
    assert empty.status_code == 400
    assert empty.json()["error"] == "No fields to update"

    null_email = admin.put(f"/api/users/{employee_user.id}", json={"email": None})
    assert null_email.json()["error"] == "email cannot be empty"

    own_manager = admin.put(f"/api/users/{employee_user.id}", json={"manager_id": employee_user.id})
    assert own_manager.json()["error"] == "A user cannot be their own manager"

    # manager -> employee -> manager
    loop = admin.put(f"/api/users/{manager_user.id}", json={"manager_id": employee_user.id})
    assert loop.status_code == 400
    assert loop.json()["error"] == "Manager assignment would create a reporting loop"

    taken = admin.put(f"/api/users/{employee_user.id}", json={"email": manager_user.email})
    assert taken.status_code == 409

    assert admin.put("/api/users/9999", json={"tier": 10}).status_code == 404
