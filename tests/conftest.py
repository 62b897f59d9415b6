import pytest
import os
from datetime import date
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.database import Base, get_db
from app.main import app
from fastapi.testclient import TestClient

PASSWORD = "Password123!"

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test; routes commit, so a rollback would not undo their writes."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def tenant(db_session):
    from app.models.tenant import Tenant
    tenant = Tenant(name="Acme Ltd", slug="acme")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope="function")
def make_user(db_session, tenant):
    """Factory for users in the default tenant."""
    from app.models.user import User, UserRole
    from app.services import auth as auth_service

    hashed = auth_service.get_password_hash(PASSWORD)

    def _make_user(email, role=UserRole.EMPLOYEE, tier=None, manager=None, tenant_id=None, **extra):
        user = User(
            tenant_id=tenant_id or tenant.id,
            email=email,
            hashed_password=hashed,
            full_name=extra.pop("full_name", email.split("@")[0].title()),
            role=role,
            tier=tier,
            manager_id=manager.id if manager else None,
            start_date=date(2024, 1, 1),
            **extra,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture(scope="function")
def admin_user(make_user):
    from app.models.user import UserRole
    return make_user("admin@acme.com", role=UserRole.ADMIN, full_name="Avery Admin")


@pytest.fixture(scope="function")
def hr_user(make_user, admin_user):
    from app.models.user import UserRole
    return make_user("hr@acme.com", role=UserRole.HR_MANAGER, tier=60, manager=admin_user, full_name="Harper Hughes")


@pytest.fixture(scope="function")
def manager_user(make_user, admin_user):
    from app.models.user import UserRole
    return make_user("manager@acme.com", role=UserRole.MANAGER, tier=50, manager=admin_user, full_name="Morgan Mills")


@pytest.fixture(scope="function")
def employee_user(make_user, manager_user):
    from app.models.user import UserRole
    return make_user("employee@acme.com", role=UserRole.EMPLOYEE, tier=20, manager=manager_user, full_name="Elliot Evans")


@pytest.fixture(scope="function")
def compliance_user(make_user, admin_user):
    from app.models.user import UserRole
    return make_user(
        "compliance@acme.com", role=UserRole.COMPLIANCE_OFFICER, tier=40, manager=admin_user, full_name="Casey Cole"
    )


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def login(client):
    """
    Returns a helper that logs a user in on its own TestClient and wires the
    CSRF cookie into the X-CSRF-Token header, the way the frontend does.
    """
    from app.core.config import settings

    def _login(user, password=PASSWORD):
        c = TestClient(app)
        response = c.post("/api/auth/login", json={"email": user.email, "password": password})
        assert response.status_code == 200, response.text
        c.headers[settings.csrf_header_name] = c.cookies.get(settings.csrf_cookie_name)
        return c
    return _login
