import logging
from datetime import date

from sqlalchemy.orm import Session

from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services import auth as auth_service

logger = logging.getLogger(__name__)

DEMO_TENANT_SLUG = "demo"
DEMO_PASSWORD = "Password123!"

DEMO_USERS = [
    # email, full name, role, tier, reports to
    ("admin@staffos.dev", "Avery Admin", UserRole.ADMIN, None, None),
    ("hr@staffos.dev", "Harper Hughes", UserRole.HR_MANAGER, 60, "admin@staffos.dev"),
    ("manager@staffos.dev", "Morgan Mills", UserRole.MANAGER, 50, "admin@staffos.dev"),
    ("employee@staffos.dev", "Elliot Evans", UserRole.EMPLOYEE, 20, "manager@staffos.dev"),
    ("compliance@staffos.dev", "Casey Cole", UserRole.COMPLIANCE_OFFICER, 40, "admin@staffos.dev"),
]


def seed_demo_data(db: Session) -> dict:
    """
    Creates a demo tenant with one user per role.
    Safe to run repeatedly: existing rows are left untouched.
    """
    created = []
    try:
        tenant = db.query(Tenant).filter(Tenant.slug == DEMO_TENANT_SLUG).first()
        if tenant is None:
            tenant = Tenant(name="Demo Ltd", slug=DEMO_TENANT_SLUG, is_active=True)
            db.add(tenant)
            db.flush()
            logger.info(f"Created demo tenant {tenant.id}")

        by_email = {}
        for email, full_name, role, tier, manager_email in DEMO_USERS:
            user = db.query(User).filter(User.email == email).first()
            if user is None:
                user = User(
                    tenant_id=tenant.id,
                    email=email,
                    hashed_password=auth_service.get_password_hash(DEMO_PASSWORD),
                    full_name=full_name,
                    role=role,
                    tier=tier,
                    start_date=date.today(),
                )
                if manager_email in by_email:
                    user.manager_id = by_email[manager_email].id
                db.add(user)
                db.flush()
                created.append(email)
            by_email[email] = user

        db.commit()
    except Exception:
        db.rollback()
        logger.error("Demo seed failed", exc_info=True)
        raise

    logger.info(f"Demo seed complete, {len(created)} user(s) created")
    return {
        "tenant_id": tenant.id,
        "created_users": created,
        "password": DEMO_PASSWORD,
    }
