"""
Employee records.

Everyone in a tenant can browse the directory; only Admins create people or
change their role, tier, reporting line and additional roles, which is what
every manager-scoped and tier-gated rule elsewhere reads.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from app.models.user import EmploymentStatus, User, UserRole
from app.routers.auth_deps import get_current_user, get_tenant_db, require_admin
from app.schemas.auth import UserCreate, UserResponse, UserUpdate
from app.services import auth as auth_service
from app.services.audit import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

NON_NULLABLE_FIELDS = ("email", "full_name", "role", "additional_roles", "permissions", "employment_status")


def _out(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


def _get_user(db: Session, tenant_id: int, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.tenant_id == tenant_id).first()
    if not user:
        raise NotFoundError("User")
    return user


def _check_email_free(db: Session, email: str, exclude_id: Optional[int] = None) -> None:
    # Emails are unique across tenants since login is by email alone
    query = db.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first():
        raise ConflictError("Email already in use")


def _check_manager(db: Session, tenant_id: int, manager_id: int, user_id: Optional[int] = None) -> None:
    if user_id is not None and manager_id == user_id:
        raise BusinessRuleError("A user cannot be their own manager")
    manager = db.query(User).filter(User.id == manager_id, User.tenant_id == tenant_id).first()
    if not manager:
        raise BusinessRuleError("Manager not found")
    if user_id is None:
        return
    # Walk up from the new manager; meeting the user again means a loop
    seen = set()
    current = manager
    while current is not None and current.id not in seen:
        if current.id == user_id:
            raise BusinessRuleError("Manager assignment would create a reporting loop")
        seen.add(current.id)
        current = current.manager


@router.get("/roles")
def list_roles(current_user: User = Depends(get_current_user)):
    return {"roles": [{"role_name": role.value} for role in UserRole]}


@router.get("/")
def list_users(
    manager_id: Optional[int] = None,
    employment_status: Optional[EmploymentStatus] = None,
    limit: int = Query(200, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(User).filter(User.tenant_id == current_user.tenant_id)
    if manager_id is not None:
        query = query.filter(User.manager_id == manager_id)
    if employment_status is not None:
        query = query.filter(User.employment_status == employment_status)
    users: List[User] = query.order_by(User.full_name, User.id).offset(offset).limit(limit).all()
    return {"users": [_out(u) for u in users]}


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    return {"user": _out(_get_user(db, current_user.tenant_id, user_id))}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_user(
    data: UserCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    email = data.email.strip().lower()
    _check_email_free(db, email)
    if data.manager_id is not None:
        _check_manager(db, current_user.tenant_id, data.manager_id)

    user = User(
        tenant_id=current_user.tenant_id,
        email=email,
        hashed_password=auth_service.get_password_hash(data.password),
        full_name=data.full_name,
        role=data.role,
        tier=data.tier,
        manager_id=data.manager_id,
        additional_roles=list(data.additional_roles),
        permissions=list(data.permissions),
        employee_number=data.employee_number,
        start_date=data.start_date,
        employment_status=EmploymentStatus.ACTIVE,
    )
    db.add(user)
    db.flush()
    AuditService.log(
        db,
        action="create_user",
        entity_type="user",
        entity_id=user.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details={"email": email, "role": data.role.value},
        tenant_id=current_user.tenant_id,
    )
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} created by admin {current_user.id}")
    return {"message": "User created successfully", "user": _out(user)}


@router.put("/{user_id}")
def update_user(
    user_id: int,
    data: UserUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    user = _get_user(db, current_user.tenant_id, user_id)
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise BusinessRuleError("No fields to update")
    for field in NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            raise BusinessRuleError(f"{field} cannot be empty")

    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        _check_email_free(db, changes["email"], exclude_id=user.id)
    if changes.get("manager_id") is not None:
        _check_manager(db, current_user.tenant_id, changes["manager_id"], user_id=user.id)

    password = changes.pop("password", None)
    before = {field: getattr(user, field) for field in changes}
    for field, value in changes.items():
        setattr(user, field, value)
    if password:
        user.hashed_password = auth_service.get_password_hash(password)

    AuditService.log(
        db,
        action="update_user",
        entity_type="user",
        entity_id=user.id,
        user_id=current_user.id,
        user_role=current_user.role,
        details={"fields": sorted(changes) + (["password"] if password else [])},
        tenant_id=current_user.tenant_id,
        before_state=before,
        after_state=changes,
    )
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} updated by admin {current_user.id}")
    return {"message": "User updated successfully", "user": _out(user)}
