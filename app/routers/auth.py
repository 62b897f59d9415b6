from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
import logging
import time

from app.core.config import settings
from app.core.limiter import AUTH_LIMIT, limiter
from app.core.middleware import issue_csrf_token
from app.database import get_db
from app.models.user import User, UserRole
from app.routers.auth_deps import audit_access_expiry, get_current_user, require_role
from app.core.exceptions import ReauthRequiredError
from app.schemas.auth import AuditAccessStatus, LoginRequest, PasswordVerify, UserResponse
from app.services import auth as auth_service
from app.services.audit import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("/login")
@limiter.limit(AUTH_LIMIT)
def login(request: Request, login_data: LoginRequest, db: Session = Depends(get_db)):
    user = auth_service.authenticate_user(db, login_data.email, login_data.password)
    if user is None:
        AuditService.log(
            db,
            action="failed_login",
            entity_type="user",
            entity_id=None,
            user_id=None,
            user_role=None,
            details={"email": login_data.email, "reason": "invalid_credentials"},
            ip_address=_client_ip(request),
        )
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    # Fresh session on every login
    request.session.clear()
    request.session.update(auth_service.build_session_payload(user))
    issue_csrf_token(request.session)

    AuditService.log(
        db,
        action="login",
        entity_type="user",
        entity_id=user.id,
        user_id=user.id,
        user_role=user.role,
        details={"email": user.email},
        tenant_id=user.tenant_id,
        ip_address=_client_ip(request),
    )
    db.commit()
    logger.info(f"User {user.id} logged in to tenant {user.tenant_id}")
    return {"message": "Login successful", "user": UserResponse.model_validate(user).model_dump(mode="json")}


@router.post("/logout")
def logout(request: Request):
    user_id = request.session.get("user_id")
    request.session.clear()
    if user_id:
        logger.info(f"User {user_id} logged out")
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/verify-password")
@limiter.limit(AUTH_LIMIT)
def verify_password(
    request: Request,
    data: PasswordVerify,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role([UserRole.ADMIN])),
):
    """Step-up check that unlocks the audit trail for a short window."""
    if not data.password:
        raise HTTPException(status_code=400, detail="Password is required")
    if not auth_service.verify_password(data.password, current_user.hashed_password):
        AuditService.log(
            db,
            action="audit_reauth_failed",
            entity_type="user",
            entity_id=current_user.id,
            user_id=current_user.id,
            user_role=current_user.role,
            tenant_id=current_user.tenant_id,
            ip_address=_client_ip(request),
        )
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")

    verified_at = time.time()
    request.session["audit_trail_verified_at"] = verified_at
    AuditService.log(
        db,
        action="audit_reauth",
        entity_type="user",
        entity_id=current_user.id,
        user_id=current_user.id,
        user_role=current_user.role,
        tenant_id=current_user.tenant_id,
        ip_address=_client_ip(request),
    )
    db.commit()
    return {
        "verified": True,
        "expires_at": verified_at + settings.audit_reauth_minutes * 60,
    }


@router.get("/audit-access", response_model=AuditAccessStatus)
def audit_access_status(request: Request, current_user: User = Depends(get_current_user)):
    now = time.time()
    try:
        expires_at = audit_access_expiry(request.session.get("audit_trail_verified_at"), now)
    except ReauthRequiredError:
        return AuditAccessStatus(verified=False)
    return AuditAccessStatus(verified=True, expires_at=expires_at, remaining_ms=int((expires_at - now) * 1000))
