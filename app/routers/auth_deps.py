"""
Session-based RBAC Dependencies.
Derives the tenant context from the signed session cookie and provides
role, tier, additional-role and step-up checks for FastAPI endpoints.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthenticationError, ReauthRequiredError
from app.core.tenant_context import tenant_scope
from app.database import get_db
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    user_id: int
    roles: List[str] = field(default_factory=list)
    tier: Optional[int] = None
    permissions: List[str] = field(default_factory=list)
    additional_roles: List[str] = field(default_factory=list)
    email: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN.value in self.roles


def get_tenant_context(request: Request) -> TenantContext:
    """
    Extracts the tenant/user context from the session.
    Every tenant-scoped route depends on this, directly or through get_current_user.
    """
    session = request.session
    user_id = session.get("user_id")
    tenant_id = session.get("tenant_id")
    if not user_id or not tenant_id:
        raise AuthenticationError()
    return TenantContext(
        tenant_id=tenant_id,
        user_id=user_id,
        roles=list(session.get("roles") or []),
        tier=session.get("tier"),
        permissions=list(session.get("permissions") or []),
        additional_roles=list(session.get("additional_roles") or []),
        email=session.get("email"),
        full_name=session.get("full_name"),
    )


def get_tenant_db(ctx: TenantContext = Depends(get_tenant_context), db: Session = Depends(get_db)):
    """Request-scoped session with the row-level isolation context applied."""
    with tenant_scope(db, ctx.tenant_id, ctx.user_id):
        yield db


def get_current_user(
    request: Request,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_tenant_db),
) -> User:
    user = db.query(User).filter(User.id == ctx.user_id, User.tenant_id == ctx.tenant_id).first()
    if user is None:
        logger.warning(f"Authentication failed: user {ctx.user_id} no longer exists in tenant {ctx.tenant_id}")
        request.session.clear()
        raise AuthenticationError()
    if not user.is_active:
        logger.warning(f"Authentication failed: user {ctx.user_id} is {user.employment_status.value}")
        request.session.clear()
        raise AuthenticationError("Account is not active")
    return user


def require_role(allowed_roles: List[UserRole]) -> Callable:
    """
    Dependency factory that checks if the user has one of the allowed roles.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(user: User = Depends(require_role([UserRole.ADMIN]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)):
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user
    return role_checker


def require_permission(*permissions: str) -> Callable:
    """All listed permission codes must be present in the session. Admin bypasses."""
    def permission_checker(
        ctx: TenantContext = Depends(get_tenant_context),
        current_user: User = Depends(get_current_user),
    ):
        if current_user.is_admin:
            return current_user
        missing = [p for p in permissions if p not in ctx.permissions]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user
    return permission_checker


def tier_satisfied(ctx: TenantContext, min_tier: int) -> bool:
    # Untiered admins are treated as top tier
    if ctx.is_admin and ctx.tier is None:
        return True
    return ctx.tier is not None and ctx.tier >= min_tier


def require_tier(min_tier: int) -> Callable:
    def tier_checker(
        ctx: TenantContext = Depends(get_tenant_context),
        current_user: User = Depends(get_current_user),
    ):
        if not tier_satisfied(ctx, min_tier):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Insufficient tier level", "required": min_tier, "current": ctx.tier},
            )
        return current_user
    return tier_checker


def require_additional_role(*role_codes: str) -> Callable:
    """Passes when the session holds any of the given additional role codes."""
    def additional_role_checker(
        ctx: TenantContext = Depends(get_tenant_context),
        current_user: User = Depends(get_current_user),
    ):
        if not any(code in ctx.additional_roles for code in role_codes):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Required additional role not assigned",
            )
        return current_user
    return additional_role_checker


def require_tier_or_role(tier: Optional[int] = None, roles: Sequence[str] = ()) -> Callable:
    """Either the tier threshold or any of the additional roles grants access."""
    def tier_or_role_checker(
        ctx: TenantContext = Depends(get_tenant_context),
        current_user: User = Depends(get_current_user),
    ):
        if tier is not None and tier_satisfied(ctx, tier):
            return current_user
        if roles and any(code in ctx.additional_roles for code in roles):
            return current_user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Insufficient permissions",
                "required_tier": tier,
                "current_tier": ctx.tier,
                "required_roles": list(roles),
                "current_roles": ctx.additional_roles,
            },
        )
    return tier_or_role_checker


def audit_access_expiry(verified_at: Optional[float], now: Optional[float] = None) -> float:
    """
    Returns the epoch second at which step-up verification lapses.

    Raises ReauthRequiredError when the session was never verified or the
    verification is older than the configured window.
    """
    if not verified_at:
        raise ReauthRequiredError(
            ReauthRequiredError.REQUIRED,
            "Password re-verification required to access the audit trail",
        )
    now = time.time() if now is None else now
    expires_at = verified_at + settings.audit_reauth_minutes * 60
    if now > expires_at:
        raise ReauthRequiredError(
            ReauthRequiredError.EXPIRED,
            "Audit trail verification has expired, please re-enter your password",
        )
    return expires_at


def require_audit_access(
    request: Request,
    current_user: User = Depends(require_role([UserRole.ADMIN])),
) -> User:
    audit_access_expiry(request.session.get("audit_trail_verified_at"))
    return current_user


def require_manager():
    """Shorthand for requiring Admin or Manager."""
    return require_role([UserRole.ADMIN, UserRole.MANAGER])


def require_admin():
    """Shorthand for requiring admin only."""
    return require_role([UserRole.ADMIN])


def require_hr():
    """Shorthand for requiring Admin or HR Manager."""
    return require_role([UserRole.ADMIN, UserRole.HR_MANAGER])
