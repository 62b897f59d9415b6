"""
Credential handling and session payload construction.

Passwords are hashed with passlib/bcrypt; a successful login produces the
dict that is stored in the signed session cookie.
"""
import logging
from typing import Any, Dict, Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.models.user import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Malformed hash in the database
        logger.warning("Password verification failed on malformed hash")
        return False


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


def build_session_payload(user: User) -> Dict[str, Any]:
    roles = [user.role.value]
    return {
        "user_id": user.id,
        "tenant_id": user.tenant_id,
        "email": user.email,
        "full_name": user.full_name,
        "roles": roles,
        "tier": user.tier,
        "permissions": list(user.permissions or []),
        "additional_roles": list(user.additional_roles or []),
    }
