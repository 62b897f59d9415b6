import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _sanitize(obj: Any) -> Any:
    """Make nested values JSON-column safe."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    return obj


class AuditService:
    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        user_id: Optional[int],
        user_role: Optional[str],
        details: Optional[dict] = None,
        tenant_id: Optional[int] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Create an append-only audit entry in the caller's transaction.

        Nothing is committed or flushed here so the entry lands atomically
        with the action it describes. A failure to build the entry is logged
        and never breaks the main flow.
        """
        try:
            entry = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                user_role=user_role.value if isinstance(user_role, Enum) else user_role,
                details=_sanitize(details or {}),
                tenant_id=tenant_id,
                before_state=_sanitize(before_state),
                after_state=_sanitize(after_state),
                ip_address=ip_address,
            )
            self.db.add(entry)
            return entry
        except Exception as e:
            logger.error(f"FAILED TO AUDIT LOG: {e}", exc_info=True)
            return None

    # Static wrapper used by routers
    @staticmethod
    def log(db: Session, *args, **kwargs) -> Optional[AuditLog]:
        return AuditService(db).log_action(*args, **kwargs)
