from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.models.user import User
from app.routers.auth_deps import get_tenant_db, require_audit_access

router = APIRouter(prefix="/audit", tags=["Audit"])


class AuditLogResponse(BaseModel):
    id: int
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    user_role: Optional[str] = None
    details: Optional[dict] = None
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


@router.get("/", response_model=List[AuditLogResponse])
def get_audit_logs(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_audit_access),
    entity_type: Optional[str] = Query(None, description="Filter by entity type (e.g. 'leave_request')"),
    action: Optional[str] = Query(None, description="Filter by action name"),
    user_id: Optional[int] = Query(None, description="Filter by user ID"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """
    Audit trail for the caller's tenant. READ-ONLY.
    Requires a recent password re-verification.
    """
    query = db.query(AuditLog).filter(AuditLog.tenant_id == current_user.tenant_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if date_from:
        query = query.filter(AuditLog.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        query = query.filter(AuditLog.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()


@router.get("/entity/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
def get_entity_history(
    entity_type: str,
    entity_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_audit_access),
):
    return db.query(AuditLog).filter(
        AuditLog.tenant_id == current_user.tenant_id,
        AuditLog.entity_type == entity_type,
        AuditLog.entity_id == entity_id,
    ).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()


@router.get("/{log_id}", response_model=AuditLogResponse)
def get_audit_log_detail(
    log_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_audit_access),
):
    log_entry = db.query(AuditLog).filter(
        AuditLog.id == log_id,
        AuditLog.tenant_id == current_user.tenant_id,
    ).first()
    if not log_entry:
        raise HTTPException(status_code=404, detail="Audit log entry not found")
    return log_entry
