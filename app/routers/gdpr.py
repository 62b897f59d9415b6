from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.models.data_request import DataRequest, DataRequestStatus, DataRequestType
from app.models.user import User, UserRole
from app.routers.auth_deps import get_current_user, get_tenant_db, require_admin, require_hr
from app.services.gdpr import GdprService

router = APIRouter(prefix="/gdpr", tags=["GDPR"])


class DeletionRequestCreate(BaseModel):
    reason: Optional[str] = None
    employee_id: Optional[int] = None


class ProcessRequest(BaseModel):
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class DataRequestOut(BaseModel):
    id: int
    employee_id: int
    requested_by: int
    request_type: DataRequestType
    status: DataRequestStatus
    reason: Optional[str] = None
    rejection_reason: Optional[str] = None
    processed_by: Optional[int] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def _out(data_request: DataRequest) -> dict:
    return DataRequestOut.model_validate(data_request).model_dump()


@router.get("/my-requests")
def my_requests(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    requests = db.query(DataRequest).filter(
        DataRequest.tenant_id == current_user.tenant_id,
        DataRequest.employee_id == current_user.id,
    ).order_by(DataRequest.id.desc()).all()
    return {"requests": [_out(r) for r in requests]}


@router.post("/export", status_code=status.HTTP_201_CREATED)
def request_export(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    data_request = GdprService(db, current_user.tenant_id).request_export(current_user)
    return {"message": "Data export ready", "request": _out(data_request)}


@router.get("/requests/{request_id}/data")
def download_export(
    request_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    return GdprService(db, current_user.tenant_id).download(current_user, request_id)


@router.post("/deletion-request", status_code=status.HTTP_201_CREATED)
def request_deletion(
    payload: DeletionRequestCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    # HR may raise a request on an employee's behalf
    employee_id = current_user.id
    if payload.employee_id and current_user.role in (UserRole.ADMIN, UserRole.HR_MANAGER):
        employee_id = payload.employee_id
    data_request = GdprService(db, current_user.tenant_id).request_deletion(
        current_user, employee_id, payload.reason
    )
    return {"message": "Deletion request created", "request": _out(data_request)}


@router.get("/requests")
def list_requests(
    status: Optional[DataRequestStatus] = None,
    request_type: Optional[DataRequestType] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_hr()),
):
    query = db.query(DataRequest).filter(DataRequest.tenant_id == current_user.tenant_id)
    if status:
        query = query.filter(DataRequest.status == status)
    if request_type:
        query = query.filter(DataRequest.request_type == request_type)
    return {"requests": [_out(r) for r in query.order_by(DataRequest.id.desc()).all()]}


@router.post("/requests/{request_id}/process")
def process_request(
    request_id: int,
    payload: Optional[ProcessRequest] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    data_request = GdprService(db, current_user.tenant_id).process(
        current_user, request_id, payload.notes if payload else None
    )
    return {"message": "Request processed", "request": _out(data_request)}


@router.post("/requests/{request_id}/reject")
def reject_request(
    request_id: int,
    payload: RejectRequest,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    data_request = GdprService(db, current_user.tenant_id).reject(current_user, request_id, payload.reason)
    return {"message": "Request rejected", "request": _out(data_request)}


@router.post("/cleanup-expired")
def cleanup_expired(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    cleaned = GdprService(db, current_user.tenant_id).cleanup_expired(current_user)
    return {"message": f"Cleaned up {cleaned} expired export(s)", "cleaned": cleaned}
