from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.models.review import RATING_FIELDS
from app.models.user import User
from app.routers.auth_deps import get_current_user, get_tenant_db, require_admin, require_manager
from app.services.review_state import ReviewSide
from app.services.review_workflow import ReviewWorkflow, TEXT_FIELDS, serialize_review

router = APIRouter(prefix="/reviews", tags=["Reviews"])


# --- Pydantic Schemas ---
class RatingsIn(BaseModel):
    tasks_completed: int = Field(ge=1, le=10)
    work_volume: int = Field(ge=1, le=10)
    problem_solving: int = Field(ge=1, le=10)
    communication: int = Field(ge=1, le=10)
    leadership: int = Field(ge=1, le=10)
    goals: Optional[str] = None
    achievements: Optional[str] = None
    areas_for_improvement: Optional[str] = None


class SelfReflectionCreate(RatingsIn):
    review_date: date


class ReviewCreate(RatingsIn):
    employee_id: int
    review_date: date


class ReviewUpdate(BaseModel):
    tasks_completed: Optional[int] = Field(default=None, ge=1, le=10)
    work_volume: Optional[int] = Field(default=None, ge=1, le=10)
    problem_solving: Optional[int] = Field(default=None, ge=1, le=10)
    communication: Optional[int] = Field(default=None, ge=1, le=10)
    leadership: Optional[int] = Field(default=None, ge=1, le=10)
    goals: Optional[str] = None
    achievements: Optional[str] = None
    areas_for_improvement: Optional[str] = None


class KpiOut(BaseModel):
    velocity: float
    friction: float
    cohesion: float


class ReviewOut(BaseModel):
    id: int
    employee_id: int
    employee_name: Optional[str] = None
    reviewer_id: int
    reviewer_name: Optional[str] = None
    review_date: date
    is_self_assessment: bool
    is_committed: bool
    committed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    goals: Optional[str] = None
    achievements: Optional[str] = None
    areas_for_improvement: Optional[str] = None
    tasks_completed: Optional[int] = None
    work_volume: Optional[int] = None
    problem_solving: Optional[int] = None
    communication: Optional[int] = None
    leadership: Optional[int] = None
    ratings_hidden: bool
    kpis: Optional[KpiOut] = None
    state: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


def _split(payload: BaseModel) -> tuple:
    data = payload.model_dump()
    return (
        {f: data[f] for f in RATING_FIELDS},
        {f: data[f] for f in TEXT_FIELDS},
    )


def _commit_response(review, state, viewer: User, message: str) -> dict:
    return {
        "message": message,
        "review": serialize_review(review, viewer, state.revealed),
        "state": state.phase.value,
        "revealed": state.revealed,
    }


# --- Endpoints ---

@router.get("/", response_model=List[ReviewOut])
def list_reviews(
    employee_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    return ReviewWorkflow(db, current_user.tenant_id).list_for(current_user, employee_id, limit, offset)


@router.get("/my-latest")
def get_my_latest_review(
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    """Most recent manager review whose week has been revealed."""
    return {"review": ReviewWorkflow(db, current_user.tenant_id).latest_revealed_for(current_user)}


@router.get("/my-reflection-status")
def get_my_reflection_status(
    week_ending: Optional[date] = None,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    return ReviewWorkflow(db, current_user.tenant_id).reflection_status(current_user, week_ending)


@router.post("/self-reflection", status_code=status.HTTP_201_CREATED, response_model=ReviewOut)
def create_self_reflection(
    payload: SelfReflectionCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    ratings, text = _split(payload)
    review = workflow.create_self_reflection(current_user, payload.review_date, ratings, text)
    return serialize_review(review, current_user, revealed=False)


@router.post("/self-reflection/{review_id}/commit")
def commit_self_reflection(
    review_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    review, state = workflow.commit(current_user, review_id, ReviewSide.EMPLOYEE)
    return _commit_response(review, state, current_user, "Self-reflection committed")


@router.get("/{review_id}", response_model=ReviewOut)
def get_review(
    review_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    return ReviewWorkflow(db, current_user.tenant_id).view(current_user, review_id)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=ReviewOut)
def create_review(
    payload: ReviewCreate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    ratings, text = _split(payload)
    review = workflow.create_review(current_user, payload.employee_id, payload.review_date, ratings, text)
    return serialize_review(review, current_user, revealed=False)


@router.put("/{review_id}", response_model=ReviewOut)
def update_review(
    review_id: int,
    payload: ReviewUpdate,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(get_current_user),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    changes = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in TEXT_FIELDS
    }
    review = workflow.update(current_user, review_id, changes)
    return serialize_review(review, current_user, workflow.state_of(review).revealed)


@router.post("/{review_id}/commit")
def commit_review(
    review_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_manager()),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    review, state = workflow.commit(current_user, review_id, ReviewSide.MANAGER)
    return _commit_response(review, state, current_user, "Review committed")


@router.post("/{review_id}/uncommit")
def uncommit_review(
    review_id: int,
    db: Session = Depends(get_tenant_db),
    current_user: User = Depends(require_admin()),
):
    workflow = ReviewWorkflow(db, current_user.tenant_id)
    review, state = workflow.uncommit(current_user, review_id)
    return _commit_response(review, state, current_user, "Review uncommitted")
