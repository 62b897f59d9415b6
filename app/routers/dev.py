"""
Development-only helpers. Mounted only when APP_ENV=development.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.init_system import seed_demo_data
from app.database import get_db

router = APIRouter(prefix="/dev", tags=["Development"])


@router.post("/seed")
def seed(db: Session = Depends(get_db)):
    return {"message": "Demo data ready", **seed_demo_data(db)}
