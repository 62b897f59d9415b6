from fastapi import APIRouter
from app.core.config import settings
from app.routers import (
    auth, reviews, leave, sick_leave, absence_insights,
    offboarding, notifications, audit, gdpr, users, dev
)

# Centralized API router hub
# This follows the "Leaf Node" pattern: Routers are aggregated here,
# and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(auth.router, tags=["Authentication"])
api_router.include_router(reviews.router, tags=["Reviews"])
api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(sick_leave.router, tags=["Sick Leave"])
api_router.include_router(absence_insights.router, tags=["Absence Insights"])
api_router.include_router(offboarding.router, tags=["Offboarding"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(audit.router, tags=["Audit"])
api_router.include_router(gdpr.router, tags=["GDPR"])
api_router.include_router(users.router, tags=["Users"])

if settings.is_development:
    api_router.include_router(dev.router, tags=["Development"])
