"""API v1 router combining all endpoints"""
from fastapi import APIRouter

from secureflow.api.v1.endpoints import analysis, approval, notifications, projects, webhooks

router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
router.include_router(projects.router)
router.include_router(analysis.router)
router.include_router(approval.router)
router.include_router(webhooks.router)
router.include_router(notifications.router)

__all__ = ["router"]
