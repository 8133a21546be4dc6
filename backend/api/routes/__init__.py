"""API Routes."""

from fastapi import APIRouter

from .actions import router as actions_router
from .admin import router as admin_router
from .allowance import router as allowance_router
from .billing import router as billing_router
from .health import router as health_router

# Create main API router
api_router = APIRouter()

api_router.include_router(health_router, tags=["Health"])
api_router.include_router(billing_router)
api_router.include_router(allowance_router)
api_router.include_router(actions_router)
api_router.include_router(admin_router)
