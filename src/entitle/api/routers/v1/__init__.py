"""API v1 routers."""

from fastapi import APIRouter

from .access import router as access_router
from .auth import router as auth_router
from .billing import router as billing_router
from .license import router as license_router
from .seats import router as seats_router
from .team import router as team_router

# Create v1 router that includes all v1 endpoints
router = APIRouter(prefix="/v1")

router.include_router(auth_router)
router.include_router(billing_router)
router.include_router(seats_router)
router.include_router(team_router)
router.include_router(license_router)
router.include_router(access_router)

__all__ = [
    "router",
    "access_router",
    "auth_router",
    "billing_router",
    "license_router",
    "seats_router",
    "team_router",
]
