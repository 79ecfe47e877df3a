"""Admin API routes."""
from fastapi import APIRouter

from digipay.api.admin import routes_admin, routes_config

router = APIRouter()

router.include_router(routes_admin.router, prefix="/admin", tags=["admin"])
router.include_router(routes_config.router, prefix="/admin", tags=["config"])
