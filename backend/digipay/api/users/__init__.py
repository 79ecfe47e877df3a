"""Identity API routes."""
from fastapi import APIRouter

from digipay.api.users import routes_auth, routes_kyc, routes_users

router = APIRouter()

router.include_router(routes_auth.router, prefix="/auth", tags=["auth"])
router.include_router(routes_users.router, prefix="/users", tags=["users"])
router.include_router(routes_kyc.router, prefix="/kyc", tags=["kyc"])
