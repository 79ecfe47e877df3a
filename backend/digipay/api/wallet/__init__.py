"""Wallet API routes."""
from fastapi import APIRouter

from digipay.api.wallet import routes_payments, routes_wallet

router = APIRouter()

router.include_router(routes_wallet.router, prefix="/wallet", tags=["wallet"])
router.include_router(routes_payments.router, prefix="/payments", tags=["payments"])
