"""Marketplace API routes."""
from fastapi import APIRouter

from digipay.api.market import routes_offers, routes_ratings, routes_trades

router = APIRouter()

router.include_router(routes_offers.router, prefix="/offers", tags=["offers"])
router.include_router(routes_trades.router, prefix="/trades", tags=["trades"])
router.include_router(routes_ratings.router, prefix="/ratings", tags=["ratings"])
