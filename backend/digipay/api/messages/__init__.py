"""Messaging API routes."""
from fastapi import APIRouter

from digipay.api.messages import routes_messages

router = APIRouter()

router.include_router(routes_messages.router, prefix="/messages", tags=["messages"])
