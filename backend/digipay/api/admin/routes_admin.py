"""Admin routes: disputes, wallet adjustments, withdrawal review, moderation."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from digipay.api.deps import (
    get_current_admin,
    get_dispute_service,
    get_trade_service,
    get_user_service,
    get_wallet_service,
)
from digipay.api.schemas import AmountStr, TradeResponse, TransactionResponse
from digipay.domain.common.money import Currency
from digipay.domain.trades.disputes import DisputeService
from digipay.domain.trades.models import Resolution
from digipay.domain.trades.services import TradeService
from digipay.domain.users.models import User
from digipay.domain.users.services import UserService
from digipay.domain.wallet.services import WalletService

router = APIRouter()


class ResolveRequest(BaseModel):
    """Dispute outcome."""
    action: Resolution
    admin_notes: str = Field(min_length=1, max_length=2000)


class AdjustmentRequest(BaseModel):
    """Manual balance adjustment."""
    user_id: str
    currency: Currency
    amount: AmountStr
    description: str = Field(min_length=1, max_length=500)


class WithdrawalReviewRequest(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=1000)


class UserFlagsRequest(BaseModel):
    is_banned: Optional[bool] = None
    funds_frozen: Optional[bool] = None


class UserFlagsResponse(BaseModel):
    id: str
    is_banned: bool
    funds_frozen: bool


@router.get("/disputes", response_model=List[TradeResponse])
async def list_disputes(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(get_current_admin),
    trades: TradeService = Depends(get_trade_service),
):
    """Open disputes, oldest first."""
    return [TradeResponse.from_entity(t) for t in await trades.list_disputes(admin.id, limit, offset)]


@router.post("/disputes/{trade_id}/resolve", response_model=TradeResponse)
async def resolve_dispute(
    trade_id: str,
    request: ResolveRequest,
    admin: User = Depends(get_current_admin),
    disputes: DisputeService = Depends(get_dispute_service),
):
    trade = await disputes.resolve_dispute(trade_id, admin.id, request.action, request.admin_notes)
    return TradeResponse.from_entity(trade)


@router.post("/wallet/credit", response_model=TransactionResponse)
async def admin_credit(
    request: AdjustmentRequest,
    admin: User = Depends(get_current_admin),
    wallet: WalletService = Depends(get_wallet_service),
):
    tx = await wallet.admin_credit(admin.id, request.user_id, request.currency, request.amount, request.description)
    return TransactionResponse.from_entity(tx)


@router.post("/wallet/debit", response_model=TransactionResponse)
async def admin_debit(
    request: AdjustmentRequest,
    admin: User = Depends(get_current_admin),
    wallet: WalletService = Depends(get_wallet_service),
):
    tx = await wallet.admin_debit(admin.id, request.user_id, request.currency, request.amount, request.description)
    return TransactionResponse.from_entity(tx)


@router.post("/withdrawals/{tx_id}/review", response_model=TransactionResponse)
async def review_withdrawal(
    tx_id: str,
    request: WithdrawalReviewRequest,
    admin: User = Depends(get_current_admin),
    wallet: WalletService = Depends(get_wallet_service),
):
    return TransactionResponse.from_entity(
        await wallet.review_withdrawal(admin.id, tx_id, request.approve, request.notes)
    )


@router.post("/users/{user_id}/flags", response_model=UserFlagsResponse)
async def set_user_flags(
    user_id: str,
    request: UserFlagsRequest,
    admin: User = Depends(get_current_admin),
    users: UserService = Depends(get_user_service),
):
    """Ban/unban or freeze/unfreeze funds."""
    user = await users.set_user_flags(admin, user_id, is_banned=request.is_banned, funds_frozen=request.funds_frozen)
    return UserFlagsResponse(id=user.id, is_banned=user.is_banned, funds_frozen=user.funds_frozen)
