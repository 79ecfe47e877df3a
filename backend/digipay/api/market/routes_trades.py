"""Trade routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from digipay.api.deps import get_current_user, get_messaging_service, get_trade_service
from digipay.api.schemas import AmountStr, MessageRequest, MessageResponse, TradeResponse
from digipay.domain.messaging.services import MessagingService
from digipay.domain.trades.models import DisputeCategory, TradeStatus
from digipay.domain.trades.services import TradeService
from digipay.domain.users.models import User

router = APIRouter()


class TradeCreateRequest(BaseModel):
    """Open a trade against an offer."""
    offer_id: str
    amount: AmountStr


class ConfirmPaymentRequest(BaseModel):
    payment_reference: Optional[str] = Field(None, max_length=255)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DisputeRequest(BaseModel):
    """Raise a dispute."""
    category: DisputeCategory
    reason: str = Field(min_length=1, max_length=2000)
    evidence: List[str] = []


@router.get("", response_model=List[TradeResponse])
async def list_trades(
    status_filter: Optional[TradeStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    """Trades the caller takes part in, newest first."""
    result = await trades.list_trades(current_user.id, status_filter, limit, offset)
    return [TradeResponse.from_entity(t) for t in result]


@router.post("", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def create_trade(
    request: TradeCreateRequest,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    trade = await trades.create_trade(request.offer_id, current_user.id, request.amount)
    return TradeResponse.from_entity(trade)


@router.get("/{trade_id}", response_model=TradeResponse)
async def get_trade(
    trade_id: str,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    return TradeResponse.from_entity(await trades.get_trade(trade_id, current_user.id))


@router.post("/{trade_id}/confirm-payment", response_model=TradeResponse)
async def confirm_payment(
    trade_id: str,
    request: Optional[ConfirmPaymentRequest] = None,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    """Buyer: fiat sent."""
    reference = request.payment_reference if request else None
    return TradeResponse.from_entity(await trades.confirm_payment(trade_id, current_user.id, reference))


@router.post("/{trade_id}/release-funds", response_model=TradeResponse)
async def release_funds(
    trade_id: str,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    """Seller: fiat received, release the stablecoin."""
    return TradeResponse.from_entity(await trades.release_funds(trade_id, current_user.id))


@router.post("/{trade_id}/cancel", response_model=TradeResponse)
async def cancel_trade(
    trade_id: str,
    request: Optional[CancelRequest] = None,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    reason = request.reason if request else None
    return TradeResponse.from_entity(await trades.cancel_trade(trade_id, current_user.id, reason))


@router.post("/{trade_id}/dispute", response_model=TradeResponse)
async def raise_dispute(
    trade_id: str,
    request: DisputeRequest,
    current_user: User = Depends(get_current_user),
    trades: TradeService = Depends(get_trade_service),
):
    trade = await trades.raise_dispute(
        trade_id, current_user.id, request.category, request.reason, request.evidence
    )
    return TradeResponse.from_entity(trade)


@router.get("/{trade_id}/messages", response_model=List[MessageResponse])
async def list_trade_messages(
    trade_id: str,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    """Trade chat, oldest first (clients poll this)."""
    return [MessageResponse.from_entity(m) for m in await messaging.list_trade_messages(trade_id, current_user.id)]


@router.post("/{trade_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_trade_message(
    trade_id: str,
    request: MessageRequest,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    return MessageResponse.from_entity(await messaging.send_trade_message(trade_id, current_user.id, request.body))
