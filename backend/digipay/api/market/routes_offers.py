"""Offer routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from digipay.api.deps import get_current_user, get_offer_service
from digipay.api.schemas import AmountStr, OfferResponse, PaymentMethodIn, to_payment_method
from digipay.domain.offers.models import OfferSide, OfferStatus, PaymentMethodKind
from digipay.domain.offers.services import OfferService
from digipay.domain.users.models import User

router = APIRouter()


class OfferCreateRequest(BaseModel):
    """Offer create request."""
    side: OfferSide
    amount: AmountStr
    rate: AmountStr
    payment_method: PaymentMethodIn
    min_amount: Optional[AmountStr] = None
    max_amount: Optional[AmountStr] = None
    time_limit_minutes: Optional[int] = None
    terms: Optional[str] = Field(None, max_length=2000)


class OfferUpdateRequest(BaseModel):
    """Offer update request. Only fields that are sent are changed; null clears min/max/terms."""
    amount: Optional[AmountStr] = None
    rate: Optional[AmountStr] = None
    payment_method: Optional[PaymentMethodIn] = None
    min_amount: Optional[AmountStr] = None
    max_amount: Optional[AmountStr] = None
    time_limit_minutes: Optional[int] = None
    terms: Optional[str] = Field(None, max_length=2000)


class OfferStatusRequest(BaseModel):
    status: OfferStatus


@router.get("", response_model=List[OfferResponse])
async def list_offers(
    side: Optional[OfferSide] = None,
    owner_id: Optional[str] = None,
    payment_method: Optional[PaymentMethodKind] = None,
    active_only: bool = True,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    offers: OfferService = Depends(get_offer_service),
):
    """Browse offers, best rate first."""
    result = await offers.list_offers(side, owner_id, payment_method, active_only, limit, offset)
    return [OfferResponse.from_entity(o) for o in result]


@router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    request: OfferCreateRequest,
    current_user: User = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    offer = await offers.create_offer(
        owner_id=current_user.id,
        side=request.side,
        amount=request.amount,
        rate=request.rate,
        payment_method=to_payment_method(request.payment_method),
        min_amount=request.min_amount,
        max_amount=request.max_amount,
        time_limit_minutes=request.time_limit_minutes,
        terms=request.terms,
    )
    return OfferResponse.from_entity(offer)


@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(offer_id: str, offers: OfferService = Depends(get_offer_service)):
    return OfferResponse.from_entity(await offers.get_offer(offer_id))


@router.put("/{offer_id}", response_model=OfferResponse)
async def update_offer(
    offer_id: str,
    request: OfferUpdateRequest,
    current_user: User = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    sent = request.model_fields_set
    kwargs = {
        name: getattr(request, name)
        for name in ("min_amount", "max_amount", "terms")
        if name in sent
    }
    offer = await offers.update_offer(
        offer_id,
        current_user.id,
        amount=request.amount,
        rate=request.rate,
        payment_method=to_payment_method(request.payment_method) if request.payment_method else None,
        time_limit_minutes=request.time_limit_minutes,
        **kwargs,
    )
    return OfferResponse.from_entity(offer)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: str,
    current_user: User = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    await offers.delete_offer(offer_id, current_user.id)


@router.post("/{offer_id}/status", response_model=OfferResponse)
async def set_offer_status(
    offer_id: str,
    request: OfferStatusRequest,
    current_user: User = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service),
):
    """Pause or re-activate an offer."""
    return OfferResponse.from_entity(await offers.set_status(offer_id, current_user.id, request.status))
