"""Payment gateway routes (deposits)."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from digipay.api.deps import get_current_user, get_wallet_service
from digipay.api.schemas import AmountStr, TransactionResponse
from digipay.domain.common.money import Currency, format_amount
from digipay.domain.users.models import User
from digipay.domain.wallet.services import WalletService

logger = logging.getLogger(__name__)

router = APIRouter()


class InitializeRequest(BaseModel):
    amount: AmountStr


class InitializeResponse(BaseModel):
    reference: str
    authorization_url: str
    amount: str


class VerifyRequest(BaseModel):
    reference: str


@router.post("/initialize", response_model=InitializeResponse)
async def initialize_deposit(
    request: InitializeRequest,
    current_user: User = Depends(get_current_user),
    wallet: WalletService = Depends(get_wallet_service),
):
    """Start a NGN deposit; the client redirects to authorization_url."""
    init = await wallet.initialize_deposit(current_user.id, request.amount)
    return InitializeResponse(
        reference=init.reference,
        authorization_url=init.authorization_url,
        amount=format_amount(init.amount, Currency.NGN),
    )


@router.post("/verify", response_model=TransactionResponse)
async def verify_deposit(
    request: VerifyRequest,
    current_user: User = Depends(get_current_user),
    wallet: WalletService = Depends(get_wallet_service),
):
    """Settle a deposit after checkout; safe to call repeatedly."""
    return TransactionResponse.from_entity(await wallet.verify_deposit(request.reference, current_user.id))


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    wallet: WalletService = Depends(get_wallet_service),
):
    """Gateway callback. Signature is checked over the raw body."""
    raw_body = await request.body()
    return await wallet.handle_webhook(raw_body, x_paystack_signature)
