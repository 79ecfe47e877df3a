"""Wallet routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from digipay.api.deps import get_current_user, get_ledger_service, get_wallet_service
from digipay.api.schemas import AmountStr, BalancesResponse, TransactionResponse
from digipay.domain.common.money import Currency, format_amount
from digipay.domain.ledger.models import TransactionStatus, TransactionType
from digipay.domain.ledger.services import LedgerService
from digipay.domain.users.models import User
from digipay.domain.wallet.models import BankAccount
from digipay.domain.wallet.services import WalletService

router = APIRouter()


class WithdrawRequest(BaseModel):
    """Withdrawal to a Nigerian bank account."""
    amount: AmountStr
    bank_name: str = Field(min_length=1)
    bank_code: str = Field(min_length=1)
    account_number: str
    account_name: str = Field(min_length=1)


class SwapRequest(BaseModel):
    from_currency: Currency
    amount: AmountStr


class SwapResponse(BaseModel):
    debit: TransactionResponse
    credit: TransactionResponse
    fee: str
    rate: str


@router.get("/balances", response_model=BalancesResponse)
async def get_balances(
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return BalancesResponse.from_balances(await ledger.get_balances(current_user.id))


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    currency: Optional[Currency] = None,
    type: Optional[TransactionType] = None,
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Ledger history, newest first."""
    result = await ledger.list_transactions(current_user.id, currency, type, status_filter, limit, offset)
    return [TransactionResponse.from_entity(tx) for tx in result]


@router.post("/withdraw", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    request: WithdrawRequest,
    current_user: User = Depends(get_current_user),
    wallet: WalletService = Depends(get_wallet_service),
):
    """Debit now; payout happens after admin approval."""
    tx = await wallet.request_withdrawal(
        current_user.id,
        request.amount,
        BankAccount(
            bank_name=request.bank_name,
            bank_code=request.bank_code,
            account_number=request.account_number,
            account_name=request.account_name,
        ),
    )
    return TransactionResponse.from_entity(tx)


@router.post("/swap", response_model=SwapResponse)
async def swap(
    request: SwapRequest,
    current_user: User = Depends(get_current_user),
    wallet: WalletService = Depends(get_wallet_service),
):
    result = await wallet.swap(current_user.id, request.from_currency, request.amount)
    return SwapResponse(
        debit=TransactionResponse.from_entity(result.debit),
        credit=TransactionResponse.from_entity(result.credit),
        fee=format_amount(result.fee, request.from_currency),
        rate=format_amount(result.rate, Currency.NGN),
    )
