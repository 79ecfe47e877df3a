"""Wallet domain models."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from digipay.domain.ledger.models import Transaction


@dataclass
class PaymentInit:
    """Gateway checkout session."""
    reference: str
    authorization_url: str
    access_code: Optional[str] = None


@dataclass
class PaymentVerification:
    """Gateway view of a charge. amount is in major units (naira)."""
    reference: str
    status: str  # success | failed | abandoned | pending | ...
    amount: Decimal
    currency: str
    paid_at: Optional[datetime] = None


@dataclass
class BankAccount:
    """Payout destination for withdrawals."""
    bank_name: str
    bank_code: str
    account_number: str
    account_name: str


@dataclass
class TransferInit:
    """Gateway payout handle."""
    reference: str
    transfer_code: Optional[str]
    status: str


@dataclass
class DepositInit:
    """Returned to the client to start checkout."""
    reference: str
    authorization_url: str
    amount: Decimal


@dataclass
class SwapResult:
    """Both legs of a currency swap."""
    debit: Transaction
    credit: Transaction
    fee: Decimal
    rate: Decimal


class PaymentGateway(Protocol):
    """Fiat payment gateway (card/bank checkout, payouts, signed webhooks)."""

    async def initialize_payment(self, email: str, amount: Decimal, reference: str) -> PaymentInit:
        ...

    async def verify_payment(self, reference: str) -> PaymentVerification:
        ...

    async def initiate_transfer(self, amount: Decimal, account: BankAccount, reference: str, reason: str) -> TransferInit:
        ...

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        ...
