"""Ledger domain models."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional

from digipay.domain.common.money import Currency


class TransactionType(str, Enum):
    """Ledger entry type."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRADE_SETTLEMENT = "trade_settlement"
    ADMIN_CREDIT = "admin_credit"
    ADMIN_DEBIT = "admin_debit"
    SWAP = "swap"


class Direction(str, Enum):
    """Balance direction of an entry."""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    """Ledger entry status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Transaction:
    """Ledger entry. applied_at is set once the row has moved a balance."""
    id: str
    user_id: str
    type: TransactionType
    direction: Direction
    currency: Currency
    amount: Decimal
    status: TransactionStatus
    tx_ref: str
    trade_id: Optional[str]
    description: Optional[str]
    metadata: Optional[dict]  # Note: This is tx_metadata in the database model
    notes: Optional[str]
    applied_at: Optional[datetime]
    created_at: datetime
    completed_at: Optional[datetime]


class Posting(NamedTuple):
    """Result of a credit/debit: the entry and whether this call moved money."""
    transaction: Transaction
    applied: bool


class Transfer(NamedTuple):
    """Result of a two-legged transfer."""
    debit: Posting
    credit: Posting

    @property
    def applied(self) -> bool:
        return self.debit.applied and self.credit.applied
