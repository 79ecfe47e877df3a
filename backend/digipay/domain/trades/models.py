"""Trade domain models."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from digipay.domain.offers.models import PaymentMethod


class TradeStatus(str, Enum):
    """Trade lifecycle status."""
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_MADE = "payment_made"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


TERMINAL_STATUSES = frozenset({TradeStatus.COMPLETED, TradeStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({TradeStatus.PENDING, TradeStatus.PAYMENT_PENDING})
DISPUTABLE_STATUSES = frozenset({TradeStatus.PAYMENT_PENDING, TradeStatus.PAYMENT_MADE})


class DisputeCategory(str, Enum):
    """Fixed dispute categories."""
    PAYMENT_NOT_RECEIVED = "payment_not_received"
    PAYMENT_NOT_MADE = "payment_not_made"
    WRONG_PAYMENT_DETAILS = "wrong_payment_details"
    FAKE_PAYMENT_PROOF = "fake_payment_proof"
    ACCOUNT_ISSUES = "account_issues"
    COMMUNICATION_ISSUES = "communication_issues"
    OTHER = "other"


class Resolution(str, Enum):
    """Admin dispute outcome."""
    RELEASE = "release"
    REFUND = "refund"


@dataclass
class Trade:
    """Trade domain model. fiat_amount is fixed at creation."""
    id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: Decimal
    rate: Decimal
    fiat_amount: Decimal
    payment_method: PaymentMethod
    status: TradeStatus
    payment_deadline: datetime
    created_at: datetime
    updated_at: datetime
    payment_confirmed_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    expired_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    dispute_category: Optional[DisputeCategory] = None
    dispute_raised_by: Optional[str] = None
    dispute_evidence: list[str] = field(default_factory=list)
    disputed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    resolution: Optional[Resolution] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def counterparty(self, user_id: str) -> str:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
