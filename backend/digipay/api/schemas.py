"""Shared request/response models. Money always crosses the API as fixed-scale decimal strings."""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from digipay.domain.common.money import FIAT, Currency, format_amount
from digipay.domain.ledger.models import Transaction
from digipay.domain.messaging.models import Message
from digipay.domain.offers.models import Offer, PaymentMethod, payment_method_details, payment_method_from_dict
from digipay.domain.ratings.models import Rating
from digipay.domain.trades.models import Trade

AmountStr = Annotated[str, Field(pattern=r"^\d+(\.\d+)?$", examples=["40.00"])]


def _rate(value) -> str:
    # Rates carry fiat precision
    return format_amount(value, FIAT)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Payment methods (tagged union)

class BankTransferIn(BaseModel):
    kind: Literal["bank_transfer"]
    bank_name: str
    account_number: str
    account_name: str


class MobileMoneyIn(BaseModel):
    kind: Literal["mobile_money"]
    provider: str
    phone_number: str


class CashIn(BaseModel):
    kind: Literal["cash"]
    location: str


PaymentMethodIn = Annotated[Union[BankTransferIn, MobileMoneyIn, CashIn], Field(discriminator="kind")]


def to_payment_method(method: Union[BankTransferIn, MobileMoneyIn, CashIn]) -> PaymentMethod:
    return payment_method_from_dict(method.kind, method.model_dump(exclude={"kind"}))


def payment_method_out(method: PaymentMethod) -> dict:
    return {"kind": method.kind.value, **payment_method_details(method)}


# Offers

class OfferResponse(BaseModel):
    """Offer response."""
    id: str
    owner_id: str
    side: str
    amount: str
    remaining_amount: str
    rate: str
    status: str
    min_amount: Optional[str]
    max_amount: Optional[str]
    payment_method: dict
    time_limit_minutes: int
    terms: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, offer: Offer) -> "OfferResponse":
        return cls(
            id=offer.id,
            owner_id=offer.owner_id,
            side=offer.side.value,
            amount=format_amount(offer.amount, Currency.USDT),
            remaining_amount=format_amount(offer.remaining_amount, Currency.USDT),
            rate=_rate(offer.rate),
            status=offer.status.value,
            min_amount=format_amount(offer.min_amount, Currency.USDT) if offer.min_amount is not None else None,
            max_amount=format_amount(offer.max_amount, Currency.USDT) if offer.max_amount is not None else None,
            payment_method=payment_method_out(offer.payment_method),
            time_limit_minutes=offer.time_limit_minutes,
            terms=offer.terms,
            created_at=offer.created_at.isoformat(),
            updated_at=offer.updated_at.isoformat(),
        )


# Trades

class TradeResponse(BaseModel):
    """Trade response."""
    id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: str
    rate: str
    fiat_amount: str
    payment_method: dict
    status: str
    payment_deadline: str
    payment_reference: Optional[str] = None
    payment_confirmed_at: Optional[str] = None
    expired_at: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    dispute_category: Optional[str] = None
    dispute_reason: Optional[str] = None
    dispute_raised_by: Optional[str] = None
    dispute_evidence: List[str] = []
    admin_notes: Optional[str] = None
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, trade: Trade) -> "TradeResponse":
        return cls(
            id=trade.id,
            offer_id=trade.offer_id,
            buyer_id=trade.buyer_id,
            seller_id=trade.seller_id,
            amount=format_amount(trade.amount, Currency.USDT),
            rate=_rate(trade.rate),
            fiat_amount=format_amount(trade.fiat_amount, Currency.NGN),
            payment_method=payment_method_out(trade.payment_method),
            status=trade.status.value,
            payment_deadline=trade.payment_deadline.isoformat(),
            payment_reference=trade.payment_reference,
            payment_confirmed_at=_iso(trade.payment_confirmed_at),
            expired_at=_iso(trade.expired_at),
            cancelled_by=trade.cancelled_by,
            cancel_reason=trade.cancel_reason,
            dispute_category=trade.dispute_category.value if trade.dispute_category else None,
            dispute_reason=trade.dispute_reason,
            dispute_raised_by=trade.dispute_raised_by,
            dispute_evidence=list(trade.dispute_evidence or []),
            admin_notes=trade.admin_notes,
            resolution=trade.resolution.value if trade.resolution else None,
            resolved_by=trade.resolved_by,
            completed_at=_iso(trade.completed_at),
            cancelled_at=_iso(trade.cancelled_at),
            created_at=trade.created_at.isoformat(),
            updated_at=trade.updated_at.isoformat(),
        )


# Ledger

class TransactionResponse(BaseModel):
    """Ledger entry response."""
    id: str
    user_id: str
    type: str
    direction: str
    currency: str
    amount: str
    status: str
    tx_ref: str
    trade_id: Optional[str]
    description: Optional[str]
    metadata: Optional[dict]
    notes: Optional[str]
    created_at: str
    completed_at: Optional[str]

    @classmethod
    def from_entity(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            user_id=tx.user_id,
            type=tx.type.value,
            direction=tx.direction.value,
            currency=tx.currency.value,
            amount=format_amount(tx.amount, tx.currency),
            status=tx.status.value,
            tx_ref=tx.tx_ref,
            trade_id=tx.trade_id,
            description=tx.description,
            metadata=tx.metadata,
            notes=tx.notes,
            created_at=tx.created_at.isoformat(),
            completed_at=_iso(tx.completed_at),
        )


class BalancesResponse(BaseModel):
    """Balances per currency."""
    NGN: str
    USDT: str

    @classmethod
    def from_balances(cls, balances: dict) -> "BalancesResponse":
        return cls(**{c.value: format_amount(balances[c], c) for c in Currency})


# Messaging / ratings

class MessageResponse(BaseModel):
    """Message response."""
    id: str
    trade_id: Optional[str]
    sender_id: Optional[str]
    recipient_id: Optional[str]
    body: str
    is_system: bool
    read_at: Optional[str]
    created_at: str

    @classmethod
    def from_entity(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            trade_id=message.trade_id,
            sender_id=message.sender_id,
            recipient_id=message.recipient_id,
            body=message.body,
            is_system=message.is_system,
            read_at=_iso(message.read_at),
            created_at=message.created_at.isoformat(),
        )


class MessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=2000)


class RatingResponse(BaseModel):
    """Rating response."""
    id: str
    trade_id: str
    rater_id: str
    rated_user_id: str
    score: int
    comment: Optional[str]
    created_at: str

    @classmethod
    def from_entity(cls, rating: Rating) -> "RatingResponse":
        return cls(
            id=rating.id,
            trade_id=rating.trade_id,
            rater_id=rating.rater_id,
            rated_user_id=rating.rated_user_id,
            score=rating.score,
            comment=rating.comment,
            created_at=rating.created_at.isoformat(),
        )
