"""Offer domain models."""
from dataclasses import asdict, dataclass, fields as dataclass_fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Union

from digipay.domain.common.errors import ValidationError


class OfferSide(str, Enum):
    """Which side the offer owner takes: a sell offer sells stablecoin for fiat."""
    BUY = "buy"
    SELL = "sell"


class OfferStatus(str, Enum):
    """Offer status enum."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class PaymentMethodKind(str, Enum):
    """Payment method tag."""
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CASH = "cash"


@dataclass
class BankTransfer:
    kind: ClassVar[PaymentMethodKind] = PaymentMethodKind.BANK_TRANSFER
    bank_name: str
    account_number: str
    account_name: str


@dataclass
class MobileMoney:
    kind: ClassVar[PaymentMethodKind] = PaymentMethodKind.MOBILE_MONEY
    provider: str
    phone_number: str


@dataclass
class Cash:
    kind: ClassVar[PaymentMethodKind] = PaymentMethodKind.CASH
    location: str


PaymentMethod = Union[BankTransfer, MobileMoney, Cash]

_PAYMENT_METHOD_TYPES = {
    PaymentMethodKind.BANK_TRANSFER: BankTransfer,
    PaymentMethodKind.MOBILE_MONEY: MobileMoney,
    PaymentMethodKind.CASH: Cash,
}


def payment_method_from_dict(kind: str, details: Optional[dict]) -> PaymentMethod:
    """Build a payment method from its tag and detail fields; every field of the tag is required."""
    try:
        method_kind = PaymentMethodKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown payment method: {kind}")
    cls = _PAYMENT_METHOD_TYPES[method_kind]
    details = details or {}
    fields = [f.name for f in dataclass_fields(cls)]
    missing = [f for f in fields if not str(details.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"{method_kind.value} requires: {', '.join(missing)}")
    return cls(**{f: str(details[f]).strip() for f in fields})


def payment_method_details(method: PaymentMethod) -> dict:
    return asdict(method)


@dataclass
class Offer:
    """Offer domain model."""
    id: str
    owner_id: str
    side: OfferSide
    amount: Decimal
    remaining_amount: Decimal
    rate: Decimal
    status: OfferStatus
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    payment_method: PaymentMethod
    time_limit_minutes: int
    terms: Optional[str]
    is_deleted: bool
    created_at: datetime
    updated_at: datetime

    @property
    def consumed_amount(self) -> Decimal:
        return self.amount - self.remaining_amount

    @property
    def is_available(self) -> bool:
        return self.status == OfferStatus.ACTIVE and not self.is_deleted
