"""User domain models."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr

from digipay.domain.common.money import Currency
from digipay.domain.common.types import generate_id, utcnow


class KycStatus(str, Enum):
    """KYC status enum."""
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class User(BaseModel):
    """User domain model. Balances are read-only here; only the ledger writes them."""

    id: str
    email: EmailStr
    password_hash: str
    display_name: Optional[str] = None
    phone: Optional[str] = None
    fiat_balance: Decimal = Decimal("0.00")
    stable_balance: Decimal = Decimal("0.00000000")
    kyc_verified: bool = False
    kyc_status: KycStatus = KycStatus.UNVERIFIED
    rating_average: str = "0.00"
    rating_count: int = 0
    rating_total: int = 0
    is_admin: bool = False
    is_banned: bool = False
    funds_frozen: bool = False
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    def balance(self, currency: Currency) -> Decimal:
        return self.fiat_balance if Currency(currency) == Currency.NGN else self.stable_balance

    @classmethod
    def create(
        cls,
        email: EmailStr,
        password_hash: str,
        display_name: Optional[str] = None,
        phone: Optional[str] = None,
        is_admin: bool = False,
    ) -> "User":
        """Create a new user."""
        now = utcnow()
        return cls(
            id=generate_id(),
            email=email,
            password_hash=password_hash,
            display_name=display_name,
            phone=phone,
            is_admin=is_admin,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
