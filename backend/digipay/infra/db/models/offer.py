"""Offer database model."""
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text

from digipay.domain.common.money import Currency, amount_from_minor, amount_to_minor, rate_from_minor, rate_to_minor
from digipay.domain.offers.models import (
    Offer,
    OfferSide,
    OfferStatus,
    payment_method_details,
    payment_method_from_dict,
)
from digipay.infra.db.base import Base, JSONBType


class OfferModel(Base):
    """Offer model. Amounts in stable minor units, rate in fiat minor units per stable unit."""

    __tablename__ = "offers"

    id = Column(String, primary_key=True)
    owner_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    side = Column(String, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    remaining_minor = Column(BigInteger, nullable=False)
    rate_minor = Column(BigInteger, nullable=False)
    status = Column(String, nullable=False, default=OfferStatus.ACTIVE.value)
    min_amount_minor = Column(BigInteger, nullable=True)
    max_amount_minor = Column(BigInteger, nullable=True)
    payment_method = Column(String, nullable=False)
    payment_details = Column(JSONBType, nullable=False)
    time_limit_minutes = Column(Integer, nullable=False)
    terms = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_offers_amount_positive"),
        CheckConstraint("rate_minor > 0", name="ck_offers_rate_positive"),
        CheckConstraint(
            "remaining_minor >= 0 AND remaining_minor <= amount_minor",
            name="ck_offers_remaining_in_range",
        ),
        Index("ix_offers_owner_id", "owner_id"),
        Index("ix_offers_side_status", "side", "status"),
    )

    def to_entity(self) -> Offer:
        """Convert to domain entity."""
        return Offer(
            id=self.id,
            owner_id=self.owner_id,
            side=OfferSide(self.side),
            amount=amount_from_minor(self.amount_minor, Currency.USDT),
            remaining_amount=amount_from_minor(self.remaining_minor, Currency.USDT),
            rate=rate_from_minor(self.rate_minor),
            status=OfferStatus(self.status),
            min_amount=(
                amount_from_minor(self.min_amount_minor, Currency.USDT)
                if self.min_amount_minor is not None else None
            ),
            max_amount=(
                amount_from_minor(self.max_amount_minor, Currency.USDT)
                if self.max_amount_minor is not None else None
            ),
            payment_method=payment_method_from_dict(self.payment_method, self.payment_details),
            time_limit_minutes=self.time_limit_minutes,
            terms=self.terms,
            is_deleted=self.is_deleted,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_entity(cls, entity: Offer) -> "OfferModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            owner_id=entity.owner_id,
            side=OfferSide(entity.side).value,
            amount_minor=amount_to_minor(entity.amount, Currency.USDT),
            remaining_minor=amount_to_minor(entity.remaining_amount, Currency.USDT),
            rate_minor=rate_to_minor(entity.rate),
            status=OfferStatus(entity.status).value,
            min_amount_minor=(
                amount_to_minor(entity.min_amount, Currency.USDT) if entity.min_amount is not None else None
            ),
            max_amount_minor=(
                amount_to_minor(entity.max_amount, Currency.USDT) if entity.max_amount is not None else None
            ),
            payment_method=entity.payment_method.kind.value,
            payment_details=payment_method_details(entity.payment_method),
            time_limit_minutes=entity.time_limit_minutes,
            terms=entity.terms,
            is_deleted=entity.is_deleted,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
