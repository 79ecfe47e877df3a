"""Trade database model."""
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text

from digipay.domain.common.money import Currency, amount_from_minor, amount_to_minor, rate_from_minor, rate_to_minor
from digipay.domain.offers.models import payment_method_details, payment_method_from_dict
from digipay.domain.trades.models import DisputeCategory, Resolution, Trade, TradeStatus
from digipay.infra.db.base import Base, JSONBType


class TradeModel(Base):
    """Trade model."""

    __tablename__ = "trades"

    id = Column(String, primary_key=True)
    offer_id = Column(String, ForeignKey("offers.id", ondelete="RESTRICT"), nullable=False)
    buyer_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    seller_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    rate_minor = Column(BigInteger, nullable=False)
    fiat_amount_minor = Column(BigInteger, nullable=False)
    payment_method = Column(String, nullable=False)
    payment_details = Column(JSONBType, nullable=False)  # snapshot at creation
    status = Column(String, nullable=False)
    payment_deadline = Column(DateTime, nullable=False)
    payment_confirmed_at = Column(DateTime, nullable=True)
    payment_reference = Column(String, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    dispute_reason = Column(Text, nullable=True)
    dispute_category = Column(String, nullable=True)
    dispute_raised_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    dispute_evidence = Column(JSONBType, nullable=True)
    disputed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)
    resolution = Column(String, nullable=True)
    resolved_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("buyer_id <> seller_id", name="ck_trades_distinct_parties"),
        CheckConstraint("amount_minor > 0", name="ck_trades_amount_positive"),
        Index("ix_trades_buyer_id", "buyer_id"),
        Index("ix_trades_seller_id", "seller_id"),
        Index("ix_trades_status_deadline", "status", "payment_deadline"),
    )

    def to_entity(self) -> Trade:
        """Convert to domain entity."""
        return Trade(
            id=self.id,
            offer_id=self.offer_id,
            buyer_id=self.buyer_id,
            seller_id=self.seller_id,
            amount=amount_from_minor(self.amount_minor, Currency.USDT),
            rate=rate_from_minor(self.rate_minor),
            fiat_amount=amount_from_minor(self.fiat_amount_minor, Currency.NGN),
            payment_method=payment_method_from_dict(self.payment_method, self.payment_details),
            status=TradeStatus(self.status),
            payment_deadline=self.payment_deadline,
            created_at=self.created_at,
            updated_at=self.updated_at,
            payment_confirmed_at=self.payment_confirmed_at,
            payment_reference=self.payment_reference,
            expired_at=self.expired_at,
            cancelled_by=self.cancelled_by,
            cancel_reason=self.cancel_reason,
            dispute_reason=self.dispute_reason,
            dispute_category=DisputeCategory(self.dispute_category) if self.dispute_category else None,
            dispute_raised_by=self.dispute_raised_by,
            dispute_evidence=list(self.dispute_evidence or []),
            disputed_at=self.disputed_at,
            admin_notes=self.admin_notes,
            resolution=Resolution(self.resolution) if self.resolution else None,
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
        )

    @classmethod
    def from_entity(cls, entity: Trade) -> "TradeModel":
        """Create from domain entity (used on creation only; later writes are conditional updates)."""
        return cls(
            id=entity.id,
            offer_id=entity.offer_id,
            buyer_id=entity.buyer_id,
            seller_id=entity.seller_id,
            amount_minor=amount_to_minor(entity.amount, Currency.USDT),
            rate_minor=rate_to_minor(entity.rate),
            fiat_amount_minor=amount_to_minor(entity.fiat_amount, Currency.NGN),
            payment_method=entity.payment_method.kind.value,
            payment_details=payment_method_details(entity.payment_method),
            status=TradeStatus(entity.status).value,
            payment_deadline=entity.payment_deadline,
            dispute_evidence=list(entity.dispute_evidence),
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
