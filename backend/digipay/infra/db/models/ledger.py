"""Ledger database models."""
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text

from digipay.domain.common.money import Currency, amount_from_minor
from digipay.domain.ledger.models import Direction, Transaction, TransactionStatus, TransactionType
from digipay.infra.db.base import Base, JSONBType


class TransactionModel(Base):
    """One row per balance mutation (and per pending external operation)."""

    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    type = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    currency = Column(String, nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    status = Column(String, nullable=False)
    tx_ref = Column(String, nullable=False, unique=True)  # idempotency key / external reference
    trade_id = Column(String, ForeignKey("trades.id", ondelete="SET NULL"), nullable=True)
    description = Column(Text, nullable=True)
    tx_metadata = Column(JSONBType, nullable=True)
    notes = Column(Text, nullable=True)
    applied_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_transactions_amount_positive"),
        Index("ix_transactions_user_id_created_at", "user_id", "created_at"),
        Index("ix_transactions_trade_id", "trade_id"),
    )

    def to_entity(self) -> Transaction:
        """Convert to domain entity."""
        currency = Currency(self.currency)
        return Transaction(
            id=self.id,
            user_id=self.user_id,
            type=TransactionType(self.type),
            direction=Direction(self.direction),
            currency=currency,
            amount=amount_from_minor(self.amount_minor, currency),
            status=TransactionStatus(self.status),
            tx_ref=self.tx_ref,
            trade_id=self.trade_id,
            description=self.description,
            metadata=self.tx_metadata,
            notes=self.notes,
            applied_at=self.applied_at,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )
