"""Message database model."""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text

from digipay.domain.messaging.models import Message
from digipay.infra.db.base import Base


class MessageModel(Base):
    """Trade chat and direct messages."""

    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    trade_id = Column(String, ForeignKey("trades.id", ondelete="CASCADE"), nullable=True)
    sender_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    body = Column(Text, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_messages_trade_id_created_at", "trade_id", "created_at"),
        Index("ix_messages_sender_recipient", "sender_id", "recipient_id"),
    )

    def to_entity(self) -> Message:
        """Convert to domain entity."""
        return Message(
            id=self.id,
            trade_id=self.trade_id,
            sender_id=self.sender_id,
            recipient_id=self.recipient_id,
            body=self.body,
            is_system=self.is_system,
            read_at=self.read_at,
            created_at=self.created_at,
        )

    @classmethod
    def from_entity(cls, entity: Message) -> "MessageModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            trade_id=entity.trade_id,
            sender_id=entity.sender_id,
            recipient_id=entity.recipient_id,
            body=entity.body,
            is_system=entity.is_system,
            read_at=entity.read_at,
            created_at=entity.created_at,
        )
