"""Message repository implementation."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.messaging.models import Message
from digipay.infra.db.models.message import MessageModel


class MessageRepository:
    """Message repository interface."""

    async def create(self, message: Message) -> Message:
        """Create a message."""
        raise NotImplementedError

    async def get_by_id(self, message_id: str) -> Optional[Message]:
        """Get message by ID."""
        raise NotImplementedError

    async def list_for_trade(self, trade_id: str, limit: int = 200, offset: int = 0) -> List[Message]:
        """Trade chat, oldest first."""
        raise NotImplementedError

    async def list_conversation(self, user_id: str, other_id: str, limit: int = 200, offset: int = 0) -> List[Message]:
        """Direct messages between two users, oldest first."""
        raise NotImplementedError

    async def mark_read(self, message_id: str, recipient_id: str, now: datetime) -> bool:
        """Set read_at if unread and addressed to recipient_id."""
        raise NotImplementedError


class MessageRepositoryImpl(MessageRepository):
    """Message repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: Message) -> Message:
        model = MessageModel.from_entity(message)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_by_id(self, message_id: str) -> Optional[Message]:
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.id == message_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_for_trade(self, trade_id: str, limit: int = 200, offset: int = 0) -> List[Message]:
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.trade_id == trade_id)
            .order_by(MessageModel.created_at, MessageModel.id)
            .limit(limit)
            .offset(offset)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def list_conversation(self, user_id: str, other_id: str, limit: int = 200, offset: int = 0) -> List[Message]:
        result = await self.session.execute(
            select(MessageModel)
            .where(
                MessageModel.trade_id.is_(None),
                or_(
                    and_(MessageModel.sender_id == user_id, MessageModel.recipient_id == other_id),
                    and_(MessageModel.sender_id == other_id, MessageModel.recipient_id == user_id),
                ),
            )
            .order_by(MessageModel.created_at, MessageModel.id)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def mark_read(self, message_id: str, recipient_id: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(MessageModel)
            .where(
                MessageModel.id == message_id,
                MessageModel.recipient_id == recipient_id,
                MessageModel.read_at.is_(None),
            )
            .values(read_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
