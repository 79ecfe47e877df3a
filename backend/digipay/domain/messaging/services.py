"""Messaging domain services: trade chat, direct messages, trade event fan-out."""
import logging
from typing import List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import AuthorizationError, NotFoundError, ValidationError
from digipay.domain.common.types import generate_id, utcnow
from digipay.domain.messaging.models import Message
from digipay.domain.trades.models import Trade, TradeStatus
from digipay.domain.users.services import UserRepository
from digipay.infra.db.repositories.message_repo import MessageRepository
from digipay.infra.db.repositories.trade_repo import TradeRepository
from digipay.infra.db.transaction import atomic

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class TradeEventPublisher(Protocol):
    """Real-time side channel for trade events (delivery is best effort)."""

    async def publish(self, user_id: str, event: dict) -> None:
        """Push an event to one user."""
        ...


async def publish_trade_event(publisher: Optional[TradeEventPublisher], event_type: str, trade: Trade) -> None:
    """Send a trade event to both participants. Call after commit; never raises."""
    if publisher is None:
        return
    event = {
        "type": event_type,
        "trade_id": trade.id,
        "status": trade.status.value,
        "offer_id": trade.offer_id,
    }
    for user_id in (trade.buyer_id, trade.seller_id):
        try:
            await publisher.publish(user_id, event)
        except Exception as e:
            logger.error(
                f"❌ [EVENTS] Failed to publish {event_type} for trade {trade.id} to {user_id}: {e}",
                exc_info=True,
            )


def _clean_body(body: str) -> str:
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message cannot be empty")
    if len(body) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
    return body


class MessagingService:
    """Trade chat and direct messages."""

    def __init__(
        self,
        repo: MessageRepository,
        trade_repo: TradeRepository,
        user_repo: UserRepository,
        db: AsyncSession,
    ):
        self.repo = repo
        self.trade_repo = trade_repo
        self.user_repo = user_repo
        self.db = db

    async def _trade_for(self, trade_id: str, user_id: str, writing: bool) -> Trade:
        trade = await self.trade_repo.get_by_id(trade_id)
        if trade is None:
            raise NotFoundError("Trade", trade_id)
        if trade.is_participant(user_id):
            return trade
        user = await self.user_repo.get_by_id(user_id)
        if user is not None and user.is_admin and (not writing or trade.status == TradeStatus.DISPUTED):
            return trade
        raise AuthorizationError("Not a participant in this trade")

    async def send_trade_message(self, trade_id: str, sender_id: str, body: str) -> Message:
        """Post to a trade chat (participants; admins while the trade is disputed)."""
        body = _clean_body(body)
        await self._trade_for(trade_id, sender_id, writing=True)
        message = Message(
            id=generate_id(),
            trade_id=trade_id,
            sender_id=sender_id,
            recipient_id=None,
            body=body,
            is_system=False,
            read_at=None,
            created_at=utcnow(),
        )
        async with atomic(self.db):
            created = await self.repo.create(message)
        logger.info(f"💬 [CHAT] {sender_id} -> trade {trade_id} ({len(body)} chars)")
        return created

    async def list_trade_messages(self, trade_id: str, viewer_id: str) -> List[Message]:
        await self._trade_for(trade_id, viewer_id, writing=False)
        return await self.repo.list_for_trade(trade_id)

    async def post_system_message(self, trade_id: str, body: str) -> Message:
        """System notice in the trade chat; joins the caller's atomic block."""
        message = Message(
            id=generate_id(),
            trade_id=trade_id,
            sender_id=None,
            recipient_id=None,
            body=body,
            is_system=True,
            read_at=None,
            created_at=utcnow(),
        )
        async with atomic(self.db):
            return await self.repo.create(message)

    async def send_direct_message(self, sender_id: str, recipient_id: str, body: str) -> Message:
        body = _clean_body(body)
        if sender_id == recipient_id:
            raise ValidationError("Cannot message yourself")
        if await self.user_repo.get_by_id(recipient_id) is None:
            raise NotFoundError("User", recipient_id)
        message = Message(
            id=generate_id(),
            trade_id=None,
            sender_id=sender_id,
            recipient_id=recipient_id,
            body=body,
            is_system=False,
            read_at=None,
            created_at=utcnow(),
        )
        async with atomic(self.db):
            created = await self.repo.create(message)
        logger.info(f"💬 [DM] {sender_id} -> {recipient_id}")
        return created

    async def list_conversation(self, user_id: str, other_id: str) -> List[Message]:
        return await self.repo.list_conversation(user_id, other_id)

    async def mark_read(self, message_id: str, user_id: str) -> Message:
        message = await self.repo.get_by_id(message_id)
        if message is None:
            raise NotFoundError("Message", message_id)
        if message.recipient_id != user_id:
            raise AuthorizationError("Only the recipient can mark a message read")
        if message.read_at is None:
            async with atomic(self.db):
                await self.repo.mark_read(message_id, user_id, utcnow())
            message = await self.repo.get_by_id(message_id)
        return message
