"""Trade repository implementation."""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.types import utcnow
from digipay.domain.ledger.models import Direction, TransactionStatus, TransactionType
from digipay.domain.trades.models import Trade, TradeStatus
from digipay.infra.db.models.ledger import TransactionModel
from digipay.infra.db.models.trade import TradeModel


class TradeRepository:
    """Trade repository interface."""

    async def create(self, trade: Trade) -> Trade:
        """Create a trade."""
        raise NotImplementedError

    async def get_by_id(self, trade_id: str, for_update: bool = False) -> Optional[Trade]:
        """Get trade by ID."""
        raise NotImplementedError

    async def list_for_user(
        self, user_id: str, status: Optional[TradeStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Trade]:
        """Trades where the user is buyer or seller, newest first."""
        raise NotImplementedError

    async def list_by_status(self, statuses: Iterable[TradeStatus], limit: int = 100, offset: int = 0) -> List[Trade]:
        """Trades in any of the given statuses, oldest first."""
        raise NotImplementedError

    async def transition(
        self, trade_id: str, from_statuses: Iterable[TradeStatus], to_status: TradeStatus, **values
    ) -> bool:
        """Compare-and-set status (plus extra columns). False if the trade was not in from_statuses."""
        raise NotImplementedError

    async def update_fields(self, trade_id: str, **values) -> None:
        """Update non-status columns."""
        raise NotImplementedError

    async def list_overdue(self, now: datetime, limit: int = 100) -> List[Trade]:
        """payment_pending trades past their deadline and not yet flagged."""
        raise NotImplementedError

    async def flag_expired(self, trade_id: str, now: datetime) -> bool:
        """Set expired_at on an overdue payment_pending trade."""
        raise NotImplementedError

    async def list_settled_but_open(self, limit: int = 100) -> List[Trade]:
        """Trades whose release credit leg is booked but whose status never reached completed."""
        raise NotImplementedError


class TradeRepositoryImpl(TradeRepository):
    """Trade repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trade: Trade) -> Trade:
        model = TradeModel.from_entity(trade)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_by_id(self, trade_id: str, for_update: bool = False) -> Optional[Trade]:
        query = select(TradeModel).where(TradeModel.id == trade_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_for_user(
        self, user_id: str, status: Optional[TradeStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Trade]:
        query = select(TradeModel).where(
            or_(TradeModel.buyer_id == user_id, TradeModel.seller_id == user_id)
        )
        if status is not None:
            query = query.where(TradeModel.status == TradeStatus(status).value)
        query = (
            query.order_by(TradeModel.created_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [m.to_entity() for m in result.scalars().all()]

    async def list_by_status(self, statuses: Iterable[TradeStatus], limit: int = 100, offset: int = 0) -> List[Trade]:
        result = await self.session.execute(
            select(TradeModel)
            .where(TradeModel.status.in_([TradeStatus(s).value for s in statuses]))
            .order_by(TradeModel.updated_at)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def transition(
        self, trade_id: str, from_statuses: Iterable[TradeStatus], to_status: TradeStatus, **values
    ) -> bool:
        values["status"] = TradeStatus(to_status).value
        values.setdefault("updated_at", utcnow())
        result = await self.session.execute(
            update(TradeModel)
            .where(
                TradeModel.id == trade_id,
                TradeModel.status.in_([TradeStatus(s).value for s in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_fields(self, trade_id: str, **values) -> None:
        values.setdefault("updated_at", utcnow())
        await self.session.execute(
            update(TradeModel)
            .where(TradeModel.id == trade_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def list_overdue(self, now: datetime, limit: int = 100) -> List[Trade]:
        result = await self.session.execute(
            select(TradeModel)
            .where(
                TradeModel.status == TradeStatus.PAYMENT_PENDING.value,
                TradeModel.payment_deadline < now,
                TradeModel.expired_at.is_(None),
            )
            .order_by(TradeModel.payment_deadline)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def flag_expired(self, trade_id: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(TradeModel)
            .where(
                TradeModel.id == trade_id,
                TradeModel.status == TradeStatus.PAYMENT_PENDING.value,
                TradeModel.expired_at.is_(None),
            )
            .values(expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_settled_but_open(self, limit: int = 100) -> List[Trade]:
        settled = exists().where(
            TransactionModel.trade_id == TradeModel.id,
            TransactionModel.type == TransactionType.TRADE_SETTLEMENT.value,
            TransactionModel.direction == Direction.CREDIT.value,
            TransactionModel.status == TransactionStatus.COMPLETED.value,
        )
        result = await self.session.execute(
            select(TradeModel)
            .where(
                TradeModel.status.in_([TradeStatus.PAYMENT_MADE.value, TradeStatus.DISPUTED.value]),
                settled,
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]
