"""Ledger repository implementation.

The only module that writes users.fiat_balance / users.stable_balance.
Nothing here commits; callers run inside ``atomic(session)``.
"""
from datetime import datetime
from typing import Iterable, Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.money import Currency, amount_to_minor
from digipay.domain.ledger.models import Transaction, TransactionStatus, TransactionType
from digipay.infra.db.models.ledger import TransactionModel
from digipay.infra.db.models.user import UserModel, balance_column


class LedgerRepository:
    """Ledger repository interface."""

    async def lock_user(self, user_id: str) -> Optional[UserModel]:
        """Load a user row with a row-level lock."""
        raise NotImplementedError

    async def get_by_ref(self, tx_ref: str) -> Optional[Transaction]:
        """Get ledger entry by idempotency key."""
        raise NotImplementedError

    async def get_by_id(self, tx_id: str) -> Optional[Transaction]:
        """Get ledger entry by ID."""
        raise NotImplementedError

    async def add(self, tx: Transaction) -> Transaction:
        """Insert a ledger entry (flush only)."""
        raise NotImplementedError

    async def increment_balance(self, user_id: str, currency: Currency, amount_minor: int) -> bool:
        """balance += amount."""
        raise NotImplementedError

    async def decrement_balance(self, user_id: str, currency: Currency, amount_minor: int) -> bool:
        """balance -= amount only if balance >= amount. False when funds are short."""
        raise NotImplementedError

    async def get_balance_minor(self, user_id: str, currency: Currency) -> Optional[int]:
        """Current balance in minor units."""
        raise NotImplementedError

    async def settle_pending(self, tx_ref: str, amount_minor: int, now: datetime) -> bool:
        """Mark a pending, unapplied entry completed+applied. False if another writer got there first."""
        raise NotImplementedError

    async def update_status(
        self,
        tx_ref: str,
        status: TransactionStatus,
        from_statuses: Iterable[TransactionStatus],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set the entry status."""
        raise NotImplementedError

    async def list_by_user(
        self,
        user_id: str,
        currency: Optional[Currency] = None,
        tx_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        """List a user's entries, newest first."""
        raise NotImplementedError

    async def list_by_trade(self, trade_id: str) -> List[Transaction]:
        """List settlement entries for a trade."""
        raise NotImplementedError


class LedgerRepositoryImpl(LedgerRepository):
    """Ledger repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_user(self, user_id: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_ref(self, tx_ref: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.tx_ref == tx_ref)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_by_id(self, tx_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.id == tx_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def add(self, tx: Transaction) -> Transaction:
        model = TransactionModel(
            id=tx.id,
            user_id=tx.user_id,
            type=TransactionType(tx.type).value,
            direction=tx.direction.value,
            currency=Currency(tx.currency).value,
            amount_minor=amount_to_minor(tx.amount, tx.currency),
            status=TransactionStatus(tx.status).value,
            tx_ref=tx.tx_ref,
            trade_id=tx.trade_id,
            description=tx.description,
            tx_metadata=tx.metadata,
            notes=tx.notes,
            applied_at=tx.applied_at,
            created_at=tx.created_at,
            completed_at=tx.completed_at,
        )
        self.session.add(model)
        # Flush now so a duplicate tx_ref fails before any balance moves
        await self.session.flush()
        return model.to_entity()

    async def increment_balance(self, user_id: str, currency: Currency, amount_minor: int) -> bool:
        column = balance_column(currency)
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values({column: column + amount_minor})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def decrement_balance(self, user_id: str, currency: Currency, amount_minor: int) -> bool:
        column = balance_column(currency)
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id, column >= amount_minor)
            .values({column: column - amount_minor})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_balance_minor(self, user_id: str, currency: Currency) -> Optional[int]:
        result = await self.session.execute(
            select(balance_column(currency)).where(UserModel.id == user_id)
        )
        return result.scalar_one_or_none()

    async def settle_pending(self, tx_ref: str, amount_minor: int, now: datetime) -> bool:
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.tx_ref == tx_ref,
                TransactionModel.applied_at.is_(None),
                TransactionModel.status == TransactionStatus.PENDING.value,
            )
            .values(
                amount_minor=amount_minor,
                status=TransactionStatus.COMPLETED.value,
                applied_at=now,
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_status(
        self,
        tx_ref: str,
        status: TransactionStatus,
        from_statuses: Iterable[TransactionStatus],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        values = {"status": TransactionStatus(status).value}
        if notes is not None:
            values["notes"] = notes
        if now is not None:
            values["completed_at"] = now
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.tx_ref == tx_ref,
                TransactionModel.status.in_([TransactionStatus(s).value for s in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_user(
        self,
        user_id: str,
        currency: Optional[Currency] = None,
        tx_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        query = select(TransactionModel).where(TransactionModel.user_id == user_id)
        if currency is not None:
            query = query.where(TransactionModel.currency == Currency(currency).value)
        if tx_type is not None:
            query = query.where(TransactionModel.type == TransactionType(tx_type).value)
        if status is not None:
            query = query.where(TransactionModel.status == TransactionStatus(status).value)
        query = (
            query.order_by(TransactionModel.created_at.desc(), TransactionModel.id)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [m.to_entity() for m in result.scalars().all()]

    async def list_by_trade(self, trade_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.trade_id == trade_id)
            .order_by(TransactionModel.created_at)
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]
