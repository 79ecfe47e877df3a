"""Ledger domain services.

Every balance mutation in the system goes through LedgerService: one ledger
row per mutation, idempotent on tx_ref, balances never negative.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from digipay.domain.common.money import AmountLike, Currency, amount_from_minor, amount_to_minor
from digipay.domain.common.types import generate_id, utcnow
from digipay.domain.ledger.models import (
    Direction,
    Posting,
    Transaction,
    TransactionStatus,
    TransactionType,
    Transfer,
)
from digipay.infra.db.repositories.ledger_repo import LedgerRepository
from digipay.infra.db.transaction import atomic

logger = logging.getLogger(__name__)


class LedgerService:
    """Balance store and ledger."""

    def __init__(self, repo: LedgerRepository, db: AsyncSession):
        self.repo = repo
        self.db = db

    @staticmethod
    def _minor(amount: AmountLike, currency: Currency) -> int:
        minor = amount_to_minor(amount, currency)
        if minor <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {amount}")
        return minor

    async def _lock_user(self, user_id: str):
        user = await self.repo.lock_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def credit(
        self,
        user_id: str,
        currency: Currency,
        amount: AmountLike,
        tx_ref: str,
        tx_type: TransactionType,
        description: Optional[str] = None,
        trade_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Posting:
        """Credit a balance once per tx_ref.

        A repeated tx_ref returns the existing entry with applied=False. A pending
        entry with that ref (e.g. a deposit awaiting confirmation) is settled
        exactly once.
        """
        currency = Currency(currency)
        minor = self._minor(amount, currency)
        async with atomic(self.db):
            await self._lock_user(user_id)
            existing = await self.repo.get_by_ref(tx_ref)
            now = utcnow()
            if existing is not None:
                if existing.status != TransactionStatus.PENDING or existing.applied_at is not None:
                    logger.warning(f"⚠️ [LEDGER] Duplicate credit ignored: tx_ref={tx_ref} status={existing.status.value}")
                    return Posting(existing, False)
                if (
                    existing.user_id != user_id
                    or existing.currency != currency
                    or existing.direction != Direction.CREDIT
                ):
                    raise ConflictError(f"tx_ref {tx_ref} belongs to a different ledger entry")
                if not await self.repo.settle_pending(tx_ref, minor, now):
                    logger.warning(f"⚠️ [LEDGER] Pending entry already settled: tx_ref={tx_ref}")
                    return Posting(await self.repo.get_by_ref(tx_ref), False)
                await self.repo.increment_balance(user_id, currency, minor)
                logger.info(f"✅ [LEDGER] Settled pending credit {tx_ref}: user={user_id} +{amount} {currency.value}")
                return Posting(await self.repo.get_by_ref(tx_ref), True)

            tx = await self.repo.add(
                Transaction(
                    id=generate_id(),
                    user_id=user_id,
                    type=TransactionType(tx_type),
                    direction=Direction.CREDIT,
                    currency=currency,
                    amount=amount_from_minor(minor, currency),
                    status=TransactionStatus.COMPLETED,
                    tx_ref=tx_ref,
                    trade_id=trade_id,
                    description=description,
                    metadata=metadata,
                    notes=None,
                    applied_at=now,
                    created_at=now,
                    completed_at=now,
                )
            )
            await self.repo.increment_balance(user_id, currency, minor)
            logger.info(f"✅ [LEDGER] Credit {tx_ref}: user={user_id} +{tx.amount} {currency.value} ({tx.type.value})")
            return Posting(tx, True)

    async def debit(
        self,
        user_id: str,
        currency: Currency,
        amount: AmountLike,
        tx_ref: str,
        tx_type: TransactionType,
        description: Optional[str] = None,
        trade_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        enforce_freeze: bool = True,
    ) -> Posting:
        """Debit a balance once per tx_ref; never below zero.

        status=pending records an outgoing operation (withdrawal) whose funds are
        already taken but whose external leg is not done yet.
        """
        currency = Currency(currency)
        minor = self._minor(amount, currency)
        async with atomic(self.db):
            user = await self._lock_user(user_id)
            existing = await self.repo.get_by_ref(tx_ref)
            if existing is not None:
                logger.warning(f"⚠️ [LEDGER] Duplicate debit ignored: tx_ref={tx_ref}")
                return Posting(existing, False)
            if enforce_freeze and user.funds_frozen:
                logger.warning(f"⚠️ [LEDGER] Debit refused, funds frozen: user={user_id} tx_ref={tx_ref}")
                raise AuthorizationError("Funds are frozen for this account")

            if not await self.repo.decrement_balance(user_id, currency, minor):
                available = await self.repo.get_balance_minor(user_id, currency) or 0
                raise InsufficientFundsError(
                    currency.value,
                    required=amount_from_minor(minor, currency),
                    available=amount_from_minor(available, currency),
                )

            now = utcnow()
            tx = await self.repo.add(
                Transaction(
                    id=generate_id(),
                    user_id=user_id,
                    type=TransactionType(tx_type),
                    direction=Direction.DEBIT,
                    currency=currency,
                    amount=amount_from_minor(minor, currency),
                    status=TransactionStatus(status),
                    tx_ref=tx_ref,
                    trade_id=trade_id,
                    description=description,
                    metadata=metadata,
                    notes=None,
                    applied_at=now,
                    created_at=now,
                    completed_at=now if status == TransactionStatus.COMPLETED else None,
                )
            )
            logger.info(f"✅ [LEDGER] Debit {tx_ref}: user={user_id} -{tx.amount} {currency.value} ({tx.type.value})")
            return Posting(tx, True)

    async def transfer(
        self,
        from_user_id: str,
        to_user_id: str,
        currency: Currency,
        amount: AmountLike,
        tx_ref: str,
        tx_type: TransactionType,
        description: Optional[str] = None,
        trade_id: Optional[str] = None,
    ) -> Transfer:
        """Move funds between two users; both legs or neither."""
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer to the same user")
        async with atomic(self.db):
            # Fixed lock order avoids deadlocks between opposite transfers
            for user_id in sorted((from_user_id, to_user_id)):
                await self._lock_user(user_id)
            debit = await self.debit(
                from_user_id, currency, amount, f"{tx_ref}:debit", tx_type,
                description=description, trade_id=trade_id,
            )
            credit = await self.credit(
                to_user_id, currency, amount, f"{tx_ref}:credit", tx_type,
                description=description, trade_id=trade_id,
            )
            return Transfer(debit, credit)

    async def open_pending(
        self,
        user_id: str,
        currency: Currency,
        amount: AmountLike,
        tx_ref: str,
        tx_type: TransactionType,
        direction: Direction = Direction.CREDIT,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        """Record a pending entry with no balance effect (settled later by credit())."""
        currency = Currency(currency)
        minor = self._minor(amount, currency)
        async with atomic(self.db):
            await self._lock_user(user_id)
            if await self.repo.get_by_ref(tx_ref) is not None:
                raise ConflictError(f"tx_ref {tx_ref} already exists")
            now = utcnow()
            tx = await self.repo.add(
                Transaction(
                    id=generate_id(),
                    user_id=user_id,
                    type=TransactionType(tx_type),
                    direction=Direction(direction),
                    currency=currency,
                    amount=amount_from_minor(minor, currency),
                    status=TransactionStatus.PENDING,
                    tx_ref=tx_ref,
                    trade_id=None,
                    description=description,
                    metadata=metadata,
                    notes=None,
                    applied_at=None,
                    created_at=now,
                    completed_at=None,
                )
            )
            logger.info(f"🕒 [LEDGER] Pending {tx.type.value} {tx_ref}: user={user_id} {tx.amount} {currency.value}")
            return tx

    async def mark_status(
        self,
        tx_ref: str,
        status: TransactionStatus,
        notes: Optional[str] = None,
        from_statuses=(TransactionStatus.PENDING,),
    ) -> Transaction:
        """Move an entry through its pending lifecycle (failed, approved, rejected, completed)."""
        async with atomic(self.db):
            tx = await self.repo.get_by_ref(tx_ref)
            if tx is None:
                raise NotFoundError("Transaction", tx_ref)
            if tx.status not in from_statuses:
                raise InvalidStateError(
                    f"Transaction {tx_ref} is {tx.status.value}; cannot mark {TransactionStatus(status).value}"
                )
            terminal = status in (
                TransactionStatus.COMPLETED,
                TransactionStatus.FAILED,
                TransactionStatus.REJECTED,
            )
            if not await self.repo.update_status(
                tx_ref, status, from_statuses, notes=notes, now=utcnow() if terminal else None
            ):
                raise InvalidStateError(f"Transaction {tx_ref} was changed concurrently")
            logger.info(f"📝 [LEDGER] {tx_ref}: {tx.status.value} -> {TransactionStatus(status).value}")
            return await self.repo.get_by_ref(tx_ref)

    async def get_balance(self, user_id: str, currency: Currency) -> Decimal:
        currency = Currency(currency)
        minor = await self.repo.get_balance_minor(user_id, currency)
        if minor is None:
            raise NotFoundError("User", user_id)
        return amount_from_minor(minor, currency)

    async def get_balances(self, user_id: str) -> Dict[Currency, Decimal]:
        return {currency: await self.get_balance(user_id, currency) for currency in Currency}

    async def list_transactions(
        self,
        user_id: str,
        currency: Optional[Currency] = None,
        tx_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        return await self.repo.list_by_user(user_id, currency, tx_type, status, limit, offset)

    async def get_transaction_by_ref(self, tx_ref: str) -> Optional[Transaction]:
        return await self.repo.get_by_ref(tx_ref)

    async def get_transaction(self, tx_id: str) -> Optional[Transaction]:
        return await self.repo.get_by_id(tx_id)
