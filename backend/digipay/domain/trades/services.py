"""Trade domain services: the trade lifecycle and settlement."""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import (
    AlreadyDisputedError,
    AmountOutOfRangeError,
    AuthorizationError,
    DeadlineExpiredError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    OfferNotActiveError,
    SelfTradeError,
    ValidationError,
)
from digipay.domain.common.money import (
    AmountLike,
    Currency,
    amount_from_minor,
    amount_to_minor,
    fiat_amount_minor,
    rate_to_minor,
    to_decimal,
)
from digipay.domain.common.types import generate_id, utcnow
from digipay.domain.ledger.models import TransactionType
from digipay.domain.ledger.services import LedgerService
from digipay.domain.messaging.services import MessagingService, TradeEventPublisher, publish_trade_event
from digipay.domain.offers.models import OfferSide
from digipay.domain.trades.models import (
    CANCELLABLE_STATUSES,
    DISPUTABLE_STATUSES,
    DisputeCategory,
    Resolution,
    Trade,
    TradeStatus,
)
from digipay.domain.users.models import User
from digipay.domain.users.services import UserRepository
from digipay.infra.db.repositories.offer_repo import OfferRepository
from digipay.infra.db.repositories.trade_repo import TradeRepository
from digipay.infra.db.transaction import atomic
from digipay.settings import settings

logger = logging.getLogger(__name__)


def settlement_ref(trade_id: str) -> str:
    """Deterministic ledger key for a trade's release transfer."""
    return f"trade:{trade_id}:release"


class TradeService:
    """Trade state machine.

    pending -> payment_pending -> payment_made -> completed
    payment_pending | payment_made -> disputed -> completed | cancelled
    pending | payment_pending -> cancelled
    """

    def __init__(
        self,
        repo: TradeRepository,
        offer_repo: OfferRepository,
        user_repo: UserRepository,
        ledger: LedgerService,
        db: AsyncSession,
        messages: Optional[MessagingService] = None,
        events: Optional[TradeEventPublisher] = None,
    ):
        self.repo = repo
        self.offer_repo = offer_repo
        self.user_repo = user_repo
        self.ledger = ledger
        self.db = db
        self.messages = messages
        self.events = events

    async def load_user(self, user_id: str) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def load_trade(self, trade_id: str, for_update: bool = False) -> Trade:
        trade = await self.repo.get_by_id(trade_id, for_update=for_update)
        if trade is None:
            raise NotFoundError("Trade", trade_id)
        return trade

    async def notify(self, trade_id: str, body: str) -> None:
        if self.messages is not None:
            await self.messages.post_system_message(trade_id, body)

    async def create_trade(self, offer_id: str, taker_id: str, amount: AmountLike) -> Trade:
        """Open a trade against an offer; the offer's remaining amount is taken in the same unit."""
        amount = to_decimal(amount)
        amount_minor = amount_to_minor(amount, Currency.USDT)
        if amount_minor <= 0:
            raise InvalidAmountError("amount must be positive")

        async with atomic(self.db):
            offer = await self.offer_repo.get_by_id(offer_id, for_update=True)
            if offer is None:
                raise NotFoundError("Offer", offer_id)
            if not offer.is_available:
                raise OfferNotActiveError(offer_id)
            if taker_id == offer.owner_id:
                raise SelfTradeError()
            taker = await self.load_user(taker_id)
            owner = await self.load_user(offer.owner_id)
            if taker.is_banned:
                raise AuthorizationError("Banned users cannot trade")
            if owner.is_banned:
                raise OfferNotActiveError(offer_id)
            if offer.min_amount is not None and amount < offer.min_amount:
                raise AmountOutOfRangeError(f"Minimum trade amount is {offer.min_amount}")
            if offer.max_amount is not None and amount > offer.max_amount:
                raise AmountOutOfRangeError(f"Maximum trade amount is {offer.max_amount}")
            if amount > offer.remaining_amount:
                raise AmountOutOfRangeError(f"Only {offer.remaining_amount} remaining on this offer")

            if offer.side == OfferSide.SELL:
                seller, buyer = owner, taker
            else:
                seller, buyer = taker, owner

            fiat_amount = amount_from_minor(
                fiat_amount_minor(amount_minor, rate_to_minor(offer.rate)), Currency.NGN
            )
            if fiat_amount > settings.kyc_unverified_trade_limit and not (
                buyer.kyc_verified and seller.kyc_verified
            ):
                raise AuthorizationError(
                    f"KYC verification required for trades above {settings.kyc_unverified_trade_limit} NGN"
                )
            if seller.id == taker_id and taker.stable_balance < amount:
                raise InsufficientFundsError(
                    Currency.USDT.value, required=amount, available=taker.stable_balance
                )

            if not await self.offer_repo.consume(offer_id, amount_minor):
                logger.warning(f"⚠️ [TRADES] Offer {offer_id} changed while opening trade for {taker_id}")
                raise AmountOutOfRangeError("Offer no longer has enough remaining")

            now = utcnow()
            trade = await self.repo.create(
                Trade(
                    id=generate_id(),
                    offer_id=offer_id,
                    buyer_id=buyer.id,
                    seller_id=seller.id,
                    amount=amount_from_minor(amount_minor, Currency.USDT),
                    rate=offer.rate,
                    fiat_amount=fiat_amount,
                    payment_method=offer.payment_method,
                    status=TradeStatus.PAYMENT_PENDING,
                    payment_deadline=now + timedelta(minutes=offer.time_limit_minutes),
                    created_at=now,
                    updated_at=now,
                )
            )
            await self.notify(
                trade.id,
                f"Trade opened: {trade.amount} USDT at {trade.rate} NGN ({trade.fiat_amount} NGN). "
                f"Buyer must pay within {offer.time_limit_minutes} minutes.",
            )
        logger.info(
            f"✅ [TRADES] Trade {trade.id} opened on offer {offer_id}: buyer={buyer.id} seller={seller.id} "
            f"amount={trade.amount} fiat={trade.fiat_amount}"
        )
        await publish_trade_event(self.events, "trade.created", trade)
        return trade

    async def confirm_payment(
        self, trade_id: str, caller_id: str, payment_reference: Optional[str] = None
    ) -> Trade:
        """Buyer marks the off-platform fiat payment as sent."""
        async with atomic(self.db):
            trade = await self.load_trade(trade_id, for_update=True)
            if caller_id != trade.buyer_id:
                raise AuthorizationError("Only the buyer can confirm payment")
            if trade.status != TradeStatus.PAYMENT_PENDING:
                raise InvalidStateError(f"Cannot confirm payment on a {trade.status.value} trade")
            now = utcnow()
            if now > trade.payment_deadline:
                raise DeadlineExpiredError(trade_id)
            if not await self.repo.transition(
                trade_id,
                [TradeStatus.PAYMENT_PENDING],
                TradeStatus.PAYMENT_MADE,
                payment_confirmed_at=now,
                payment_reference=payment_reference,
            ):
                raise InvalidStateError("Trade status changed concurrently")
            await self.notify(trade_id, "Buyer marked the payment as sent. Seller: confirm receipt and release.")
            trade = await self.load_trade(trade_id)
        logger.info(f"💸 [TRADES] Trade {trade_id}: buyer {caller_id} confirmed payment")
        await publish_trade_event(self.events, "trade.payment_made", trade)
        return trade

    async def settle(self, trade: Trade, from_statuses: Iterable[TradeStatus], **values) -> Trade:
        """Compare-and-set to completed and move the stablecoin seller -> buyer, as one unit.

        Called inside the caller's atomic block; any ledger failure rolls the status back.
        """
        now = utcnow()
        async with atomic(self.db):
            if not await self.repo.transition(
                trade.id, list(from_statuses), TradeStatus.COMPLETED, completed_at=now, **values
            ):
                logger.warning(f"⚠️ [TRADES] Settlement of trade {trade.id} lost the race (second release?)")
                raise InvalidStateError(f"Trade {trade.id} is no longer releasable")
            await self.ledger.transfer(
                trade.seller_id,
                trade.buyer_id,
                Currency.USDT,
                trade.amount,
                settlement_ref(trade.id),
                TransactionType.TRADE_SETTLEMENT,
                description=f"Trade {trade.id} settlement",
                trade_id=trade.id,
            )
            return await self.load_trade(trade.id)

    async def release_funds(self, trade_id: str, caller_id: str) -> Trade:
        """Seller confirms fiat received; stablecoin moves to the buyer."""
        async with atomic(self.db):
            trade = await self.load_trade(trade_id, for_update=True)
            if caller_id != trade.seller_id:
                raise AuthorizationError("Only the seller can release funds")
            if trade.status != TradeStatus.PAYMENT_MADE:
                logger.warning(f"⚠️ [TRADES] Release refused for trade {trade_id} in status {trade.status.value}")
                raise InvalidStateError(f"Cannot release funds on a {trade.status.value} trade")
            trade = await self.settle(trade, [TradeStatus.PAYMENT_MADE])
            await self.notify(trade_id, "Seller released the funds. Trade completed.")
        logger.info(
            f"✅ [TRADES] Trade {trade_id} completed: {trade.amount} USDT {trade.seller_id} -> {trade.buyer_id}"
        )
        await publish_trade_event(self.events, "trade.completed", trade)
        return trade

    async def cancel_trade(self, trade_id: str, caller_id: str, reason: Optional[str] = None) -> Trade:
        """Cancel before payment is marked; the offer gets its amount back."""
        async with atomic(self.db):
            trade = await self.load_trade(trade_id, for_update=True)
            if not trade.is_participant(caller_id):
                caller = await self.load_user(caller_id)
                if not caller.is_admin:
                    raise AuthorizationError("Not a participant in this trade")
            if trade.status not in CANCELLABLE_STATUSES:
                raise InvalidStateError(f"Cannot cancel a {trade.status.value} trade")
            trade = await self.cancel_and_restore(trade, caller_id, reason, CANCELLABLE_STATUSES)
            await self.notify(trade_id, f"Trade cancelled{': ' + reason if reason else '.'}")
        logger.info(f"🚫 [TRADES] Trade {trade_id} cancelled by {caller_id}")
        await publish_trade_event(self.events, "trade.cancelled", trade)
        return trade

    async def cancel_and_restore(
        self,
        trade: Trade,
        cancelled_by: Optional[str],
        reason: Optional[str],
        from_statuses: Iterable[TradeStatus],
        **values,
    ) -> Trade:
        now = utcnow()
        async with atomic(self.db):
            if not await self.repo.transition(
                trade.id,
                list(from_statuses),
                TradeStatus.CANCELLED,
                cancelled_at=now,
                cancelled_by=cancelled_by,
                cancel_reason=reason,
                **values,
            ):
                raise InvalidStateError(f"Trade {trade.id} status changed concurrently")
            restored = await self.offer_repo.restore(
                trade.offer_id, amount_to_minor(trade.amount, Currency.USDT)
            )
            if not restored:
                logger.error(f"❌ [TRADES] Could not restore {trade.amount} to offer {trade.offer_id} (trade {trade.id})")
                raise InvalidStateError(f"Could not restore {trade.amount} to offer {trade.offer_id}")
            return await self.load_trade(trade.id)

    async def raise_dispute(
        self,
        trade_id: str,
        caller_id: str,
        category: DisputeCategory,
        reason: str,
        evidence_refs: Optional[List[str]] = None,
    ) -> Trade:
        """Either party escalates to an admin."""
        try:
            category = DisputeCategory(category)
        except ValueError:
            raise ValidationError(f"Unknown dispute category: {category}")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A dispute reason is required")
        evidence = [str(ref) for ref in (evidence_refs or [])]
        if len(evidence) > settings.max_dispute_evidence:
            raise ValidationError(f"At most {settings.max_dispute_evidence} evidence items allowed")

        async with atomic(self.db):
            trade = await self.load_trade(trade_id, for_update=True)
            if not trade.is_participant(caller_id):
                raise AuthorizationError("Not a participant in this trade")
            if trade.status == TradeStatus.DISPUTED:
                raise AlreadyDisputedError(trade_id)
            if trade.status not in DISPUTABLE_STATUSES:
                raise InvalidStateError(f"Cannot dispute a {trade.status.value} trade")
            if not await self.repo.transition(
                trade_id,
                DISPUTABLE_STATUSES,
                TradeStatus.DISPUTED,
                dispute_category=category.value,
                dispute_reason=reason,
                dispute_raised_by=caller_id,
                dispute_evidence=evidence,
                disputed_at=utcnow(),
            ):
                current = await self.load_trade(trade_id)
                if current.status == TradeStatus.DISPUTED:
                    raise AlreadyDisputedError(trade_id)
                raise InvalidStateError(f"Cannot dispute a {current.status.value} trade")
            role = "buyer" if caller_id == trade.buyer_id else "seller"
            await self.notify(
                trade_id,
                f"The {role} opened a dispute ({category.value}). An admin will review this trade.",
            )
            trade = await self.load_trade(trade_id)
        logger.info(f"⚖️ [TRADES] Trade {trade_id} disputed by {caller_id}: {category.value}")
        await publish_trade_event(self.events, "trade.disputed", trade)
        return trade

    async def get_trade(self, trade_id: str, viewer_id: str) -> Trade:
        trade = await self.load_trade(trade_id)
        if not trade.is_participant(viewer_id):
            viewer = await self.load_user(viewer_id)
            if not viewer.is_admin:
                raise AuthorizationError("Not a participant in this trade")
        return trade

    async def list_trades(
        self, user_id: str, status: Optional[TradeStatus] = None, limit: int = 50, offset: int = 0
    ) -> List[Trade]:
        return await self.repo.list_for_user(user_id, status, limit, offset)

    async def list_disputes(self, admin_id: str, limit: int = 100, offset: int = 0) -> List[Trade]:
        admin = await self.load_user(admin_id)
        if not admin.is_admin:
            raise AuthorizationError("Admin access required")
        return await self.repo.list_by_status([TradeStatus.DISPUTED], limit, offset)

    async def sweep_expired_trades(self, now: Optional[datetime] = None) -> List[str]:
        """Flag (or, with trade_expiry_auto_cancel, cancel) payment_pending trades past their deadline."""
        now = now or utcnow()
        processed = []
        for trade in await self.repo.list_overdue(now):
            if settings.trade_expiry_auto_cancel:
                try:
                    async with atomic(self.db):
                        cancelled = await self.cancel_and_restore(
                            trade,
                            None,
                            "Payment deadline expired",
                            [TradeStatus.PAYMENT_PENDING],
                            expired_at=now,
                        )
                        await self.notify(trade.id, "Payment deadline passed. Trade cancelled automatically.")
                except InvalidStateError:
                    logger.info(f"[SWEEP] Trade {trade.id} moved on before it could be cancelled")
                    continue
                await publish_trade_event(self.events, "trade.cancelled", cancelled)
            else:
                async with atomic(self.db):
                    if not await self.repo.flag_expired(trade.id, now):
                        continue
                    await self.notify(
                        trade.id,
                        "Payment deadline passed. The trade can now be cancelled or disputed.",
                    )
            processed.append(trade.id)
        if processed:
            logger.info(f"⏰ [SWEEP] {len(processed)} overdue trade(s) processed (auto_cancel={settings.trade_expiry_auto_cancel})")
        return processed

    async def reconcile_settlements(self) -> List[str]:
        """Complete trades whose settlement transfer is booked but whose status never advanced."""
        completed = []
        for trade in await self.repo.list_settled_but_open():
            credit = await self.ledger.get_transaction_by_ref(f"{settlement_ref(trade.id)}:credit")
            if credit is None:
                continue
            now = utcnow()
            values = {"completed_at": now}
            if trade.status == TradeStatus.DISPUTED:
                values.update(resolution=Resolution.RELEASE.value, resolved_at=now)
            async with atomic(self.db):
                moved = await self.repo.transition(
                    trade.id, [TradeStatus.PAYMENT_MADE, TradeStatus.DISPUTED], TradeStatus.COMPLETED, **values
                )
            if moved:
                logger.warning(f"⚠️ [RECONCILE] Trade {trade.id} had a booked settlement; marked completed")
                completed.append(trade.id)
        return completed
