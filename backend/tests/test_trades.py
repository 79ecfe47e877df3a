"""Tests for the trade state machine."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from digipay.domain.common.errors import (
    AlreadyDisputedError,
    AmountOutOfRangeError,
    AuthorizationError,
    DeadlineExpiredError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    OfferNotActiveError,
    SelfTradeError,
    ValidationError,
)
from digipay.domain.common.money import Currency
from digipay.domain.common.types import utcnow
from digipay.domain.ledger.models import TransactionType
from digipay.domain.offers.models import OfferSide, OfferStatus
from digipay.domain.trades.models import DisputeCategory, Trade, TradeStatus
from digipay.domain.trades.services import settlement_ref
from digipay.infra.db.base import Base


async def _open_trade(services, seeder, sell_offer, amount="40"):
    buyer = await seeder.user("buyer")
    trade = await services.trades.create_trade(sell_offer.offer.id, buyer.id, amount)
    return buyer, trade


async def test_sell_offer_happy_path(services, seeder, sell_offer, publisher):
    seller = sell_offer.seller
    buyer, trade = await _open_trade(services, seeder, sell_offer)

    assert trade.status == TradeStatus.PAYMENT_PENDING
    assert trade.buyer_id == buyer.id
    assert trade.seller_id == seller.id
    assert trade.fiat_amount == Decimal("40000.00")
    assert trade.payment_deadline > trade.created_at
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.remaining_amount == Decimal("60")

    trade = await services.trades.confirm_payment(trade.id, buyer.id, payment_reference="GTB-0001")
    assert trade.status == TradeStatus.PAYMENT_MADE
    assert trade.payment_reference == "GTB-0001"
    assert trade.payment_confirmed_at is not None

    trade = await services.trades.release_funds(trade.id, seller.id)
    assert trade.status == TradeStatus.COMPLETED
    assert trade.completed_at is not None
    assert await services.ledger.get_balance(buyer.id, Currency.USDT) == Decimal("40")
    assert await services.ledger.get_balance(seller.id, Currency.USDT) == Decimal("60")

    credit = await services.ledger.get_transaction_by_ref(f"{settlement_ref(trade.id)}:credit")
    assert credit.trade_id == trade.id
    assert credit.type == TransactionType.TRADE_SETTLEMENT

    assert publisher.types() == [
        "trade.created", "trade.created",
        "trade.payment_made", "trade.payment_made",
        "trade.completed", "trade.completed",
    ]
    assert {user_id for user_id, _ in publisher.events} == {buyer.id, seller.id}


async def test_trade_chat_gets_system_notices(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)
    messages = await services.messaging.list_trade_messages(trade.id, buyer.id)
    assert len(messages) == 2
    assert all(m.is_system for m in messages)
    assert "40000.00 NGN" in messages[0].body


async def test_fiat_amount_is_snapshotted(services, seeder, sell_offer):
    _, trade = await _open_trade(services, seeder, sell_offer)
    await services.offers.update_offer(sell_offer.offer.id, sell_offer.seller.id, rate="1500")

    stored = await services.trades.get_trade(trade.id, sell_offer.seller.id)
    assert stored.rate == Decimal("1000")
    assert stored.fiat_amount == Decimal("40000.00")


async def test_taking_a_buy_offer_makes_the_taker_seller(services, seeder, bank_transfer):
    bidder = await seeder.user("bidder")
    offer = await services.offers.create_offer(bidder.id, OfferSide.BUY, "50", "1000", bank_transfer)
    poor = await seeder.user("poor", usdt="5")
    with pytest.raises(InsufficientFundsError):
        await services.trades.create_trade(offer.id, poor.id, "10")

    taker = await seeder.user("taker", usdt="10")
    trade = await services.trades.create_trade(offer.id, taker.id, "10")
    assert trade.seller_id == taker.id
    assert trade.buyer_id == bidder.id


async def test_taking_the_whole_offer_completes_it(services, seeder, sell_offer):
    await _open_trade(services, seeder, sell_offer, amount="100")
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.status == OfferStatus.COMPLETED
    other = await seeder.user("late")
    with pytest.raises(OfferNotActiveError):
        await services.trades.create_trade(offer.id, other.id, "1")


async def test_create_trade_guards(services, seeder, sell_offer):
    buyer = await seeder.user("buyer")
    offer_id = sell_offer.offer.id

    with pytest.raises(SelfTradeError):
        await services.trades.create_trade(offer_id, sell_offer.seller.id, "1")
    with pytest.raises(AmountOutOfRangeError):
        await services.trades.create_trade(offer_id, buyer.id, "100.00000001")
    with pytest.raises(InvalidAmountError):
        await services.trades.create_trade(offer_id, buyer.id, "0")

    await services.offers.set_status(offer_id, sell_offer.seller.id, OfferStatus.PAUSED)
    with pytest.raises(OfferNotActiveError):
        await services.trades.create_trade(offer_id, buyer.id, "1")


async def test_create_trade_respects_offer_bounds(services, seeder, bank_transfer):
    seller = await seeder.user("seller", usdt="100")
    buyer = await seeder.user("buyer")
    offer = await services.offers.create_offer(
        seller.id, OfferSide.SELL, "100", "1000", bank_transfer, min_amount="10", max_amount="50"
    )
    with pytest.raises(AmountOutOfRangeError):
        await services.trades.create_trade(offer.id, buyer.id, "9.99")
    with pytest.raises(AmountOutOfRangeError):
        await services.trades.create_trade(offer.id, buyer.id, "50.01")
    trade = await services.trades.create_trade(offer.id, buyer.id, "50")
    assert trade.amount == Decimal("50")


async def test_banned_parties_cannot_trade(services, seeder, sell_offer):
    buyer = await seeder.user("buyer")
    await services.user_repo.set_flags(buyer.id, is_banned=True)
    await services.session.commit()
    with pytest.raises(AuthorizationError):
        await services.trades.create_trade(sell_offer.offer.id, buyer.id, "1")

    clean = await seeder.user("clean")
    await services.user_repo.set_flags(sell_offer.seller.id, is_banned=True)
    await services.session.commit()
    with pytest.raises(OfferNotActiveError):
        await services.trades.create_trade(sell_offer.offer.id, clean.id, "1")


async def test_large_trades_need_kyc_on_both_sides(services, seeder, bank_transfer):
    seller = await seeder.user("seller", usdt="100", kyc=True)
    offer = await services.offers.create_offer(seller.id, OfferSide.SELL, "100", "2000", bank_transfer)
    unverified = await seeder.user("anon")
    with pytest.raises(AuthorizationError):
        await services.trades.create_trade(offer.id, unverified.id, "60")
    # Small trades go through without KYC
    small = await services.trades.create_trade(offer.id, unverified.id, "10")
    assert small.fiat_amount == Decimal("20000.00")

    verified = await seeder.user("known", kyc=True)
    big = await services.trades.create_trade(offer.id, verified.id, "60")
    assert big.fiat_amount == Decimal("120000.00")


async def test_only_the_right_party_moves_the_trade(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    with pytest.raises(AuthorizationError):
        await services.trades.confirm_payment(trade.id, sell_offer.seller.id)
    await services.trades.confirm_payment(trade.id, buyer.id)
    with pytest.raises(AuthorizationError):
        await services.trades.release_funds(trade.id, buyer.id)


async def test_release_requires_payment_made(services, seeder, sell_offer):
    _, trade = await _open_trade(services, seeder, sell_offer)
    with pytest.raises(InvalidStateError):
        await services.trades.release_funds(trade.id, sell_offer.seller.id)


async def test_release_with_short_seller_changes_nothing(services, seeder, sell_offer):
    seller = sell_offer.seller
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)
    # Seller spends the stablecoin elsewhere before releasing
    await services.ledger.debit(seller.id, Currency.USDT, "70", "elsewhere", TransactionType.ADMIN_DEBIT)

    with pytest.raises(InsufficientFundsError):
        await services.trades.release_funds(trade.id, seller.id)
    stored = await services.trades.get_trade(trade.id, seller.id)
    assert stored.status == TradeStatus.PAYMENT_MADE
    assert stored.completed_at is None
    assert await services.ledger.get_balance(buyer.id, Currency.USDT) == Decimal("0")
    assert await services.ledger.get_balance(seller.id, Currency.USDT) == Decimal("30")


async def test_cancel_restores_offer(services, seeder, sell_offer, publisher):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    cancelled = await services.trades.cancel_trade(trade.id, buyer.id, reason="changed my mind")
    assert cancelled.status == TradeStatus.CANCELLED
    assert cancelled.cancelled_by == buyer.id
    assert cancelled.cancel_reason == "changed my mind"
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.remaining_amount == Decimal("100")
    assert publisher.types()[-1] == "trade.cancelled"


async def test_cancel_restores_a_completed_offer(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer, amount="100")
    await services.trades.cancel_trade(trade.id, sell_offer.seller.id)
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.status == OfferStatus.ACTIVE
    assert offer.remaining_amount == Decimal("100")


async def test_cancel_rolls_back_when_offer_cannot_be_restored(
    services, seeder, sell_offer, publisher, monkeypatch
):
    buyer, trade = await _open_trade(services, seeder, sell_offer)

    async def refuse_restore(offer_id, amount_minor):
        return False

    monkeypatch.setattr(services.offer_repo, "restore", refuse_restore)
    with pytest.raises(InvalidStateError):
        await services.trades.cancel_trade(trade.id, buyer.id)

    current = await services.trades.get_trade(trade.id, buyer.id)
    assert current.status == TradeStatus.PAYMENT_PENDING
    assert current.cancelled_at is None
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.remaining_amount == Decimal("60")
    assert "trade.cancelled" not in publisher.types()


async def test_cancel_not_allowed_after_payment(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)
    with pytest.raises(InvalidStateError):
        await services.trades.cancel_trade(trade.id, buyer.id)


async def test_outsiders_cannot_cancel_but_admins_can(services, seeder, sell_offer):
    _, trade = await _open_trade(services, seeder, sell_offer)
    stranger = await seeder.user("stranger")
    admin = await seeder.user("admin", admin=True)
    with pytest.raises(AuthorizationError):
        await services.trades.cancel_trade(trade.id, stranger.id)
    cancelled = await services.trades.cancel_trade(trade.id, admin.id)
    assert cancelled.cancelled_by == admin.id


async def test_terminal_trades_never_move_again(services, seeder, sell_offer):
    seller = sell_offer.seller
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)
    await services.trades.release_funds(trade.id, seller.id)

    with pytest.raises(InvalidStateError):
        await services.trades.release_funds(trade.id, seller.id)
    with pytest.raises(InvalidStateError):
        await services.trades.confirm_payment(trade.id, buyer.id)
    with pytest.raises(InvalidStateError):
        await services.trades.cancel_trade(trade.id, buyer.id)
    with pytest.raises(InvalidStateError):
        await services.trades.raise_dispute(trade.id, buyer.id, DisputeCategory.OTHER, "late")
    assert await services.ledger.get_balance(buyer.id, Currency.USDT) == Decimal("40")

    _, second = await _open_trade(services, seeder, sell_offer, amount="10")
    await services.trades.cancel_trade(second.id, seller.id)
    with pytest.raises(InvalidStateError):
        await services.trades.cancel_trade(second.id, seller.id)
    with pytest.raises(InvalidStateError):
        await services.trades.confirm_payment(second.id, second.buyer_id)


async def test_confirm_after_deadline_fails(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trade_repo.update_fields(trade.id, payment_deadline=utcnow() - timedelta(minutes=1))
    await services.session.commit()
    with pytest.raises(DeadlineExpiredError):
        await services.trades.confirm_payment(trade.id, buyer.id)


async def test_raise_dispute(services, seeder, sell_offer, publisher):
    seller = sell_offer.seller
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)

    disputed = await services.trades.raise_dispute(
        trade.id, seller.id, DisputeCategory.PAYMENT_NOT_RECEIVED, "No credit on my statement",
        evidence_refs=["statement.pdf"],
    )
    assert disputed.status == TradeStatus.DISPUTED
    assert disputed.dispute_raised_by == seller.id
    assert disputed.dispute_category == DisputeCategory.PAYMENT_NOT_RECEIVED
    assert disputed.dispute_evidence == ["statement.pdf"]
    assert publisher.types()[-1] == "trade.disputed"

    with pytest.raises(AlreadyDisputedError):
        await services.trades.raise_dispute(trade.id, buyer.id, DisputeCategory.OTHER, "me too")
    # Disputed trades cannot be released by the seller directly
    with pytest.raises(InvalidStateError):
        await services.trades.release_funds(trade.id, seller.id)


async def test_raise_dispute_validation(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    stranger = await seeder.user("stranger")
    with pytest.raises(ValidationError):
        await services.trades.raise_dispute(trade.id, buyer.id, "made_up", "reason")
    with pytest.raises(ValidationError):
        await services.trades.raise_dispute(trade.id, buyer.id, DisputeCategory.OTHER, "   ")
    with pytest.raises(ValidationError):
        await services.trades.raise_dispute(
            trade.id, buyer.id, DisputeCategory.OTHER, "too much", evidence_refs=[str(i) for i in range(6)]
        )
    with pytest.raises(AuthorizationError):
        await services.trades.raise_dispute(trade.id, stranger.id, DisputeCategory.OTHER, "nosy")


async def test_get_and_list_trades(services, seeder, sell_offer):
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    stranger = await seeder.user("stranger")
    admin = await seeder.user("admin", admin=True)

    with pytest.raises(AuthorizationError):
        await services.trades.get_trade(trade.id, stranger.id)
    assert (await services.trades.get_trade(trade.id, admin.id)).id == trade.id

    assert [t.id for t in await services.trades.list_trades(buyer.id)] == [trade.id]
    assert await services.trades.list_trades(buyer.id, status=TradeStatus.COMPLETED) == []
    assert await services.trades.list_trades(stranger.id) == []


async def test_sweep_flags_overdue_trades(services, seeder, sell_offer):
    _, trade = await _open_trade(services, seeder, sell_offer)
    later = utcnow() + timedelta(minutes=31)

    assert await services.trades.sweep_expired_trades(now=later) == [trade.id]
    flagged = await services.trades.get_trade(trade.id, sell_offer.seller.id)
    assert flagged.status == TradeStatus.PAYMENT_PENDING
    assert flagged.expired_at is not None
    # Already flagged trades are skipped
    assert await services.trades.sweep_expired_trades(now=later) == []


async def test_sweep_ignores_trades_within_deadline(services, seeder, sell_offer):
    await _open_trade(services, seeder, sell_offer)
    assert await services.trades.sweep_expired_trades() == []


async def test_sweep_auto_cancel(services, seeder, sell_offer, publisher, override_settings):
    override_settings(trade_expiry_auto_cancel=True)
    _, trade = await _open_trade(services, seeder, sell_offer)

    assert await services.trades.sweep_expired_trades(now=utcnow() + timedelta(hours=1)) == [trade.id]
    cancelled = await services.trades.get_trade(trade.id, sell_offer.seller.id)
    assert cancelled.status == TradeStatus.CANCELLED
    assert cancelled.cancelled_by is None
    assert cancelled.expired_at is not None
    offer = await services.offers.get_offer(sell_offer.offer.id)
    assert offer.remaining_amount == Decimal("100")
    assert publisher.types()[-1] == "trade.cancelled"


async def test_reconcile_completes_settled_trades(services, seeder, sell_offer):
    seller = sell_offer.seller
    buyer, trade = await _open_trade(services, seeder, sell_offer)
    await services.trades.confirm_payment(trade.id, buyer.id)
    # Settlement booked but the status update never landed
    await services.ledger.transfer(
        seller.id, buyer.id, Currency.USDT, trade.amount, settlement_ref(trade.id),
        TransactionType.TRADE_SETTLEMENT, trade_id=trade.id,
    )

    assert await services.trades.reconcile_settlements() == [trade.id]
    stored = await services.trades.get_trade(trade.id, buyer.id)
    assert stored.status == TradeStatus.COMPLETED
    assert await services.trades.reconcile_settlements() == []
    assert await services.ledger.get_balance(buyer.id, Currency.USDT) == Decimal("40")


class _DownPublisher:
    async def publish(self, user_id, event):
        raise ConnectionError("redis down")


async def test_publisher_failures_do_not_break_trades(db_session, seeder, make_services, bank_transfer):
    services = make_services(db_session, publisher=_DownPublisher())
    seller = await seeder.user("seller", usdt="10")
    buyer = await seeder.user("buyer")
    offer = await services.offers.create_offer(seller.id, OfferSide.SELL, "10", "1000", bank_transfer)

    trade = await services.trades.create_trade(offer.id, buyer.id, "10")
    trade = await services.trades.confirm_payment(trade.id, buyer.id)
    trade = await services.trades.release_funds(trade.id, seller.id)
    assert trade.status == TradeStatus.COMPLETED


@pytest.fixture
async def file_session_factory(tmp_path):
    """File-backed SQLite where every transaction takes the write lock up front (BEGIN IMMEDIATE).

    Two sessions then serialize the way row locks serialize them on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


async def test_concurrent_release_settles_once(file_session_factory, make_services, make_seeder, bank_transfer):
    async with file_session_factory() as session:
        seeder = make_seeder(session)
        services = make_services(session)
        seller = await seeder.user("seller", usdt="100")
        buyer = await seeder.user("buyer")
        offer = await services.offers.create_offer(seller.id, OfferSide.SELL, "100", "1000", bank_transfer)
        trade = await services.trades.create_trade(offer.id, buyer.id, "40")
        await services.trades.confirm_payment(trade.id, buyer.id)

    async def release():
        async with file_session_factory() as session:
            return await make_services(session).trades.release_funds(trade.id, seller.id)

    results = await asyncio.gather(release(), release(), return_exceptions=True)

    completed = [r for r in results if isinstance(r, Trade)]
    rejected = [r for r in results if isinstance(r, InvalidStateError)]
    assert len(completed) == 1, results
    assert len(rejected) == 1, results

    async with file_session_factory() as session:
        ledger = make_services(session).ledger
        assert await ledger.get_balance(buyer.id, Currency.USDT) == Decimal("40")
        assert await ledger.get_balance(seller.id, Currency.USDT) == Decimal("60")
        settlements = await ledger.list_transactions(seller.id, tx_type=TransactionType.TRADE_SETTLEMENT)
        assert len(settlements) == 1
