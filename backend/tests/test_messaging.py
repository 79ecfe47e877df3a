"""Tests for trade chat and direct messages."""
import pytest

from digipay.domain.common.errors import AuthorizationError, NotFoundError, ValidationError
from digipay.domain.trades.models import DisputeCategory


@pytest.fixture
async def open_trade(services, seeder, sell_offer):
    buyer = await seeder.user("buyer")
    trade = await services.trades.create_trade(sell_offer.offer.id, buyer.id, "10")
    return buyer, sell_offer.seller, trade


async def test_participants_chat(services, open_trade):
    buyer, seller, trade = open_trade
    await services.messaging.send_trade_message(trade.id, buyer.id, "Sending now")
    await services.messaging.send_trade_message(trade.id, seller.id, "  Ok  ")

    messages = await services.messaging.list_trade_messages(trade.id, seller.id)
    user_messages = [m for m in messages if not m.is_system]
    assert [(m.sender_id, m.body) for m in user_messages] == [(buyer.id, "Sending now"), (seller.id, "Ok")]


async def test_outsiders_cannot_read_or_write(services, seeder, open_trade):
    _, _, trade = open_trade
    stranger = await seeder.user("stranger")
    with pytest.raises(AuthorizationError):
        await services.messaging.send_trade_message(trade.id, stranger.id, "hi")
    with pytest.raises(AuthorizationError):
        await services.messaging.list_trade_messages(trade.id, stranger.id)
    with pytest.raises(NotFoundError):
        await services.messaging.list_trade_messages("missing", stranger.id)


async def test_admin_joins_chat_only_during_dispute(services, seeder, open_trade):
    buyer, _, trade = open_trade
    admin = await seeder.user("admin", admin=True)
    assert await services.messaging.list_trade_messages(trade.id, admin.id)
    with pytest.raises(AuthorizationError):
        await services.messaging.send_trade_message(trade.id, admin.id, "hello")

    await services.trades.raise_dispute(trade.id, buyer.id, DisputeCategory.COMMUNICATION_ISSUES, "no reply")
    message = await services.messaging.send_trade_message(trade.id, admin.id, "Please upload your receipt")
    assert message.sender_id == admin.id


@pytest.mark.parametrize("body", ["", "   ", "x" * 2001])
async def test_message_body_validation(services, open_trade, body):
    buyer, _, trade = open_trade
    with pytest.raises(ValidationError):
        await services.messaging.send_trade_message(trade.id, buyer.id, body)


async def test_direct_messages_and_read_receipts(services, seeder):
    ada = await seeder.user("ada")
    bayo = await seeder.user("bayo")
    sent = await services.messaging.send_direct_message(ada.id, bayo.id, "Still selling?")
    await services.messaging.send_direct_message(bayo.id, ada.id, "Yes")

    conversation = await services.messaging.list_conversation(ada.id, bayo.id)
    assert [m.body for m in conversation] == ["Still selling?", "Yes"]

    with pytest.raises(AuthorizationError):
        await services.messaging.mark_read(sent.id, ada.id)
    read = await services.messaging.mark_read(sent.id, bayo.id)
    assert read.read_at is not None
    again = await services.messaging.mark_read(sent.id, bayo.id)
    assert again.read_at == read.read_at


async def test_direct_message_rules(services, seeder):
    ada = await seeder.user("ada")
    with pytest.raises(ValidationError):
        await services.messaging.send_direct_message(ada.id, ada.id, "me")
    with pytest.raises(NotFoundError):
        await services.messaging.send_direct_message(ada.id, "nobody", "hi")
