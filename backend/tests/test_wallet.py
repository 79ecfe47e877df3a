"""Tests for deposits, withdrawals, swaps and admin balance adjustments."""
import json
from decimal import Decimal

import pytest

from digipay.domain.common.errors import (
    AmountOutOfRangeError,
    AuthorizationError,
    ExternalServiceError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    ValidationError,
)
from digipay.domain.common.money import Currency
from digipay.domain.ledger.models import TransactionStatus, TransactionType
from digipay.domain.wallet.models import BankAccount
from digipay.domain.wallet.services import reversal_ref


def _webhook(event: str, reference: str) -> bytes:
    return json.dumps({"event": event, "data": {"reference": reference}}).encode("utf-8")


@pytest.fixture
def account():
    return BankAccount(bank_name="Access Bank", bank_code="044", account_number="0690000031", account_name="Ada Obi")


# Deposits


async def test_initialize_deposit_opens_pending_entry(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")

    assert init.reference.startswith("dp_")
    assert init.authorization_url.endswith(init.reference)
    assert gateway.initialized == [(user.email, Decimal("5000"), init.reference)]
    tx = await services.ledger.get_transaction_by_ref(init.reference)
    assert tx.status == TransactionStatus.PENDING
    assert tx.type == TransactionType.DEPOSIT
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0")


@pytest.mark.parametrize("amount", ["99.99", "1000000.01"])
async def test_deposit_bounds(services, seeder, amount):
    user = await seeder.user("payer")
    with pytest.raises(AmountOutOfRangeError):
        await services.wallet.initialize_deposit(user.id, amount)


async def test_gateway_failure_leaves_no_entry(services, seeder, gateway):
    user = await seeder.user("payer")
    gateway.fail_initialize = True
    with pytest.raises(ExternalServiceError):
        await services.wallet.initialize_deposit(user.id, "5000")
    assert await services.ledger.list_transactions(user.id) == []


async def test_deposit_without_gateway(db_session, seeder, make_services):
    services = make_services(db_session)
    user = await seeder.user("payer")
    with pytest.raises(ExternalServiceError):
        await services.wallet.initialize_deposit(user.id, "5000")


async def test_repeated_webhooks_credit_once(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    gateway.settle(init.reference, "5000")
    body = _webhook("charge.success", init.reference)

    for _ in range(3):
        result = await services.wallet.handle_webhook(body, gateway.sign(body))
        assert result == {"status": "processed", "event": "charge.success"}

    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("5000")
    assert gateway.verify_calls == 1
    # Client-side verify after the webhook is a no-op too
    tx = await services.wallet.verify_deposit(init.reference, user_id=user.id)
    assert tx.status == TransactionStatus.COMPLETED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("5000")


async def test_verify_deposit_still_pending(services, seeder):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    tx = await services.wallet.verify_deposit(init.reference, user_id=user.id)
    assert tx.status == TransactionStatus.PENDING
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0")


async def test_verify_deposit_credits_gateway_amount(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    gateway.settle(init.reference, "4999.50")
    tx = await services.wallet.verify_deposit(init.reference)
    assert tx.amount == Decimal("4999.50")
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("4999.50")


async def test_verify_deposit_rejects_other_currency(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    gateway.settle(init.reference, "5000", currency="USD")
    tx = await services.wallet.verify_deposit(init.reference)
    assert tx.status == TransactionStatus.FAILED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0")


async def test_success_webhook_without_amount_fails_deposit(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    gateway.settle(init.reference, "0")
    body = _webhook("charge.success", init.reference)

    result = await services.wallet.handle_webhook(body, gateway.sign(body))
    assert result == {"status": "processed", "event": "charge.success"}
    tx = await services.ledger.get_transaction_by_ref(init.reference)
    assert tx.status == TransactionStatus.FAILED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0")

    # Redelivery is acknowledged without asking the gateway again
    assert await services.wallet.handle_webhook(body, gateway.sign(body)) == result
    assert gateway.verify_calls == 1


async def test_failed_charge_marks_deposit_failed(services, seeder, gateway):
    user = await seeder.user("payer")
    init = await services.wallet.initialize_deposit(user.id, "5000")
    body = _webhook("charge.failed", init.reference)
    await services.wallet.handle_webhook(body, gateway.sign(body))
    tx = await services.ledger.get_transaction_by_ref(init.reference)
    assert tx.status == TransactionStatus.FAILED

    # A late success for a failed deposit does not credit
    gateway.settle(init.reference, "5000")
    body = _webhook("charge.success", init.reference)
    await services.wallet.handle_webhook(body, gateway.sign(body))
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0")


async def test_verify_deposit_ownership(services, seeder):
    owner = await seeder.user("owner")
    other = await seeder.user("other")
    init = await services.wallet.initialize_deposit(owner.id, "5000")
    with pytest.raises(AuthorizationError):
        await services.wallet.verify_deposit(init.reference, user_id=other.id)


async def test_webhook_signature_and_payload(services, gateway):
    body = _webhook("charge.success", "dp_unknown")
    with pytest.raises(AuthorizationError):
        await services.wallet.handle_webhook(body, "bad-signature")
    with pytest.raises(AuthorizationError):
        await services.wallet.handle_webhook(body, None)

    assert await services.wallet.handle_webhook(body, gateway.sign(body)) == {
        "status": "ignored",
        "event": "charge.success",
    }
    garbage = b"not json"
    with pytest.raises(ValidationError):
        await services.wallet.handle_webhook(garbage, gateway.sign(garbage))


# Withdrawals


async def test_withdrawal_needs_kyc_and_valid_account(services, seeder, account):
    unverified = await seeder.user("anon", ngn="5000")
    with pytest.raises(AuthorizationError):
        await services.wallet.request_withdrawal(unverified.id, "2000", account)

    user = await seeder.user("known", ngn="5000", kyc=True)
    with pytest.raises(AmountOutOfRangeError):
        await services.wallet.request_withdrawal(user.id, "999", account)
    bad_account = BankAccount(bank_name="Access Bank", bank_code="044", account_number="12345", account_name="Ada")
    with pytest.raises(ValidationError):
        await services.wallet.request_withdrawal(user.id, "2000", bad_account)
    with pytest.raises(InsufficientFundsError):
        await services.wallet.request_withdrawal(user.id, "5000.01", account)


async def test_rejected_withdrawal_restores_balance(services, seeder, account):
    user = await seeder.user("known", ngn="5000", kyc=True)
    admin = await seeder.user("admin", admin=True)
    tx = await services.wallet.request_withdrawal(user.id, "2000", account)
    assert tx.status == TransactionStatus.PENDING
    assert tx.metadata["account_number"] == "0690000031"
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("3000")

    rejected = await services.wallet.review_withdrawal(admin.id, tx.id, approve=False, notes="name mismatch")
    assert rejected.status == TransactionStatus.REJECTED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("5000")
    assert await services.ledger.get_transaction_by_ref(reversal_ref(tx.tx_ref)) is not None

    with pytest.raises(InvalidStateError):
        await services.wallet.review_withdrawal(admin.id, tx.id, approve=False)
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("5000")


async def test_approved_withdrawal_pays_out(services, seeder, gateway, account):
    user = await seeder.user("known", ngn="5000", kyc=True)
    admin = await seeder.user("admin", admin=True)
    tx = await services.wallet.request_withdrawal(user.id, "2000", account)

    with pytest.raises(AuthorizationError):
        await services.wallet.review_withdrawal(user.id, tx.id, approve=True)
    approved = await services.wallet.review_withdrawal(admin.id, tx.id, approve=True)
    assert approved.status == TransactionStatus.APPROVED
    assert len(gateway.transfers) == 1
    amount, payout_account, reference, _ = gateway.transfers[0]
    assert (amount, payout_account, reference) == (Decimal("2000"), account, tx.tx_ref)

    body = _webhook("transfer.success", tx.tx_ref)
    await services.wallet.handle_webhook(body, gateway.sign(body))
    await services.wallet.handle_webhook(body, gateway.sign(body))
    done = await services.ledger.get_transaction_by_ref(tx.tx_ref)
    assert done.status == TransactionStatus.COMPLETED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("3000")


async def test_failed_payout_is_reversed_once(services, seeder, gateway, account):
    user = await seeder.user("known", ngn="5000", kyc=True)
    admin = await seeder.user("admin", admin=True)
    tx = await services.wallet.request_withdrawal(user.id, "2000", account)
    await services.wallet.review_withdrawal(admin.id, tx.id, approve=True)

    body = _webhook("transfer.failed", tx.tx_ref)
    for _ in range(2):
        await services.wallet.handle_webhook(body, gateway.sign(body))
    failed = await services.ledger.get_transaction_by_ref(tx.tx_ref)
    assert failed.status == TransactionStatus.FAILED
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("5000")


# Swap


async def test_swap_ngn_to_usdt(services, seeder, override_settings):
    override_settings(swap_rate=Decimal("1550.00"), swap_fee_percent=Decimal("1"))
    user = await seeder.user("swapper", ngn="20000")
    result = await services.wallet.swap(user.id, "NGN", "15500")

    assert result.fee == Decimal("155.00")
    assert result.debit.amount == Decimal("15500.00")
    assert result.credit.amount == Decimal("9.90000000")
    assert result.debit.metadata["swap_id"] == result.credit.metadata["swap_id"]
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("4500")
    assert await services.ledger.get_balance(user.id, Currency.USDT) == Decimal("9.9")


async def test_swap_usdt_to_ngn(services, seeder, override_settings):
    override_settings(swap_rate=Decimal("1550.00"), swap_fee_percent=Decimal("1"))
    user = await seeder.user("swapper", usdt="10")
    result = await services.wallet.swap(user.id, Currency.USDT, "10")
    assert result.fee == Decimal("0.10000000")
    assert result.credit.amount == Decimal("15345.00")
    assert await services.ledger.get_balance(user.id, Currency.USDT) == Decimal("0")


async def test_small_swap_still_pays_fee(services, seeder, override_settings):
    override_settings(swap_rate=Decimal("1550.00"), swap_fee_percent=Decimal("1"))
    user = await seeder.user("swapper", ngn="1")
    result = await services.wallet.swap(user.id, "NGN", "0.49")
    assert result.fee == Decimal("0.01")
    # 0.48 NGN / 1550, rounded down
    assert result.credit.amount == Decimal("0.00030967")
    assert await services.ledger.get_balance(user.id, Currency.NGN) == Decimal("0.51")


async def test_swap_rejections(services, seeder):
    user = await seeder.user("swapper", ngn="100")
    with pytest.raises(ValidationError):
        await services.wallet.swap(user.id, "EUR", "10")
    with pytest.raises(InvalidAmountError):
        await services.wallet.swap(user.id, "NGN", "0")
    with pytest.raises(InvalidAmountError):
        await services.wallet.swap(user.id, "NGN", "0.01")
    with pytest.raises(InsufficientFundsError):
        await services.wallet.swap(user.id, "NGN", "100.01")
    assert await services.ledger.get_balance(user.id, Currency.USDT) == Decimal("0")


# Admin adjustments


async def test_admin_credit_and_debit(services, seeder):
    admin = await seeder.user("admin", admin=True)
    user = await seeder.user("user")

    credit = await services.wallet.admin_credit(admin.id, user.id, Currency.USDT, "25", "promo")
    assert credit.type == TransactionType.ADMIN_CREDIT
    assert credit.metadata == {"admin_id": admin.id}

    # Frozen accounts can still be corrected by an admin
    await services.users.set_user_flags(admin, user.id, funds_frozen=True)
    debit = await services.wallet.admin_debit(admin.id, user.id, Currency.USDT, "5", "chargeback")
    assert debit.type == TransactionType.ADMIN_DEBIT
    assert await services.ledger.get_balance(user.id, Currency.USDT) == Decimal("20")

    with pytest.raises(InsufficientFundsError):
        await services.wallet.admin_debit(admin.id, user.id, Currency.USDT, "21", "too much")


async def test_admin_adjustment_rules(services, seeder):
    admin = await seeder.user("admin", admin=True)
    user = await seeder.user("user")
    with pytest.raises(AuthorizationError):
        await services.wallet.admin_credit(user.id, user.id, Currency.NGN, "100", "self-service")
    with pytest.raises(ValidationError):
        await services.wallet.admin_credit(admin.id, user.id, Currency.NGN, "100", "  ")
