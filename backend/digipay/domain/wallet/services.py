"""Wallet domain services: gateway deposits, withdrawals, swaps and admin adjustments."""
import json
import logging
import re
import secrets
import time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import (
    AmountOutOfRangeError,
    AuthorizationError,
    ExternalServiceError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from digipay.domain.common.money import (
    AmountLike,
    Currency,
    amount_from_minor,
    amount_to_minor,
    convert_minor,
    other_currency,
    percent_of_minor,
    to_decimal,
)
from digipay.domain.common.types import generate_id
from digipay.domain.ledger.models import Direction, Transaction, TransactionStatus, TransactionType
from digipay.domain.ledger.services import LedgerService
from digipay.domain.users.models import User
from digipay.domain.users.services import UserRepository
from digipay.domain.wallet.models import BankAccount, DepositInit, PaymentGateway, SwapResult
from digipay.infra.db.transaction import atomic
from digipay.settings import settings

logger = logging.getLogger(__name__)

_NUBAN_RE = re.compile(r"^\d{10}$")

FAILED_CHARGE_STATUSES = ("failed", "abandoned", "reversed")


def _reference(prefix: str, user_id: str) -> str:
    return f"{prefix}_{user_id[:8]}_{int(time.time())}_{secrets.token_hex(4)}"


def reversal_ref(tx_ref: str) -> str:
    return f"{tx_ref}:reversal"


class WalletService:
    """Wallet operations on top of the ledger."""

    def __init__(
        self,
        ledger: LedgerService,
        user_repo: UserRepository,
        db: AsyncSession,
        gateway: Optional[PaymentGateway] = None,
    ):
        self.ledger = ledger
        self.user_repo = user_repo
        self.db = db
        self.gateway = gateway

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise ExternalServiceError("payment_gateway", "Payment gateway not configured")
        return self.gateway

    async def _get_user(self, user_id: str) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def _require_admin(self, admin_id: str) -> User:
        admin = await self._get_user(admin_id)
        if not admin.is_admin:
            raise AuthorizationError("Admin access required")
        return admin

    # Deposits

    async def initialize_deposit(self, user_id: str, amount: AmountLike) -> DepositInit:
        """Open a pending deposit and a gateway checkout; gateway failure leaves no row behind."""
        amount = to_decimal(amount)
        amount_to_minor(amount, Currency.NGN)
        if amount < settings.min_deposit or amount > settings.max_deposit:
            raise AmountOutOfRangeError(
                f"Deposit must be between {settings.min_deposit} and {settings.max_deposit} NGN"
            )
        user = await self._get_user(user_id)
        gateway = self._require_gateway()
        reference = _reference("dp", user_id)
        async with atomic(self.db):
            await self.ledger.open_pending(
                user_id,
                Currency.NGN,
                amount,
                reference,
                TransactionType.DEPOSIT,
                description="Deposit via Paystack",
                metadata={"gateway": "paystack"},
            )
            init = await gateway.initialize_payment(user.email, amount, reference)
        logger.info(f"🏦 [WALLET] Deposit {reference} initialized for {user_id}: {amount} NGN")
        return DepositInit(reference=reference, authorization_url=init.authorization_url, amount=amount)

    async def _mark_failed(self, reference: str, notes: str) -> Transaction:
        try:
            return await self.ledger.mark_status(reference, TransactionStatus.FAILED, notes=notes)
        except InvalidStateError:
            logger.warning(f"⚠️ [WALLET] {reference} already settled; ignoring failure notice ({notes})")
            return await self.ledger.get_transaction_by_ref(reference)

    async def verify_deposit(self, reference: str, user_id: Optional[str] = None) -> Transaction:
        """Ask the gateway about a deposit and settle it. Safe to call any number of times."""
        tx = await self.ledger.get_transaction_by_ref(reference)
        if tx is None:
            raise NotFoundError("Deposit", reference)
        if user_id is not None and tx.user_id != user_id:
            raise AuthorizationError("Not your deposit")
        if tx.type != TransactionType.DEPOSIT:
            raise ValidationError(f"{reference} is not a deposit")
        if tx.status != TransactionStatus.PENDING:
            return tx

        result = await self._require_gateway().verify_payment(reference)
        if result.status == "success":
            if result.currency.upper() != Currency.NGN.value:
                logger.error(f"❌ [WALLET] Deposit {reference} paid in {result.currency}; not crediting")
                return await self._mark_failed(reference, f"Unexpected currency {result.currency}")
            if result.amount <= 0:
                logger.error(f"❌ [WALLET] Deposit {reference} reported as paid with no amount; not crediting")
                return await self._mark_failed(reference, "Gateway reported no amount")
            if result.amount != tx.amount:
                logger.warning(
                    f"⚠️ [WALLET] Deposit {reference}: gateway amount {result.amount} != requested {tx.amount}; crediting gateway amount"
                )
            try:
                posting = await self.ledger.credit(
                    tx.user_id,
                    Currency.NGN,
                    result.amount,
                    reference,
                    TransactionType.DEPOSIT,
                    description="Deposit via Paystack",
                )
            except IntegrityError:
                logger.warning(f"⚠️ [WALLET] Concurrent settlement of deposit {reference}; keeping the first")
                return await self.ledger.get_transaction_by_ref(reference)
            if posting.applied:
                logger.info(f"✅ [WALLET] Deposit {reference} credited {result.amount} NGN to {tx.user_id}")
            return posting.transaction
        if result.status in FAILED_CHARGE_STATUSES:
            logger.info(f"[WALLET] Deposit {reference} {result.status} at gateway")
            return await self._mark_failed(reference, f"Gateway status: {result.status}")
        return tx

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> dict:
        """Process a gateway webhook. Deliveries are at-least-once; every branch is idempotent."""
        gateway = self._require_gateway()
        if not gateway.verify_signature(raw_body, signature):
            logger.warning("⚠️ [WEBHOOK] Rejected webhook with invalid signature")
            raise AuthorizationError("Invalid webhook signature")
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Webhook body is not valid JSON")
        event = payload.get("event")
        data = payload.get("data") or {}
        reference = data.get("reference")
        logger.info(f"📨 [WEBHOOK] {event} reference={reference}")
        if not reference:
            return {"status": "ignored", "event": event}

        tx = await self.ledger.get_transaction_by_ref(reference)
        if tx is None:
            logger.warning(f"⚠️ [WEBHOOK] Unknown reference {reference} for {event}")
            return {"status": "ignored", "event": event}

        if event == "charge.success":
            await self.verify_deposit(reference)
        elif event == "charge.failed":
            if tx.status == TransactionStatus.PENDING:
                await self._mark_failed(reference, "Gateway reported charge.failed")
        elif event == "transfer.success":
            await self._finish_withdrawal(tx, succeeded=True)
        elif event in ("transfer.failed", "transfer.reversed"):
            await self._finish_withdrawal(tx, succeeded=False)
        else:
            return {"status": "ignored", "event": event}
        return {"status": "processed", "event": event}

    # Withdrawals

    async def request_withdrawal(
        self,
        user_id: str,
        amount: AmountLike,
        account: BankAccount,
    ) -> Transaction:
        """Take the funds now and queue the payout for admin review."""
        user = await self._get_user(user_id)
        if not user.kyc_verified:
            raise AuthorizationError("KYC verification required for withdrawals")
        amount = to_decimal(amount)
        amount_to_minor(amount, Currency.NGN)
        if amount < settings.min_withdrawal:
            raise AmountOutOfRangeError(f"Minimum withdrawal is {settings.min_withdrawal} NGN")
        if not _NUBAN_RE.match(account.account_number or ""):
            raise ValidationError("account_number must be 10 digits")
        if not (account.bank_name or "").strip() or not (account.account_name or "").strip():
            raise ValidationError("bank_name and account_name are required")

        reference = _reference("wd", user_id)
        posting = await self.ledger.debit(
            user_id,
            Currency.NGN,
            amount,
            reference,
            TransactionType.WITHDRAWAL,
            description=f"Withdrawal to {account.bank_name} {account.account_number[-4:]}",
            metadata={
                "bank_name": account.bank_name,
                "bank_code": account.bank_code,
                "account_number": account.account_number,
                "account_name": account.account_name,
            },
            status=TransactionStatus.PENDING,
        )
        logger.info(f"🏦 [WALLET] Withdrawal {reference} requested by {user_id}: {amount} NGN")
        return posting.transaction

    async def _reverse(self, tx: Transaction, description: str) -> None:
        await self.ledger.credit(
            tx.user_id,
            tx.currency,
            tx.amount,
            reversal_ref(tx.tx_ref),
            tx.type,
            description=description,
        )

    async def review_withdrawal(self, admin_id: str, tx_id: str, approve: bool, notes: Optional[str] = None) -> Transaction:
        """Approve (and start the payout) or reject (and refund) a pending withdrawal."""
        await self._require_admin(admin_id)
        tx = await self.ledger.get_transaction(tx_id)
        if tx is None:
            raise NotFoundError("Transaction", tx_id)
        if tx.type != TransactionType.WITHDRAWAL or tx.direction != Direction.DEBIT:
            raise ValidationError(f"Transaction {tx_id} is not a withdrawal")
        if tx.status != TransactionStatus.PENDING:
            raise InvalidStateError(f"Withdrawal is already {tx.status.value}")

        async with atomic(self.db):
            if approve:
                updated = await self.ledger.mark_status(tx.tx_ref, TransactionStatus.APPROVED, notes=notes)
                if self.gateway is not None:
                    meta = tx.metadata or {}
                    await self.gateway.initiate_transfer(
                        tx.amount,
                        BankAccount(
                            bank_name=meta.get("bank_name", ""),
                            bank_code=meta.get("bank_code", ""),
                            account_number=meta.get("account_number", ""),
                            account_name=meta.get("account_name", ""),
                        ),
                        tx.tx_ref,
                        reason=f"DigiPay withdrawal {tx.tx_ref}",
                    )
            else:
                updated = await self.ledger.mark_status(tx.tx_ref, TransactionStatus.REJECTED, notes=notes)
                await self._reverse(tx, "Withdrawal rejected: funds returned")
        logger.info(f"🛡️ [ADMIN] {admin_id} {'approved' if approve else 'rejected'} withdrawal {tx.tx_ref}")
        return updated

    async def _finish_withdrawal(self, tx: Transaction, succeeded: bool) -> None:
        if tx.type != TransactionType.WITHDRAWAL:
            logger.warning(f"⚠️ [WEBHOOK] Transfer event for non-withdrawal {tx.tx_ref}")
            return
        open_statuses = (TransactionStatus.PENDING, TransactionStatus.APPROVED)
        if tx.status not in open_statuses:
            logger.warning(f"⚠️ [WEBHOOK] Duplicate transfer event for {tx.tx_ref} ({tx.status.value})")
            return
        async with atomic(self.db):
            if succeeded:
                await self.ledger.mark_status(tx.tx_ref, TransactionStatus.COMPLETED, from_statuses=open_statuses)
            else:
                await self.ledger.mark_status(
                    tx.tx_ref, TransactionStatus.FAILED, notes="Payout failed", from_statuses=open_statuses
                )
                await self._reverse(tx, "Withdrawal payout failed: funds returned")
        logger.info(f"🏦 [WALLET] Withdrawal {tx.tx_ref} {'completed' if succeeded else 'failed and reversed'}")

    # Swap

    async def swap(self, user_id: str, from_currency: Currency, amount: AmountLike) -> SwapResult:
        """Convert between NGN and USDT at the configured rate, less the swap fee."""
        try:
            from_currency = Currency(from_currency)
        except ValueError:
            raise ValidationError(f"Unsupported currency: {from_currency}")
        to_currency = other_currency(from_currency)
        minor = amount_to_minor(amount, from_currency)
        if minor <= 0:
            raise InvalidAmountError("amount must be positive")
        fee_minor = percent_of_minor(minor, settings.swap_fee_percent)
        converted_minor = convert_minor(minor - fee_minor, from_currency, settings.swap_rate)
        if converted_minor <= 0:
            raise InvalidAmountError("Amount too small to swap")

        swap_id = generate_id()
        fee = amount_from_minor(fee_minor, from_currency)
        metadata = {
            "swap_id": swap_id,
            "rate": str(settings.swap_rate),
            "fee": str(fee),
            "fee_currency": from_currency.value,
        }
        async with atomic(self.db):
            debit = await self.ledger.debit(
                user_id,
                from_currency,
                amount_from_minor(minor, from_currency),
                f"swap:{swap_id}:debit",
                TransactionType.SWAP,
                description=f"Swap {from_currency.value} -> {to_currency.value}",
                metadata=metadata,
            )
            credit = await self.ledger.credit(
                user_id,
                to_currency,
                amount_from_minor(converted_minor, to_currency),
                f"swap:{swap_id}:credit",
                TransactionType.SWAP,
                description=f"Swap {from_currency.value} -> {to_currency.value}",
                metadata=metadata,
            )
        logger.info(
            f"🔁 [WALLET] Swap {swap_id} for {user_id}: {debit.transaction.amount} {from_currency.value} -> "
            f"{credit.transaction.amount} {to_currency.value} (fee {fee})"
        )
        return SwapResult(debit=debit.transaction, credit=credit.transaction, fee=fee, rate=settings.swap_rate)

    # Admin adjustments

    async def admin_credit(
        self, admin_id: str, user_id: str, currency: Currency, amount: AmountLike, description: str
    ) -> Transaction:
        await self._require_admin(admin_id)
        if not (description or "").strip():
            raise ValidationError("description is required")
        posting = await self.ledger.credit(
            user_id,
            currency,
            amount,
            f"admin:{generate_id()}",
            TransactionType.ADMIN_CREDIT,
            description=description.strip(),
            metadata={"admin_id": admin_id},
        )
        logger.info(f"🛡️ [ADMIN] {admin_id} credited {user_id} {posting.transaction.amount} {posting.transaction.currency.value}")
        return posting.transaction

    async def admin_debit(
        self, admin_id: str, user_id: str, currency: Currency, amount: AmountLike, description: str
    ) -> Transaction:
        await self._require_admin(admin_id)
        if not (description or "").strip():
            raise ValidationError("description is required")
        posting = await self.ledger.debit(
            user_id,
            currency,
            amount,
            f"admin:{generate_id()}",
            TransactionType.ADMIN_DEBIT,
            description=description.strip(),
            metadata={"admin_id": admin_id},
            enforce_freeze=False,
        )
        logger.info(f"🛡️ [ADMIN] {admin_id} debited {user_id} {posting.transaction.amount} {posting.transaction.currency.value}")
        return posting.transaction
