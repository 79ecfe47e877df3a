"""Pytest configuration and shared fixtures for the backend tests."""
from decimal import Decimal
from types import SimpleNamespace
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import digipay.infra.db.models  # noqa: F401  (registers tables on Base.metadata)
from digipay.domain.common.errors import ExternalServiceError
from digipay.domain.common.money import Currency
from digipay.domain.common.types import generate_id
from digipay.domain.ledger.models import TransactionType
from digipay.domain.ledger.services import LedgerService
from digipay.domain.messaging.services import MessagingService
from digipay.domain.offers.models import BankTransfer, OfferSide
from digipay.domain.offers.services import OfferService
from digipay.domain.ratings.services import RatingService
from digipay.domain.trades.disputes import DisputeService
from digipay.domain.trades.services import TradeService
from digipay.domain.users.models import KycStatus, User
from digipay.domain.users.services import IdentityCheck, UserService
from digipay.domain.wallet.models import PaymentInit, PaymentVerification, TransferInit
from digipay.domain.wallet.services import WalletService
from digipay.infra.db.base import Base
from digipay.infra.db.repositories.ledger_repo import LedgerRepositoryImpl
from digipay.infra.db.repositories.message_repo import MessageRepositoryImpl
from digipay.infra.db.repositories.offer_repo import OfferRepositoryImpl
from digipay.infra.db.repositories.rating_repo import RatingRepositoryImpl
from digipay.infra.db.repositories.trade_repo import TradeRepositoryImpl
from digipay.infra.db.repositories.user_repo import UserRepositoryImpl
from digipay.infra.db.transaction import atomic
from digipay.infra.vendors.paystack import PaystackClient, compute_signature
from digipay.settings import get_config_store

TEST_PAYSTACK_SECRET = "sk_test_digipay"
# Not a real bcrypt hash; service tests never log in
TEST_PASSWORD_HASH = "not-a-real-hash"


def pytest_configure(config):
    """Register markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that need real services (deselect with '-m \"not integration\"')"
    )


@pytest.fixture
async def engine():
    """In-memory SQLite with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def override_settings():
    """Push config overrides for one test; cleared afterwards."""
    store = get_config_store()

    def _apply(**overrides):
        store.update(overrides)

    yield _apply
    store.clear_overrides()


# Fakes


class FakeGateway:
    """In-memory payment gateway; signatures use the real Paystack HMAC."""

    def __init__(self, secret: str = TEST_PAYSTACK_SECRET):
        self.secret = secret
        self.initialized: List[tuple] = []
        self.transfers: List[tuple] = []
        self.verifications = {}
        self.verify_calls = 0
        self.fail_initialize = False
        self._signer = PaystackClient(secret_key=secret)

    async def initialize_payment(self, email: str, amount: Decimal, reference: str) -> PaymentInit:
        if self.fail_initialize:
            raise ExternalServiceError("paystack", "initialize_payment failed")
        self.initialized.append((email, amount, reference))
        return PaymentInit(
            reference=reference,
            authorization_url=f"https://checkout.example.test/{reference}",
            access_code="ac_test",
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        self.verify_calls += 1
        return self.verifications.get(
            reference, PaymentVerification(reference=reference, status="pending", amount=Decimal("0"), currency="NGN")
        )

    async def initiate_transfer(self, amount, account, reference, reason) -> TransferInit:
        self.transfers.append((amount, account, reference, reason))
        return TransferInit(reference=reference, transfer_code=f"TRF_{reference[-6:]}", status="pending")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return self._signer.verify_signature(raw_body, signature)

    def settle(self, reference: str, amount: str, status: str = "success", currency: str = "NGN") -> None:
        self.verifications[reference] = PaymentVerification(
            reference=reference, status=status, amount=Decimal(amount), currency=currency
        )

    def sign(self, raw_body: bytes) -> str:
        return compute_signature(self.secret, raw_body)


class FakeVerifier:
    """KYC provider stub."""

    def __init__(self, verified: bool = True, error: Optional[Exception] = None):
        self.verified = verified
        self.error = error
        self.calls: List[tuple] = []

    async def verify_identity(self, identity_number: str, first_name: str, last_name: str) -> IdentityCheck:
        self.calls.append((identity_number, first_name, last_name))
        if self.error is not None:
            raise self.error
        if self.verified:
            return IdentityCheck(verified=True, reference=f"yv_{identity_number[-4:]}")
        return IdentityCheck(verified=False, reason="Name mismatch")


class RecordingPublisher:
    """Collects trade events instead of publishing to Redis."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: List[tuple] = []

    async def publish(self, user_id: str, event: dict) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.events.append((user_id, event))

    def types(self) -> List[str]:
        return [event["type"] for _, event in self.events]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def publisher():
    return RecordingPublisher()


# Services and seeding


def build_services(session: AsyncSession, gateway=None, publisher=None) -> SimpleNamespace:
    """Wire every service on one session the way the API dependencies do."""
    user_repo = UserRepositoryImpl(session)
    trade_repo = TradeRepositoryImpl(session)
    offer_repo = OfferRepositoryImpl(session)
    ledger = LedgerService(LedgerRepositoryImpl(session), session)
    messaging = MessagingService(MessageRepositoryImpl(session), trade_repo, user_repo, session)
    trades = TradeService(
        trade_repo, offer_repo, user_repo, ledger, session, messages=messaging, events=publisher
    )
    return SimpleNamespace(
        session=session,
        user_repo=user_repo,
        trade_repo=trade_repo,
        offer_repo=offer_repo,
        users=UserService(user_repo, session),
        ledger=ledger,
        offers=OfferService(offer_repo, user_repo, session),
        trades=trades,
        disputes=DisputeService(trades),
        messaging=messaging,
        ratings=RatingService(RatingRepositoryImpl(session), trade_repo, user_repo, session),
        wallet=WalletService(ledger, user_repo, session, gateway=gateway),
    )


@pytest.fixture
def services(db_session, gateway, publisher):
    return build_services(db_session, gateway=gateway, publisher=publisher)


class Seeder:
    """Creates users with balances through the ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = UserRepositoryImpl(session)
        self.ledger = LedgerService(LedgerRepositoryImpl(session), session)

    async def user(
        self,
        name: str,
        ngn: Optional[str] = None,
        usdt: Optional[str] = None,
        kyc: bool = False,
        admin: bool = False,
        password_hash: str = TEST_PASSWORD_HASH,
    ) -> User:
        user = User.create(
            email=f"{name}-{generate_id()[:8]}@example.com",
            password_hash=password_hash,
            display_name=name.title(),
            is_admin=admin,
        )
        async with atomic(self.session):
            user = await self.repo.create(user)
            if kyc:
                await self.repo.update_kyc(user.id, KycStatus.VERIFIED)
        if ngn:
            await self.fund(user.id, Currency.NGN, ngn)
        if usdt:
            await self.fund(user.id, Currency.USDT, usdt)
        return await self.repo.get_by_id(user.id)

    async def fund(self, user_id: str, currency: Currency, amount: str) -> None:
        await self.ledger.credit(
            user_id, currency, amount, f"seed:{generate_id()}", TransactionType.ADMIN_CREDIT, description="seed"
        )

    async def balance(self, user_id: str, currency: Currency) -> Decimal:
        return await self.ledger.get_balance(user_id, currency)


@pytest.fixture
def seeder(db_session):
    return Seeder(db_session)


@pytest.fixture
def bank_transfer():
    return BankTransfer(bank_name="GTBank", account_number="0123456789", account_name="Ada Obi")


@pytest.fixture
async def sell_offer(services, seeder, bank_transfer):
    """Seller with 100 USDT publishing 100 USDT at 1000 NGN."""
    seller = await seeder.user("seller", usdt="100")
    offer = await services.offers.create_offer(
        seller.id, OfferSide.SELL, "100", "1000", bank_transfer
    )
    return SimpleNamespace(seller=seller, offer=offer)


@pytest.fixture
def make_services():
    """Service wiring for tests that open their own sessions."""
    return build_services


@pytest.fixture
def make_seeder():
    return Seeder


@pytest.fixture
def make_verifier():
    return FakeVerifier
