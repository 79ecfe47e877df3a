"""API dependencies."""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.ledger.services import LedgerService
from digipay.domain.messaging.services import MessagingService, TradeEventPublisher
from digipay.domain.offers.services import OfferService
from digipay.domain.ratings.services import RatingService
from digipay.domain.trades.disputes import DisputeService
from digipay.domain.trades.services import TradeService
from digipay.domain.users.models import User
from digipay.domain.users.services import IdentityVerifier, UserRepository, UserService
from digipay.domain.wallet.models import PaymentGateway
from digipay.domain.wallet.services import WalletService
from digipay.infra.db.repositories.ledger_repo import LedgerRepositoryImpl
from digipay.infra.db.repositories.message_repo import MessageRepositoryImpl
from digipay.infra.db.repositories.offer_repo import OfferRepositoryImpl
from digipay.infra.db.repositories.rating_repo import RatingRepositoryImpl
from digipay.infra.db.repositories.trade_repo import TradeRepositoryImpl
from digipay.infra.db.repositories.user_repo import UserRepositoryImpl
from digipay.infra.db.session import get_db
from digipay.infra.jobs.tasks import build_trade_service
from digipay.infra.messaging.redis_bus import redis_bus
from digipay.infra.messaging.trade_events import RedisTradeEventPublisher
from digipay.infra.security.jwt import decode_token
from digipay.infra.vendors.paystack import PaystackClient
from digipay.infra.vendors.youverify import YouVerifyClient
from digipay.settings import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_payment_gateway() -> Optional[PaymentGateway]:
    """Paystack client, or None when no secret key is configured."""
    if not settings.paystack_secret_key:
        return None
    return PaystackClient()


def get_identity_verifier() -> IdentityVerifier:
    return YouVerifyClient()


def get_event_publisher() -> TradeEventPublisher:
    return RedisTradeEventPublisher(redis_bus)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    token_type: str = payload.get("type")
    if user_id is None or token_type != "access":
        raise credentials_exception

    user_repo: UserRepository = UserRepositoryImpl(db)
    user = await user_repo.get_by_id(user_id)
    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require an admin user."""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(UserRepositoryImpl(db), db)


def get_ledger_service(db: AsyncSession = Depends(get_db)) -> LedgerService:
    return LedgerService(LedgerRepositoryImpl(db), db)


def get_offer_service(db: AsyncSession = Depends(get_db)) -> OfferService:
    return OfferService(OfferRepositoryImpl(db), UserRepositoryImpl(db), db)


def get_trade_service(
    db: AsyncSession = Depends(get_db),
    events: TradeEventPublisher = Depends(get_event_publisher),
) -> TradeService:
    return build_trade_service(db, events)


def get_dispute_service(trades: TradeService = Depends(get_trade_service)) -> DisputeService:
    return DisputeService(trades)


def get_messaging_service(db: AsyncSession = Depends(get_db)) -> MessagingService:
    return MessagingService(MessageRepositoryImpl(db), TradeRepositoryImpl(db), UserRepositoryImpl(db), db)


def get_rating_service(db: AsyncSession = Depends(get_db)) -> RatingService:
    return RatingService(RatingRepositoryImpl(db), TradeRepositoryImpl(db), UserRepositoryImpl(db), db)


def get_wallet_service(
    db: AsyncSession = Depends(get_db),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
) -> WalletService:
    return WalletService(LedgerService(LedgerRepositoryImpl(db), db), UserRepositoryImpl(db), db, gateway)
