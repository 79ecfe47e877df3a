"""User database model."""
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, Integer, String

from digipay.domain.common.money import Currency, amount_from_minor
from digipay.domain.users.models import KycStatus, User as UserEntity
from digipay.infra.db.base import Base


class UserModel(Base):
    """User database model. Balance columns are minor units, written only by the ledger repository."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    fiat_balance = Column(BigInteger, default=0, nullable=False)  # kobo
    stable_balance = Column(BigInteger, default=0, nullable=False)  # 1e-8 USDT
    kyc_verified = Column(Boolean, default=False, nullable=False)
    kyc_status = Column(String, default=KycStatus.UNVERIFIED.value, nullable=False)
    rating_average = Column(String, default="0.00", nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    rating_total = Column(Integer, default=0, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    is_banned = Column(Boolean, default=False, nullable=False)
    funds_frozen = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("fiat_balance >= 0", name="ck_users_fiat_balance_non_negative"),
        CheckConstraint("stable_balance >= 0", name="ck_users_stable_balance_non_negative"),
    )

    def to_entity(self) -> UserEntity:
        """Convert to domain entity."""
        return UserEntity(
            id=self.id,
            email=self.email,
            password_hash=self.password_hash,
            display_name=self.display_name,
            phone=self.phone,
            fiat_balance=amount_from_minor(self.fiat_balance or 0, Currency.NGN),
            stable_balance=amount_from_minor(self.stable_balance or 0, Currency.USDT),
            kyc_verified=self.kyc_verified,
            kyc_status=KycStatus(self.kyc_status),
            rating_average=self.rating_average,
            rating_count=self.rating_count,
            rating_total=self.rating_total,
            is_admin=self.is_admin,
            is_banned=self.is_banned,
            funds_frozen=self.funds_frozen,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_entity(cls, entity: UserEntity) -> "UserModel":
        """Create from domain entity. New users always start with zero balances."""
        return cls(
            id=entity.id,
            email=entity.email,
            password_hash=entity.password_hash,
            display_name=entity.display_name,
            phone=entity.phone,
            fiat_balance=0,
            stable_balance=0,
            kyc_verified=entity.kyc_verified,
            kyc_status=KycStatus(entity.kyc_status).value,
            rating_average=entity.rating_average,
            rating_count=entity.rating_count,
            rating_total=entity.rating_total,
            is_admin=entity.is_admin,
            is_banned=entity.is_banned,
            funds_frozen=entity.funds_frozen,
            is_active=entity.is_active,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


def balance_column(currency: Currency):
    """The UserModel column holding a currency's balance."""
    return UserModel.fiat_balance if Currency(currency) == Currency.NGN else UserModel.stable_balance
