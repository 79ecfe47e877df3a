"""User domain services."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from digipay.domain.users.models import KycStatus, User
from digipay.infra.db.transaction import atomic

logger = logging.getLogger(__name__)

_BVN_RE = re.compile(r"^\d{11}$")


class UserRepository:
    """User repository interface."""

    async def create(self, user: User) -> User:
        """Create a new user."""
        raise NotImplementedError

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        raise NotImplementedError

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        raise NotImplementedError

    async def get_many(self, user_ids: List[str]) -> List[User]:
        """Get several users by ID."""
        raise NotImplementedError

    async def update_kyc(self, user_id: str, status: KycStatus) -> Optional[User]:
        """Set KYC status (kyc_verified follows status == verified)."""
        raise NotImplementedError

    async def set_flags(
        self,
        user_id: str,
        is_banned: Optional[bool] = None,
        funds_frozen: Optional[bool] = None,
        is_admin: Optional[bool] = None,
    ) -> Optional[User]:
        """Set moderation flags."""
        raise NotImplementedError

    async def apply_rating(self, user_id: str, score: int) -> Optional[User]:
        """Add one score to the running rating total and recompute the average."""
        raise NotImplementedError


@dataclass
class IdentityCheck:
    """Outcome of an identity lookup."""
    verified: bool
    reference: Optional[str] = None
    reason: Optional[str] = None


class IdentityVerifier(Protocol):
    """KYC provider."""

    async def verify_identity(self, identity_number: str, first_name: str, last_name: str) -> IdentityCheck:
        """Check a national identity number (BVN) against the holder's name."""
        ...


class UserService:
    """User service for business logic."""

    def __init__(self, repo: UserRepository, db: Optional[AsyncSession] = None):
        self.repo = repo
        self.db = db

    async def create_user(
        self,
        email: EmailStr,
        password_hash: str,
        display_name: Optional[str] = None,
        phone: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        """Create a new user."""
        email = str(email).strip().lower()
        if await self.repo.get_by_email(email):
            raise ConflictError("Email already registered")
        user = User.create(
            email=email,
            password_hash=password_hash,
            display_name=display_name,
            phone=phone,
            is_admin=is_admin,
        )
        async with atomic(self.db):
            created = await self.repo.create(user)
        logger.info(f"✅ [USERS] Created user {created.id} ({created.email})")
        return created

    async def get_user(self, user_id: str) -> User:
        """Get user by ID, NotFoundError if missing."""
        user = await self.repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        return await self.repo.get_by_email(email)

    async def verify_kyc(
        self,
        user_id: str,
        identity_number: str,
        first_name: str,
        last_name: str,
        verifier: IdentityVerifier,
    ) -> User:
        """Verify identity through the KYC provider and record the outcome.

        Provider outages raise ExternalServiceError and leave the status untouched.
        """
        user = await self.get_user(user_id)
        if user.kyc_verified:
            return user
        identity_number = (identity_number or "").strip()
        if not _BVN_RE.match(identity_number):
            raise ValidationError("Identity number must be 11 digits")
        if not first_name.strip() or not last_name.strip():
            raise ValidationError("First and last name are required")

        check = await verifier.verify_identity(identity_number, first_name.strip(), last_name.strip())
        status = KycStatus.VERIFIED if check.verified else KycStatus.REJECTED
        async with atomic(self.db):
            updated = await self.repo.update_kyc(user_id, status)
        if check.verified:
            logger.info(f"✅ [KYC] User {user_id} verified (ref={check.reference})")
        else:
            logger.warning(f"⚠️ [KYC] User {user_id} rejected: {check.reason}")
        return updated

    async def set_user_flags(
        self,
        admin: User,
        user_id: str,
        is_banned: Optional[bool] = None,
        funds_frozen: Optional[bool] = None,
    ) -> User:
        """Admin: ban/unban or freeze/unfreeze a user."""
        if not admin.is_admin:
            raise AuthorizationError("Admin access required")
        await self.get_user(user_id)
        async with atomic(self.db):
            updated = await self.repo.set_flags(user_id, is_banned=is_banned, funds_frozen=funds_frozen)
        logger.info(
            f"🛡️ [ADMIN] {admin.id} set flags on {user_id}: is_banned={is_banned} funds_frozen={funds_frozen}"
        )
        return updated
