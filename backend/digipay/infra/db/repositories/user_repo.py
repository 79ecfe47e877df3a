"""User repository implementation."""
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.types import utcnow
from digipay.domain.users.models import KycStatus, User
from digipay.domain.users.services import UserRepository
from digipay.infra.db.models.user import UserModel


class UserRepositoryImpl(UserRepository):
    """User repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: User) -> User:
        """Create a new user."""
        model = UserModel.from_entity(user)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.email == email.lower())
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_many(self, user_ids: List[str]) -> List[User]:
        """Get several users by ID."""
        if not user_ids:
            return []
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id.in_(user_ids))
            .execution_options(populate_existing=True)
        )
        return [m.to_entity() for m in result.scalars().all()]

    async def update_kyc(self, user_id: str, status: KycStatus) -> Optional[User]:
        """Set KYC status."""
        status = KycStatus(status)
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                kyc_status=status.value,
                kyc_verified=status == KycStatus.VERIFIED,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return await self.get_by_id(user_id)

    async def set_flags(
        self,
        user_id: str,
        is_banned: Optional[bool] = None,
        funds_frozen: Optional[bool] = None,
        is_admin: Optional[bool] = None,
    ) -> Optional[User]:
        """Set moderation flags; None leaves a flag unchanged."""
        update_values = {}
        if is_banned is not None:
            update_values["is_banned"] = is_banned
        if funds_frozen is not None:
            update_values["funds_frozen"] = funds_frozen
        if is_admin is not None:
            update_values["is_admin"] = is_admin
        if update_values:
            update_values["updated_at"] = utcnow()
            await self.session.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(**update_values)
                .execution_options(synchronize_session=False)
            )
        return await self.get_by_id(user_id)

    async def apply_rating(self, user_id: str, score: int) -> Optional[User]:
        """Increment count/total in one statement, then derive the average from the new totals."""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                rating_total=UserModel.rating_total + score,
                rating_count=UserModel.rating_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        totals = await self.session.execute(
            select(UserModel.rating_total, UserModel.rating_count).where(UserModel.id == user_id)
        )
        total, count = totals.one()
        average = (Decimal(total) / Decimal(count)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(rating_average=str(average), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await self.get_by_id(user_id)
