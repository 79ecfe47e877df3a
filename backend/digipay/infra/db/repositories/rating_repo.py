"""Rating repository implementation."""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.ratings.models import Rating
from digipay.infra.db.models.rating import RatingModel


class RatingRepository:
    """Rating repository interface."""

    async def create(self, rating: Rating) -> Rating:
        """Create a rating."""
        raise NotImplementedError

    async def get_for_trade_and_rater(self, trade_id: str, rater_id: str) -> Optional[Rating]:
        """Get the rating a user left on a trade."""
        raise NotImplementedError

    async def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Rating]:
        """Ratings received by a user, newest first."""
        raise NotImplementedError


class RatingRepositoryImpl(RatingRepository):
    """Rating repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, rating: Rating) -> Rating:
        model = RatingModel.from_entity(rating)
        self.session.add(model)
        await self.session.flush()
        return model.to_entity()

    async def get_for_trade_and_rater(self, trade_id: str, rater_id: str) -> Optional[Rating]:
        result = await self.session.execute(
            select(RatingModel).where(
                RatingModel.trade_id == trade_id,
                RatingModel.rater_id == rater_id,
            )
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Rating]:
        result = await self.session.execute(
            select(RatingModel)
            .where(RatingModel.rated_user_id == user_id)
            .order_by(RatingModel.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return [m.to_entity() for m in result.scalars().all()]
