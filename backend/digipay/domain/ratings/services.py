"""Rating domain services."""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.common.errors import (
    AuthorizationError,
    DuplicateRatingError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from digipay.domain.common.types import generate_id, utcnow
from digipay.domain.ratings.models import Rating
from digipay.domain.trades.models import TradeStatus
from digipay.domain.users.services import UserRepository
from digipay.infra.db.repositories.rating_repo import RatingRepository
from digipay.infra.db.repositories.trade_repo import TradeRepository
from digipay.infra.db.transaction import atomic

logger = logging.getLogger(__name__)


class RatingService:
    """Post-trade reputation."""

    def __init__(
        self,
        repo: RatingRepository,
        trade_repo: TradeRepository,
        user_repo: UserRepository,
        db: AsyncSession,
    ):
        self.repo = repo
        self.trade_repo = trade_repo
        self.user_repo = user_repo
        self.db = db

    async def submit_rating(
        self,
        trade_id: str,
        rater_id: str,
        rated_user_id: str,
        score: int,
        comment: Optional[str] = None,
    ) -> Rating:
        """One rating per (trade, rater), only on completed trades, only for the counterparty."""
        trade = await self.trade_repo.get_by_id(trade_id)
        if trade is None:
            raise NotFoundError("Trade", trade_id)
        if trade.status != TradeStatus.COMPLETED:
            raise InvalidStateError("Only completed trades can be rated")
        if not trade.is_participant(rater_id):
            raise AuthorizationError("Only trade participants can rate")
        if rated_user_id != trade.counterparty(rater_id):
            raise AuthorizationError("You can only rate your trade counterparty")
        if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
            raise ValidationError("score must be an integer from 1 to 5")
        if await self.repo.get_for_trade_and_rater(trade_id, rater_id) is not None:
            raise DuplicateRatingError(trade_id, rater_id)

        rating = Rating(
            id=generate_id(),
            trade_id=trade_id,
            rater_id=rater_id,
            rated_user_id=rated_user_id,
            score=score,
            comment=(comment or "").strip() or None,
            created_at=utcnow(),
        )
        try:
            async with atomic(self.db):
                created = await self.repo.create(rating)
                await self.user_repo.apply_rating(rated_user_id, score)
        except IntegrityError:
            # Concurrent duplicate hit the (trade_id, rater_id) unique constraint
            logger.warning(f"⚠️ [RATINGS] Duplicate rating for trade {trade_id} by {rater_id}")
            raise DuplicateRatingError(trade_id, rater_id)
        logger.info(f"⭐ [RATINGS] {rater_id} rated {rated_user_id} {score}/5 on trade {trade_id}")
        return created

    async def list_ratings_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Rating]:
        return await self.repo.list_for_user(user_id, limit, offset)
