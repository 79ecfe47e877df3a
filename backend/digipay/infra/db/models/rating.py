"""Rating database model."""
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from digipay.domain.ratings.models import Rating
from digipay.infra.db.base import Base


class RatingModel(Base):
    """Rating model."""

    __tablename__ = "ratings"

    id = Column(String, primary_key=True)
    trade_id = Column(String, ForeignKey("trades.id", ondelete="CASCADE"), nullable=False)
    rater_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    rated_user_id = Column(String, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("trade_id", "rater_id", name="uq_ratings_trade_rater"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_ratings_score_range"),
        Index("ix_ratings_rated_user_id", "rated_user_id"),
    )

    def to_entity(self) -> Rating:
        """Convert to domain entity."""
        return Rating(
            id=self.id,
            trade_id=self.trade_id,
            rater_id=self.rater_id,
            rated_user_id=self.rated_user_id,
            score=self.score,
            comment=self.comment,
            created_at=self.created_at,
        )

    @classmethod
    def from_entity(cls, entity: Rating) -> "RatingModel":
        """Create from domain entity."""
        return cls(
            id=entity.id,
            trade_id=entity.trade_id,
            rater_id=entity.rater_id,
            rated_user_id=entity.rated_user_id,
            score=entity.score,
            comment=entity.comment,
            created_at=entity.created_at,
        )
