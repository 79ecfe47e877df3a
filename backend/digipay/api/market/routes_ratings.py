"""Rating routes."""
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import AliasChoices, BaseModel, Field

from digipay.api.deps import get_current_user, get_rating_service
from digipay.api.schemas import RatingResponse
from digipay.domain.ratings.services import RatingService
from digipay.domain.users.models import User

router = APIRouter()


class RatingRequest(BaseModel):
    """Rate the counterparty of a completed trade."""
    trade_id: str
    rated_user_id: str
    score: int = Field(ge=1, le=5, validation_alias=AliasChoices("rating", "score"))
    comment: Optional[str] = Field(None, max_length=1000)


@router.post("", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    request: RatingRequest,
    current_user: User = Depends(get_current_user),
    ratings: RatingService = Depends(get_rating_service),
):
    rating = await ratings.submit_rating(
        request.trade_id, current_user.id, request.rated_user_id, request.score, request.comment
    )
    return RatingResponse.from_entity(rating)
