"""User routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from digipay.api.deps import get_current_user, get_ledger_service, get_rating_service, get_user_service
from digipay.api.schemas import BalancesResponse, RatingResponse
from digipay.domain.ledger.services import LedgerService
from digipay.domain.ratings.services import RatingService
from digipay.domain.users.models import User
from digipay.domain.users.services import UserService

router = APIRouter()


class UserResponse(BaseModel):
    """Current user profile."""
    id: str
    email: str
    display_name: Optional[str]
    phone: Optional[str]
    kyc_verified: bool
    kyc_status: str
    rating_average: str
    rating_count: int
    is_admin: bool
    is_banned: bool
    funds_frozen: bool
    balances: BalancesResponse
    created_at: str


class PublicUserResponse(BaseModel):
    """What other users can see."""
    id: str
    display_name: Optional[str]
    kyc_verified: bool
    rating_average: str
    rating_count: int


def user_response(user: User, balances: dict) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        phone=user.phone,
        kyc_verified=user.kyc_verified,
        kyc_status=user.kyc_status.value,
        rating_average=user.rating_average,
        rating_count=user.rating_count,
        is_admin=user.is_admin,
        is_banned=user.is_banned,
        funds_frozen=user.funds_frozen,
        balances=BalancesResponse.from_balances(balances),
        created_at=user.created_at.isoformat(),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Profile and balances of the caller."""
    return user_response(current_user, await ledger.get_balances(current_user.id))


@router.get("/{user_id}", response_model=PublicUserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
):
    user = await user_service.get_user(user_id)
    return PublicUserResponse(
        id=user.id,
        display_name=user.display_name,
        kyc_verified=user.kyc_verified,
        rating_average=user.rating_average,
        rating_count=user.rating_count,
    )


@router.get("/{user_id}/ratings", response_model=List[RatingResponse])
async def list_user_ratings(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    ratings: RatingService = Depends(get_rating_service),
):
    """Ratings received by a user, newest first."""
    return [RatingResponse.from_entity(r) for r in await ratings.list_ratings_for_user(user_id, limit, offset)]
