"""KYC routes."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from digipay.api.deps import get_current_user, get_identity_verifier, get_ledger_service, get_user_service
from digipay.api.users.routes_users import UserResponse, user_response
from digipay.domain.ledger.services import LedgerService
from digipay.domain.users.models import User
from digipay.domain.users.services import IdentityVerifier, UserService

logger = logging.getLogger(__name__)

router = APIRouter()


class KycVerifyRequest(BaseModel):
    """BVN verification request."""
    identity_number: str
    first_name: str
    last_name: str


@router.post("/verify", response_model=UserResponse)
async def verify_kyc(
    request: KycVerifyRequest,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Verify identity with the KYC provider."""
    user = await user_service.verify_kyc(
        current_user.id,
        request.identity_number,
        request.first_name,
        request.last_name,
        verifier,
    )
    return user_response(user, await ledger.get_balances(user.id))
