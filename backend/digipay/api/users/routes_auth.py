"""Authentication routes."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from digipay.api.deps import get_user_service
from digipay.domain.users.services import UserService
from digipay.infra.security.jwt import create_access_token, create_refresh_token, decode_token
from digipay.infra.security.password import get_password_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


class SignupRequest(BaseModel):
    """Signup request model."""
    email: EmailStr
    password: str = Field(min_length=8)
    display_name: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    """Login request model."""
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    """Refresh token request model."""
    refresh_token: str


class TokenResponse(BaseModel):
    """Token response model."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


def _tokens(user_id: str) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    user_service: UserService = Depends(get_user_service),
):
    """Sign up a new user."""
    logger.info(f"🔵 [SERVER] Signup request received for email: {request.email}")
    user = await user_service.create_user(
        email=request.email,
        password_hash=get_password_hash(request.password),
        display_name=request.display_name,
        phone=request.phone,
    )
    return _tokens(user.id)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    user_service: UserService = Depends(get_user_service),
):
    """Log in with email and password."""
    user = await user_service.get_user_by_email(str(request.email).lower())
    if not user or not verify_password(request.password, user.password_hash):
        logger.warning(f"❌ [SERVER] Login failed for {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )
    if not user.is_active or user.is_banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    logger.info(f"✅ [SERVER] Login: {user.id}")
    return _tokens(user.id)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: RefreshRequest,
    user_service: UserService = Depends(get_user_service),
):
    """Exchange a refresh token for a new token pair."""
    payload = decode_token(request.refresh_token)
    if payload is None or payload.get("type") != "refresh" or not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    user = await user_service.get_user(payload["sub"])
    if not user.is_active or user.is_banned:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    return _tokens(user.id)
