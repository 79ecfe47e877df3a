"""Direct message routes."""
from typing import List

from fastapi import APIRouter, Depends, status

from digipay.api.deps import get_current_user, get_messaging_service
from digipay.api.schemas import MessageRequest, MessageResponse
from digipay.domain.messaging.services import MessagingService
from digipay.domain.users.models import User

router = APIRouter()


@router.get("/direct/{user_id}", response_model=List[MessageResponse])
async def list_conversation(
    user_id: str,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    """Direct messages between the caller and another user, oldest first."""
    return [MessageResponse.from_entity(m) for m in await messaging.list_conversation(current_user.id, user_id)]


@router.post("/direct/{user_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_direct_message(
    user_id: str,
    request: MessageRequest,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    return MessageResponse.from_entity(await messaging.send_direct_message(current_user.id, user_id, request.body))


@router.post("/{message_id}/read", response_model=MessageResponse)
async def mark_read(
    message_id: str,
    current_user: User = Depends(get_current_user),
    messaging: MessagingService = Depends(get_messaging_service),
):
    return MessageResponse.from_entity(await messaging.mark_read(message_id, current_user.id))
