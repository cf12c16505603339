"""
Conversation API Endpoints
Conversation lifecycle, message history and REST message sending
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status

from practice_messaging.api.deps import get_conversation_service, get_realtime_service
from practice_messaging.auth.dependencies import get_current_user, get_current_staff
from practice_messaging.models.conversation import (
    Conversation, ConversationCreate, ConversationStatusUpdate, Message, MessageCreate
)
from practice_messaging.models.user import User
from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.realtime_service import RealtimeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


async def require_participant(
    conversation_id: str,
    current_user: User,
    conversations: ConversationService
) -> None:
    if not await conversations.is_participant(conversation_id, current_user.user_id, current_user.is_client):
        logger.warning(f"🚫 {current_user.user_id} is not a participant of {conversation_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a participant of this conversation"
        )


@router.post(
    "",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
    summary="Create conversation",
    description="Staff-initiated conversation with a client. The creator joins as owner."
)
async def create_conversation(
    request: ConversationCreate,
    current_user: User = Depends(get_current_staff),
    conversations: ConversationService = Depends(get_conversation_service)
):
    try:
        return await conversations.create_conversation(request, current_user)
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get(
    "/{conversation_id}/messages",
    response_model=List[Message],
    summary="List messages",
    description="Message history, oldest first"
)
async def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    before: Optional[str] = Query(None, description="ISO timestamp; only older messages are returned"),
    current_user: User = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    await require_participant(conversation_id, current_user, conversations)
    return await conversations.list_messages(conversation_id, limit=limit, before=before)


@router.post(
    "/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    summary="Send message",
    description="Persist a message, broadcast it to connected participants and notify the others"
)
async def send_message(
    conversation_id: str,
    request: MessageCreate,
    current_user: User = Depends(get_current_user),
    realtime: RealtimeService = Depends(get_realtime_service)
):
    await require_participant(conversation_id, current_user, realtime.conversations)

    try:
        return await realtime.send_message(
            conversation_id,
            content=request.content,
            sender_id=current_user.user_id,
            is_client=current_user.is_client,
            message_type=request.message_type,
            file=request.file,
            reply_to_id=request.reply_to_id,
        )
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.patch(
    "/{conversation_id}/status",
    response_model=Conversation,
    summary="Update conversation status",
    description="Archive, close or reactivate a conversation"
)
async def update_conversation_status(
    conversation_id: str,
    request: ConversationStatusUpdate,
    current_user: User = Depends(get_current_staff),
    conversations: ConversationService = Depends(get_conversation_service)
):
    try:
        conversation = await conversations.update_status(conversation_id, request.status)
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation {conversation_id} not found"
        )

    logger.info(f"✅ Conversation {conversation_id} -> {conversation.status} by {current_user.user_id}")
    return conversation


@router.post(
    "/{conversation_id}/read",
    summary="Mark conversation read",
    description="Stamp last_read_at and record read receipts for messages from others"
)
async def mark_conversation_read(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    await require_participant(conversation_id, current_user, conversations)
    marked = await conversations.mark_read(conversation_id, current_user.user_id, current_user.is_client)
    return {"success": True, "conversation_id": conversation_id, "messages_marked": marked}
