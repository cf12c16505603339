"""
WhatsApp API Endpoints
Provider webhook (verification + delivery) and the staff send endpoint
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
from fastapi.responses import PlainTextResponse

from practice_messaging.api.deps import (
    get_conversation_service, get_realtime_service, get_webhook_router, get_whatsapp
)
from practice_messaging.auth.dependencies import get_current_staff
from practice_messaging.config import settings
from practice_messaging.middleware.webhook_signature import verify_whatsapp_signature
from practice_messaging.models.conversation import FileMetadata, Message, MessageType, WhatsAppDeliveryStatus
from practice_messaging.models.user import User
from practice_messaging.models.whatsapp import SendResult, SendWhatsAppRequest
from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.realtime_service import RealtimeService
from practice_messaging.services.whatsapp_service import WhatsAppService
from practice_messaging.services.whatsapp_webhook_service import WhatsAppWebhookRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


# ============================================
# PROVIDER WEBHOOK
# ============================================

@router.get(
    "/webhook",
    response_class=PlainTextResponse,
    summary="Verify webhook subscription",
    description="Echo hub.challenge when hub.mode is 'subscribe' and hub.verify_token matches"
)
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge")
):
    expected = settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN
    if mode == "subscribe" and expected and token == expected:
        logger.info("✅ WhatsApp webhook verified")
        return PlainTextResponse(challenge or "", status_code=status.HTTP_200_OK)

    logger.warning(f"🚫 WhatsApp webhook verification failed: mode={mode}")
    return PlainTextResponse("Verification failed", status_code=status.HTTP_403_FORBIDDEN)


@router.post(
    "/webhook",
    response_class=PlainTextResponse,
    summary="Receive WhatsApp webhook",
    description="Signed delivery of inbound messages and status updates"
)
async def receive_webhook(
    body: bytes = Depends(verify_whatsapp_signature),
    webhook_router: WhatsAppWebhookRouter = Depends(get_webhook_router)
):
    """
    Process a verified provider envelope.

    Individual messages and statuses that fail are logged and skipped; only
    an unreadable envelope or an unexpected error returns 500.
    """
    try:
        payload = json.loads(body)
        await webhook_router.process_payload(payload)
    except Exception as e:
        logger.error(f"❌ WhatsApp webhook processing failed: {e}")
        return PlainTextResponse("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return PlainTextResponse("OK", status_code=status.HTTP_200_OK)


# ============================================
# OUTBOUND
# ============================================

@router.post(
    "/send",
    response_model=SendResult,
    status_code=status.HTTP_200_OK,
    summary="Send WhatsApp message",
    description="Send a text, document or image and optionally record it on a conversation"
)
async def send_whatsapp_message(
    request: SendWhatsAppRequest,
    current_user: User = Depends(get_current_staff),
    whatsapp: WhatsAppService = Depends(get_whatsapp),
    conversations: ConversationService = Depends(get_conversation_service),
    realtime: RealtimeService = Depends(get_realtime_service)
):
    if not whatsapp.is_valid_phone_number(request.to):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid Brazilian phone number: {request.to}"
        )

    if request.message_type == "text":
        if not request.text:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text is required for text messages")
        result = await whatsapp.send_text_message(request.to, request.text)
        content = request.text
    else:
        if not request.media_url:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="media_url is required for media messages")
        if request.message_type == "document":
            filename = request.filename or "documento.pdf"
            result = await whatsapp.send_document(request.to, request.media_url, filename, request.caption)
            content = request.caption or filename
        else:
            result = await whatsapp.send_image(request.to, request.media_url, request.caption)
            content = request.caption or "Imagem"

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"WhatsApp send failed: {result.error}"
        )

    logger.info(f"📤 WhatsApp {request.message_type} sent by {current_user.user_id} to {request.to}")

    if request.conversation_id:
        message = Message(
            conversation_id=request.conversation_id,
            sender_user_id=current_user.user_id,
            message_type=MessageType.WHATSAPP,
            content=content,
            whatsapp_message_id=result.message_id,
            whatsapp_status=WhatsAppDeliveryStatus.SENT,
        )
        if request.media_url:
            message.attach_file(FileMetadata(url=request.media_url, name=request.filename))

        try:
            saved = await conversations.insert_message(message)
        except RuntimeError as e:
            # The provider already accepted the message; report success with the gap logged
            logger.error(f"❌ WhatsApp message {result.message_id} sent but not recorded: {e}")
            return result

        await conversations.touch_last_message(request.conversation_id)
        await realtime.broadcast_message(saved)

    return result
