"""
WhatsApp Webhook Router
Turns verified provider webhooks into conversations, messages, status
updates and auto-replies.

Every inbound message and status update is processed on its own: a failure
on one item is logged and never blocks the others.
"""
import logging
from typing import Optional, Dict, Any
from datetime import datetime

from pydantic import BaseModel

from practice_messaging.config import settings
from practice_messaging.models.conversation import (
    Conversation, ConversationPriority, ConversationStatus, ConversationType,
    FileMetadata, Message, MessageType, ParticipantRole, ParticipantType, WhatsAppDeliveryStatus
)
from practice_messaging.models.notification import MessageStatusValue
from practice_messaging.models.whatsapp import InboundMessage, StatusUpdate, parse_webhook_payload
from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.message_status_service import MessageStatusService
from practice_messaging.services.notification_sink import NotificationEvent, NotificationSink
from practice_messaging.services.realtime_service import RealtimeService
from practice_messaging.services.whatsapp_service import WhatsAppService
from practice_messaging.utils.business_hours import is_business_hours, to_datetime
from practice_messaging.utils.phone import format_phone_number, phone_match_candidates
from practice_messaging.utils.rules import classify_topic

logger = logging.getLogger(__name__)

AUTO_REPLY_LOG_CONTENT = "Mensagem automática enviada (fora do horário)"
CONTACT_PHONE_COLUMNS = ("phone", "mobile", "whatsapp_phone")


def build_auto_reply(firm_name: str) -> str:
    return (
        "Olá! Recebemos sua mensagem fora do horário de atendimento.\n"
        "\n"
        "📞 Horário de Atendimento:\n"
        "• Segunda a Sexta: 9h às 18h\n"
        "• Sábado: 9h às 12h\n"
        "\n"
        "⚡ Para urgências, use a palavra \"URGENTE\" que responderemos assim que possível.\n"
        "\n"
        "Responderemos sua mensagem no próximo horário comercial.\n"
        "\n"
        "Obrigado!\n"
        f"{firm_name}"
    )


class WebhookProcessingResult(BaseModel):
    messages_received: int = 0
    messages_saved: int = 0
    statuses_received: int = 0
    statuses_applied: int = 0
    auto_replies_sent: int = 0
    errors: int = 0


class WhatsAppWebhookRouter:
    """Routes inbound WhatsApp messages and statuses into the messaging tables"""

    def __init__(
        self,
        supabase,
        whatsapp: WhatsAppService,
        conversations: ConversationService,
        realtime: RealtimeService,
        status_service: Optional[MessageStatusService] = None,
        sink: Optional[NotificationSink] = None,
        business_timezone: Optional[str] = None,
        firm_name: Optional[str] = None
    ):
        self.supabase = supabase
        self.whatsapp = whatsapp
        self.conversations = conversations
        self.realtime = realtime
        self.status_service = status_service or MessageStatusService(supabase)
        self.sink = sink if sink is not None else realtime.sink
        self.business_timezone = business_timezone or settings.BUSINESS_TIMEZONE
        self.firm_name = firm_name or settings.FIRM_NAME

    async def process_payload(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        parsed = parse_webhook_payload(payload)
        result = WebhookProcessingResult(
            messages_received=len(parsed.messages),
            statuses_received=len(parsed.statuses),
        )

        for inbound in parsed.messages:
            try:
                saved, auto_replied = await self._route_inbound(inbound)
                if saved is not None:
                    result.messages_saved += 1
                if auto_replied:
                    result.auto_replies_sent += 1
            except Exception as e:
                result.errors += 1
                logger.error(f"❌ Error handling WhatsApp message {inbound.provider_message_id}: {e}")

        for status_update in parsed.statuses:
            try:
                if await self.handle_status_update(status_update):
                    result.statuses_applied += 1
            except Exception as e:
                result.errors += 1
                logger.error(f"❌ Error handling WhatsApp status {status_update.provider_message_id}: {e}")

        logger.info(
            f"📥 WhatsApp webhook processed: messages={result.messages_saved}/{result.messages_received}, "
            f"statuses={result.statuses_applied}/{result.statuses_received}, errors={result.errors}"
        )
        return result

    # ============ Inbound messages ============

    async def handle_inbound_message(self, inbound: InboundMessage) -> Optional[Message]:
        """
        Resolve the conversation, save the message, fan it out and auto-reply
        outside business hours. Returns None when no client matches the sender.
        """
        saved, _ = await self._route_inbound(inbound)
        return saved

    async def _route_inbound(self, inbound: InboundMessage):
        logger.info(f"📨 Inbound WhatsApp {inbound.kind} from {inbound.from_phone}: {inbound.provider_message_id}")

        conversation, client_id = await self.find_or_create_conversation(inbound)
        if conversation is None:
            return None, False

        message = Message(
            conversation_id=conversation.id,
            sender_client_id=client_id,
            message_type=MessageType.WHATSAPP,
            content=inbound.content,
            whatsapp_message_id=inbound.provider_message_id,
            whatsapp_status=WhatsAppDeliveryStatus.DELIVERED,
            created_at=to_datetime(inbound.timestamp) if inbound.timestamp else None,
        ).attach_file(await self.resolve_media(inbound))

        saved = await self.conversations.insert_message(message)
        await self.conversations.touch_last_message(conversation.id, saved.created_at)
        logger.info(f"✅ WhatsApp message saved: {saved.id} on {conversation.id}")

        await self.realtime.broadcast_message(saved)
        await self.realtime.notify_participants(saved, conversation)

        auto_replied = False
        if not is_business_hours(inbound.timestamp, self.business_timezone):
            auto_replied = await self.send_auto_reply(inbound.from_phone, conversation)

        return saved, auto_replied

    async def find_or_create_conversation(self, inbound: InboundMessage):
        """
        Returns (conversation, client_id), or (None, None) when the sender
        matches no client.
        """
        phone = format_phone_number(inbound.from_phone)

        conversation = await self.conversations.find_active_whatsapp_conversation(phone)
        if conversation is not None and conversation.client_id:
            return conversation, conversation.client_id

        client = await self.find_client_by_phone(phone)
        if client is None:
            logger.warning(f"⚠️ No client found for WhatsApp number {phone}, dropping message {inbound.provider_message_id}")
            return None, None

        if conversation is not None:
            return conversation, client["id"]

        display_name = client.get("full_name") or client.get("name") or inbound.sender_name or phone
        conversation = self.conversations.insert_conversation({
            "law_firm_id": client.get("law_firm_id"),
            "client_id": client["id"],
            "title": f"WhatsApp - {display_name}",
            "description": f"Conversa WhatsApp iniciada pelo contato {phone}",
            "topic": classify_topic(inbound.content),
            "conversation_type": ConversationType.WHATSAPP.value,
            "status": ConversationStatus.ACTIVE.value,
            "priority": ConversationPriority.NORMAL.value,
            "whatsapp_enabled": True,
            "whatsapp_phone": phone,
        })

        await self.conversations.add_participant(
            conversation.id,
            client_id=client["id"],
            participant_type=ParticipantType.CLIENT,
        )

        lawyer = await self.find_default_lawyer(conversation.law_firm_id)
        if lawyer:
            await self.conversations.add_participant(
                conversation.id,
                user_id=lawyer["id"],
                participant_type=ParticipantType.LAWYER,
                role=ParticipantRole.MODERATOR,
            )
        else:
            logger.warning(f"⚠️ No lawyer available at firm {conversation.law_firm_id} for {conversation.id}")

        logger.info(f"🆕 WhatsApp conversation created: {conversation.id} (topic={conversation.topic})")
        return conversation, client["id"]

    async def find_client_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        candidates = phone_match_candidates(phone)
        if not candidates:
            return None

        filters = ",".join(
            f"{column}.ilike.%{candidate}%"
            for candidate in candidates
            for column in CONTACT_PHONE_COLUMNS
        )
        response = self.supabase.table("clients") \
            .select("*") \
            .or_(filters) \
            .limit(1) \
            .execute()

        return response.data[0] if response.data else None

    async def find_default_lawyer(self, law_firm_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not law_firm_id:
            return None
        try:
            response = self.supabase.table("users") \
                .select("id") \
                .eq("law_firm_id", law_firm_id) \
                .eq("user_type", "lawyer") \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error looking up default lawyer for firm {law_firm_id}: {e}")
            return None
        return response.data[0] if response.data else None

    async def resolve_media(self, inbound: InboundMessage) -> Optional[FileMetadata]:
        """
        Download inbound media to confirm it and record size/type. The stored
        URL is a provider reference, the bytes are not re-hosted.
        """
        if inbound.kind not in ("document", "image") or not inbound.media_id:
            return None

        download = await self.whatsapp.download_media(inbound.media_id)
        if not download.success:
            logger.warning(f"⚠️ Media {inbound.media_id} unavailable ({download.error}), saving message without file")
            return None

        default_type = "image/jpeg" if inbound.kind == "image" else "application/octet-stream"
        return FileMetadata(
            url=f"whatsapp://media/{inbound.media_id}",
            name=inbound.filename or f"whatsapp_{inbound.media_id}",
            size=download.size,
            mime_type=download.mime_type or inbound.mime_type or default_type,
        )

    async def send_auto_reply(self, to: str, conversation: Conversation) -> bool:
        result = await self.whatsapp.send_text_message(to, build_auto_reply(self.firm_name))
        if not result.success:
            logger.error(f"❌ Auto-reply to {to} failed: {result.error}")
            return False

        logger.info(f"🌙 Auto-reply sent to {to} on {conversation.id}")
        try:
            await self.conversations.insert_message(Message(
                conversation_id=conversation.id,
                message_type=MessageType.SYSTEM,
                content=AUTO_REPLY_LOG_CONTENT,
                whatsapp_message_id=result.message_id,
                whatsapp_status=WhatsAppDeliveryStatus.SENT,
            ))
        except RuntimeError as e:
            logger.error(f"❌ Could not log auto-reply on {conversation.id}: {e}")
        return True

    # ============ Status updates ============

    async def handle_status_update(self, update: StatusUpdate) -> bool:
        message = await self.conversations.get_message_by_provider_id(update.provider_message_id)
        if message is None:
            logger.debug(f"Status {update.status} for unknown WhatsApp message {update.provider_message_id}")
            return False

        moment = to_datetime(update.timestamp) if update.timestamp else None
        changes: Dict[str, Any] = {"whatsapp_status": update.status}
        if update.status == MessageStatusValue.READ.value:
            changes["read_at"] = (moment or datetime.utcnow()).isoformat()

        if not await self.conversations.update_message(message.id, changes):
            return False
        logger.info(f"📬 WhatsApp message {message.id} status -> {update.status}")

        if update.status == MessageStatusValue.READ.value and message.sender_id:
            await self.status_service.update_status(
                message.id,
                message.sender_id,
                MessageStatusValue.READ,
                is_client=message.is_from_client,
                timestamp=moment,
            )

        if update.status == MessageStatusValue.FAILED.value and message.sender_user_id and self.sink is not None:
            conversation = await self.conversations.get_conversation(message.conversation_id)
            if conversation is not None:
                self.sink.dispatch(NotificationEvent(
                    kind="status_update",
                    message=message,
                    conversation=conversation,
                    recipient_id=message.sender_user_id,
                    status=update.status,
                ))

        return True
