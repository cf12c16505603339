"""
Chat Notification Service
Decides whether a message warrants a notification, records it in
`chat_notifications` and fans it out to the recipient's enabled channels.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Union
from datetime import datetime, timezone

from practice_messaging.config import settings
from practice_messaging.models.conversation import Conversation, ConversationPriority, Message, MessageType
from practice_messaging.models.notification import (
    ChatNotification, NotificationChannel, NotificationPreference, NotificationType
)
from practice_messaging.services.notification_channels import NotificationChannelSender, RecipientDirectory
from practice_messaging.services.notification_sink import NotificationEvent
from practice_messaging.services.preference_service import NotificationPreferenceService
from practice_messaging.utils.business_hours import is_business_hours
from practice_messaging.utils.rules import Rule, RuleTable

logger = logging.getLogger(__name__)

CONTENT_PREVIEW_LIMIT = 100

# Mention detection is a plain "@" substring check, not an @-mention parser.
NOTIFICATION_TYPE_RULES: RuleTable = RuleTable(
    [
        Rule(lambda message, conversation: conversation.priority == ConversationPriority.URGENT, NotificationType.URGENT),
        Rule(lambda message, conversation: message.message_type == MessageType.WHATSAPP, NotificationType.WHATSAPP),
        Rule(lambda message, conversation: "@" in (message.content or ""), NotificationType.MENTION),
    ],
    default=NotificationType.NEW_MESSAGE,
)

_ATTACHMENT_PLACEHOLDERS = {
    MessageType.FILE.value: ("📎 Arquivo", "Documento"),
    MessageType.IMAGE.value: ("🖼️ Imagem", "Imagem"),
    MessageType.DOCUMENT.value: ("📄 Documento", "Documento"),
}


def recipient_columns(recipient_id: str, is_client: bool) -> Dict[str, Optional[str]]:
    return {
        "recipient_user_id": None if is_client else recipient_id,
        "recipient_client_id": recipient_id if is_client else None,
    }


class NotificationService:
    """Preference-aware notification dispatcher"""

    def __init__(
        self,
        supabase,
        preferences: NotificationPreferenceService,
        channels: Iterable[NotificationChannelSender],
        directory: Optional[RecipientDirectory] = None,
        business_timezone: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.supabase = supabase
        self.preferences = preferences
        self.channels: Dict[str, NotificationChannelSender] = {
            NotificationChannel(sender.channel).value: sender for sender in channels
        }
        self.directory = directory or RecipientDirectory(supabase)
        self.business_timezone = business_timezone or settings.BUSINESS_TIMEZONE
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ============ Entry points ============

    async def handle_event(self, event: NotificationEvent) -> None:
        """NotificationSink handler"""
        if event.kind == "status_update":
            await self.notify_status_update(event.message, event.conversation, event.recipient_id, event.status)
        else:
            await self.notify_new_message(event.message, event.conversation, event.recipient_id, event.is_client)

    async def notify_new_message(
        self,
        message: Message,
        conversation: Conversation,
        recipient_id: str,
        is_recipient_client: bool = False
    ) -> Optional[ChatNotification]:
        """
        Notify one recipient about a new message.

        Never raises: a notification problem must not affect the message that
        triggered it. Returns the recorded notification, or None when
        suppressed or failed.
        """
        try:
            preferences = await self.preferences.get_preferences(recipient_id, is_recipient_client)
            if not preferences:
                logger.info(f"ℹ️  No notification preferences resolvable for {recipient_id}")
                return None

            if not self.should_send_notification(message, conversation, preferences):
                logger.debug(f"🔕 Notification suppressed for {recipient_id} (message {message.id})")
                return None

            notification = await self.create_notification(
                recipient_id=recipient_id,
                is_client=is_recipient_client,
                conversation_id=conversation.id,
                message_id=message.id,
                notification_type=self.get_notification_type(message, conversation),
                title=self.get_notification_title(conversation),
                content=self.get_notification_content(message),
            )

            return await self._deliver(notification, preferences, is_recipient_client)

        except Exception as e:
            logger.error(f"❌ Error sending notification for message {message.id} to {recipient_id}: {e}")
            return None

    async def notify_status_update(
        self,
        message: Message,
        conversation: Conversation,
        recipient_id: str,
        status: Optional[str]
    ) -> Optional[ChatNotification]:
        """Alert the staff sender of a message about a provider status change (e.g. failed)"""
        try:
            preferences = await self.preferences.get_preferences(recipient_id, False)
            if not preferences:
                return None

            if preferences.urgent_only and conversation.priority != ConversationPriority.URGENT:
                return None
            if preferences.business_hours_only and not is_business_hours(self.clock(), self.business_timezone):
                return None

            notification = await self.create_notification(
                recipient_id=recipient_id,
                is_client=False,
                conversation_id=conversation.id,
                message_id=message.id,
                notification_type=NotificationType.STATUS_UPDATE,
                title=f"📊 Atualização de entrega - {conversation.title}",
                content=f"Mensagem {status or 'atualizada'}: {self.get_notification_content(message)}",
            )
            return await self._deliver(notification, preferences, False)

        except Exception as e:
            logger.error(f"❌ Error sending status notification for message {message.id}: {e}")
            return None

    # ============ Rules ============

    def should_send_notification(
        self,
        message: Message,
        conversation: Conversation,
        preferences: NotificationPreference,
        now: Optional[datetime] = None
    ) -> bool:
        if message.message_type == MessageType.SYSTEM:
            return False

        if preferences.urgent_only and conversation.priority != ConversationPriority.URGENT:
            return False

        if preferences.business_hours_only and not is_business_hours(now or self.clock(), self.business_timezone):
            return False

        return True

    def get_notification_type(self, message: Message, conversation: Conversation) -> NotificationType:
        return NOTIFICATION_TYPE_RULES.classify(message, conversation)

    def get_notification_title(self, conversation: Conversation) -> str:
        if conversation.priority == ConversationPriority.URGENT:
            return f"🔴 Mensagem Urgente - {conversation.title}"
        if conversation.priority == ConversationPriority.HIGH:
            return f"⚡ Mensagem Importante - {conversation.title}"
        return f"💬 Nova Mensagem - {conversation.title}"

    def get_notification_content(self, message: Message) -> str:
        placeholder = _ATTACHMENT_PLACEHOLDERS.get(message.message_type)
        if placeholder:
            label, fallback = placeholder
            return f"{label}: {message.file_name or fallback}"

        content = message.content or ""
        if len(content) > CONTENT_PREVIEW_LIMIT:
            content = content[:CONTENT_PREVIEW_LIMIT - 3] + "..."
        return content

    # ============ Delivery ============

    def _enabled_channels(self, preferences: NotificationPreference, is_client: bool) -> List[str]:
        enabled = []
        if preferences.email_notifications:
            enabled.append(NotificationChannel.EMAIL.value)
        if preferences.push_notifications:
            enabled.append(NotificationChannel.PUSH.value)
        if preferences.whatsapp_notifications and not is_client:
            enabled.append(NotificationChannel.WHATSAPP.value)
        return enabled

    async def _deliver(
        self,
        notification: ChatNotification,
        preferences: NotificationPreference,
        is_client: bool
    ) -> ChatNotification:
        """Try every enabled channel independently, then mark the row sent"""
        enabled = self._enabled_channels(preferences, is_client)

        contact = {}
        if enabled:
            try:
                contact = await self.directory.get_contact(notification.recipient_id, is_client)
            except Exception as e:
                logger.error(f"❌ Could not load contact details for {notification.recipient_id}: {e}")

        delivered: List[str] = []
        for channel in enabled:
            sender = self.channels.get(channel)
            if sender is None:
                logger.warning(f"⚠️ No sender registered for channel '{channel}'")
                continue
            try:
                await sender.send(notification, preferences, contact)
                delivered.append(channel)
            except Exception as e:
                logger.error(f"❌ {channel} notification {notification.id} failed: {e}")

        await self.mark_notification_as_sent(notification.id, delivered)
        notification.is_sent = True
        notification.sent_via = delivered

        logger.info(
            f"🔔 Notification {notification.id} processed: recipient={notification.recipient_id}, "
            f"channels={delivered}"
        )
        return notification

    # ============ Persistence ============

    async def create_notification(
        self,
        recipient_id: str,
        is_client: bool,
        conversation_id: str,
        message_id: str,
        notification_type: NotificationType,
        title: str,
        content: str
    ) -> ChatNotification:
        """
        Raises:
            RuntimeError: If the insert returns no row
        """
        data = {
            **recipient_columns(recipient_id, is_client),
            "conversation_id": conversation_id,
            "message_id": message_id,
            "notification_type": NotificationType(notification_type).value,
            "title": title,
            "content": content,
            "is_read": False,
            "is_sent": False,
            "sent_via": [],
        }

        response = self.supabase.table("chat_notifications").insert(data).execute()
        if not response.data:
            raise RuntimeError("Failed to create notification")

        return ChatNotification(**response.data[0])

    async def mark_notification_as_sent(self, notification_id: str, channels: List[str]) -> None:
        try:
            self.supabase.table("chat_notifications") \
                .update({"is_sent": True, "sent_via": channels}) \
                .eq("id", notification_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error marking notification {notification_id} as sent: {e}")

    async def get_unread_notifications(self, recipient_id: str, is_client: bool = False) -> List[ChatNotification]:
        column = "recipient_client_id" if is_client else "recipient_user_id"
        try:
            response = self.supabase.table("chat_notifications") \
                .select("*") \
                .eq(column, recipient_id) \
                .eq("is_read", False) \
                .order("created_at", desc=True) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching unread notifications for {recipient_id}: {e}")
            return []

        return [ChatNotification(**row) for row in response.data or []]

    async def mark_as_read(self, notification_id: str, recipient_id: Optional[str] = None, is_client: bool = False) -> bool:
        """Mark one notification read. When `recipient_id` is given the row must belong to it."""
        query = self.supabase.table("chat_notifications") \
            .update({"is_read": True, "read_at": datetime.utcnow().isoformat()}) \
            .eq("id", notification_id)
        if recipient_id:
            query = query.eq("recipient_client_id" if is_client else "recipient_user_id", recipient_id)

        try:
            response = query.execute()
        except Exception as e:
            logger.error(f"❌ Error marking notification {notification_id} as read: {e}")
            return False
        return bool(response.data)

    async def mark_all_as_read(self, recipient_id: str, is_client: bool = False) -> int:
        column = "recipient_client_id" if is_client else "recipient_user_id"
        try:
            response = self.supabase.table("chat_notifications") \
                .update({"is_read": True, "read_at": datetime.utcnow().isoformat()}) \
                .eq(column, recipient_id) \
                .eq("is_read", False) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error marking all notifications as read for {recipient_id}: {e}")
            return 0
        return len(response.data or [])


# ============ Presentation helpers ============

_NOTIFICATION_ICONS = {
    NotificationType.URGENT.value: "🔴",
    NotificationType.MENTION.value: "👤",
    NotificationType.WHATSAPP.value: "📱",
    NotificationType.STATUS_UPDATE.value: "📊",
}


def get_notification_icon(notification_type: Union[NotificationType, str]) -> str:
    return _NOTIFICATION_ICONS.get(NotificationType(notification_type).value, "💬")


def format_notification_time(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """Relative label: agora, 5min, 3h, then dd/mm"""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    minutes = (now - timestamp).total_seconds() / 60
    if minutes < 1:
        return "agora"
    if minutes < 60:
        return f"{int(minutes)}min"
    if minutes < 24 * 60:
        return f"{int(minutes // 60)}h"
    return timestamp.strftime("%d/%m")
