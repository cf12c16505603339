"""Business logic services"""
from .conversation_service import ConversationService
from .message_status_service import MessageStatusService
from .notification_service import NotificationService
from .notification_sink import NotificationEvent, NotificationSink
from .preference_service import NotificationPreferenceService
from .realtime_registry import ChannelRegistry, build_registry
from .realtime_service import RealtimeService
from .whatsapp_service import WhatsAppService, get_whatsapp_service
from .whatsapp_webhook_service import WhatsAppWebhookRouter

__all__ = [
    "ConversationService",
    "MessageStatusService",
    "NotificationService",
    "NotificationEvent",
    "NotificationSink",
    "NotificationPreferenceService",
    "ChannelRegistry",
    "build_registry",
    "RealtimeService",
    "WhatsAppService",
    "get_whatsapp_service",
    "WhatsAppWebhookRouter",
]
