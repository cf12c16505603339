"""
API Dependencies
Service wiring shared by the routers. Long-lived collaborators (store
client, realtime registry, notification sink, WhatsApp client) live on
`app.state`; request-scoped services are built from them.
"""
from fastapi import Depends, HTTPException, Request, status

from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.message_status_service import MessageStatusService
from practice_messaging.services.notification_channels import EmailChannel, PushChannel, WhatsAppChannel
from practice_messaging.services.notification_service import NotificationService
from practice_messaging.services.notification_sink import NotificationSink
from practice_messaging.services.preference_service import NotificationPreferenceService
from practice_messaging.services.realtime_registry import ChannelRegistry
from practice_messaging.services.realtime_service import RealtimeService
from practice_messaging.services.whatsapp_service import WhatsAppService
from practice_messaging.services.whatsapp_webhook_service import WhatsAppWebhookRouter


def build_notification_service(supabase, whatsapp: WhatsAppService) -> NotificationService:
    return NotificationService(
        supabase,
        preferences=NotificationPreferenceService(supabase),
        channels=[EmailChannel(), PushChannel(), WhatsAppChannel(whatsapp)],
    )


def get_supabase(request: Request):
    supabase = request.app.state.supabase
    if supabase is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database is not configured"
        )
    return supabase


def get_registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry


def get_sink(request: Request) -> NotificationSink:
    return request.app.state.sink


def get_whatsapp(request: Request) -> WhatsAppService:
    return request.app.state.whatsapp


def get_conversation_service(supabase=Depends(get_supabase)) -> ConversationService:
    return ConversationService(supabase)


def get_status_service(supabase=Depends(get_supabase)) -> MessageStatusService:
    return MessageStatusService(supabase)


def get_preference_service(supabase=Depends(get_supabase)) -> NotificationPreferenceService:
    return NotificationPreferenceService(supabase)


def get_notification_service(
    supabase=Depends(get_supabase),
    whatsapp: WhatsAppService = Depends(get_whatsapp)
) -> NotificationService:
    return build_notification_service(supabase, whatsapp)


def get_realtime_service(
    registry: ChannelRegistry = Depends(get_registry),
    sink: NotificationSink = Depends(get_sink),
    conversations: ConversationService = Depends(get_conversation_service)
) -> RealtimeService:
    return RealtimeService(registry, conversations, sink)


def get_webhook_router(
    supabase=Depends(get_supabase),
    whatsapp: WhatsAppService = Depends(get_whatsapp),
    realtime: RealtimeService = Depends(get_realtime_service)
) -> WhatsAppWebhookRouter:
    return WhatsAppWebhookRouter(
        supabase,
        whatsapp=whatsapp,
        conversations=realtime.conversations,
        realtime=realtime,
    )
