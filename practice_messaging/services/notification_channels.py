"""
Notification Channels
Delivery mechanisms for chat notifications: email (SMTP), push (gateway
webhook) and WhatsApp (staff only). Each sender raises on failure; the
dispatcher isolates channels from each other.
"""
import html
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, Any

import aiosmtplib
import httpx

from practice_messaging.config import settings
from practice_messaging.models.notification import ChatNotification, NotificationChannel, NotificationPreference
from practice_messaging.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)


class RecipientDirectory:
    """Looks up contact details for staff users (`users`) and clients (`clients`)"""

    def __init__(self, supabase):
        self.supabase = supabase

    async def get_contact(self, recipient_id: str, is_client: bool = False) -> Dict[str, Any]:
        table = "clients" if is_client else "users"
        response = self.supabase.table(table) \
            .select("*") \
            .eq("id", recipient_id) \
            .limit(1) \
            .execute()
        if not response.data:
            raise LookupError(f"{table} row {recipient_id} not found")
        return response.data[0]


class NotificationChannelSender:
    """Base class for one delivery channel"""

    channel: NotificationChannel

    async def send(
        self,
        notification: ChatNotification,
        preferences: NotificationPreference,
        contact: Dict[str, Any]
    ) -> None:
        raise NotImplementedError


class EmailChannel(NotificationChannelSender):
    channel = NotificationChannel.EMAIL

    def __init__(self, smtp_factory=None):
        self._smtp_factory = smtp_factory or (lambda: aiosmtplib.SMTP(
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            timeout=10
        ))

    def build_message(self, notification: ChatNotification, to_email: str) -> MIMEMultipart:
        text_body = f"{notification.title}\n\n{notification.content}\n"
        title = html.escape(notification.title)
        content = html.escape(notification.content)

        html_body = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"><title>{title}</title></head>
        <body style="margin:0; padding:0; background-color:#f3f4f6;">
            <div style="max-width:600px; margin:0 auto; padding:24px;">
                <div style="background-color:#ffffff; border-radius:8px; padding:24px; font-family:Arial, sans-serif;">
                    <h2 style="margin-top:0; color:#1d4ed8; font-size:20px;">{title}</h2>
                    <p style="font-size:14px; color:#111827;">{content}</p>
                    <p style="font-size:12px; color:#6b7280; margin-top:24px;">
                        Mensagem automática. Acesse o portal para responder.
                    </p>
                </div>
            </div>
        </body>
        </html>
        """

        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.title
        msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    async def send(self, notification, preferences, contact) -> None:
        if not settings.is_smtp_configured:
            raise RuntimeError("SMTP is not configured")

        to_email = contact.get("email")
        if not to_email:
            raise RuntimeError(f"Recipient {notification.recipient_id} has no email address")

        smtp = self._smtp_factory()
        await smtp.connect()
        try:
            if settings.SMTP_USER:
                await smtp.login(settings.SMTP_USER, settings.SMTP_PASS)
            await smtp.send_message(self.build_message(notification, to_email))
        finally:
            await smtp.quit()

        logger.info(f"📧 Email notification {notification.id} sent to {to_email}")


class PushChannel(NotificationChannelSender):
    channel = NotificationChannel.PUSH

    def __init__(self, gateway_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.gateway_url = gateway_url if gateway_url is not None else settings.PUSH_GATEWAY_URL
        self.timeout = 10.0
        self._transport = transport

    async def send(self, notification, preferences, contact) -> None:
        if not self.gateway_url:
            raise RuntimeError("Push gateway is not configured")

        headers = {"Content-Type": "application/json"}
        if settings.PUSH_GATEWAY_KEY:
            headers["X-Api-Key"] = settings.PUSH_GATEWAY_KEY

        payload = {
            "recipient_id": notification.recipient_id,
            "title": notification.title,
            "body": notification.content,
            "data": {
                "notification_id": notification.id,
                "conversation_id": notification.conversation_id,
                "message_id": notification.message_id,
                "type": notification.notification_type,
            },
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.gateway_url, json=payload, headers=headers)
            response.raise_for_status()

        logger.info(f"📲 Push notification {notification.id} sent to {notification.recipient_id}")


class WhatsAppChannel(NotificationChannelSender):
    """WhatsApp alerts for staff. Clients are never notified through this channel."""

    channel = NotificationChannel.WHATSAPP

    def __init__(self, whatsapp: WhatsAppService):
        self.whatsapp = whatsapp

    async def send(self, notification, preferences, contact) -> None:
        phone = contact.get("whatsapp_phone") or contact.get("phone")
        if not phone:
            raise RuntimeError(f"Recipient {notification.recipient_id} has no phone number")

        result = await self.whatsapp.send_text_message(phone, f"{notification.title}\n\n{notification.content}")
        if not result.success:
            raise RuntimeError(f"WhatsApp send failed: {result.error}")
