"""
Notification Models

Pydantic models for notification preferences, chat notifications and
per-recipient message status.
"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class NotificationChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    WHATSAPP = "whatsapp"


class NotificationType(str, Enum):
    NEW_MESSAGE = "new_message"
    MENTION = "mention"
    URGENT = "urgent"
    WHATSAPP = "whatsapp"
    STATUS_UPDATE = "status_update"


class MessageStatusValue(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class NotificationPreference(BaseModel):
    """Per-recipient delivery settings"""
    id: Optional[str] = None
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    email_notifications: bool = True
    push_notifications: bool = True
    whatsapp_notifications: bool = False
    urgent_only: bool = False
    business_hours_only: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def recipient_id(self) -> Optional[str]:
        return self.user_id or self.client_id

    @classmethod
    def default_for(cls, recipient_id: str, is_client: bool = False) -> "NotificationPreference":
        """
        Synthesized preferences for recipients with no stored row.

        Staff get email and push, WhatsApp off, at any hour. Clients get the
        same channels but only during business hours.
        """
        now = datetime.utcnow()
        return cls(
            id=f"default-{recipient_id}",
            user_id=None if is_client else recipient_id,
            client_id=recipient_id if is_client else None,
            email_notifications=True,
            push_notifications=True,
            whatsapp_notifications=False,
            urgent_only=False,
            business_hours_only=is_client,
            created_at=now,
            updated_at=now,
        )


class NotificationPreferenceUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value"""
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    whatsapp_notifications: Optional[bool] = None
    urgent_only: Optional[bool] = None
    business_hours_only: Optional[bool] = None

    class Config:
        json_schema_extra = {
            "example": {
                "whatsapp_notifications": True,
                "urgent_only": False
            }
        }


class ChatNotification(BaseModel):
    """Notification row as stored in the `chat_notifications` table"""
    id: str
    recipient_user_id: Optional[str] = None
    recipient_client_id: Optional[str] = None
    conversation_id: str
    message_id: str
    notification_type: NotificationType
    title: str
    content: str
    is_read: bool = False
    is_sent: bool = False
    sent_via: List[NotificationChannel] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    @property
    def recipient_id(self) -> Optional[str]:
        return self.recipient_user_id or self.recipient_client_id


class MessageStatus(BaseModel):
    """Delivery/read state of one message for one recipient"""
    message_id: str
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    status: MessageStatusValue
    timestamp: datetime

    class Config:
        use_enum_values = True
