"""
Conversation Models

Pydantic models for conversations, participants and messages.
"""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from enum import Enum


class ConversationType(str, Enum):
    """Kind of conversation thread"""
    GENERAL = "general"
    MATTER_SPECIFIC = "matter_specific"
    CONSULTATION = "consultation"
    URGENT = "urgent"
    WHATSAPP = "whatsapp"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    CLOSED = "closed"


class ConversationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    IMAGE = "image"
    DOCUMENT = "document"
    SYSTEM = "system"
    WHATSAPP = "whatsapp"


# Types a participant may send directly. System and WhatsApp messages are
# written by the server only.
USER_MESSAGE_TYPES = frozenset({
    MessageType.TEXT.value, MessageType.FILE.value, MessageType.IMAGE.value, MessageType.DOCUMENT.value
})


class ParticipantType(str, Enum):
    LAWYER = "lawyer"
    STAFF = "staff"
    CLIENT = "client"
    ADMIN = "admin"


class ParticipantRole(str, Enum):
    OWNER = "owner"
    MODERATOR = "moderator"
    PARTICIPANT = "participant"


class WhatsAppDeliveryStatus(str, Enum):
    """Provider-side delivery state of a WhatsApp message"""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# ============================================
# CONVERSATION
# ============================================

class Conversation(BaseModel):
    """Conversation row as stored in the `conversations` table"""
    id: str = Field(..., description="Conversation UUID")
    law_firm_id: str = Field(..., description="Tenant (law firm) UUID")
    matter_id: Optional[str] = Field(None, description="Optional matter link")
    client_id: Optional[str] = Field(None, description="Client the conversation belongs to")
    title: str = Field(..., description="Conversation title")
    description: Optional[str] = None
    topic: Optional[str] = Field(None, description="Routing topic (Geral, Urgente, Documentos...)")
    conversation_type: ConversationType = ConversationType.GENERAL
    status: ConversationStatus = ConversationStatus.ACTIVE
    priority: ConversationPriority = ConversationPriority.NORMAL
    whatsapp_enabled: bool = False
    whatsapp_phone: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class ConversationCreate(BaseModel):
    """Schema for staff-initiated conversation creation"""
    client_id: str = Field(..., description="Client participant UUID")
    title: str = Field(..., min_length=1, max_length=255)
    matter_id: Optional[str] = None
    topic: Optional[str] = None
    conversation_type: ConversationType = ConversationType.GENERAL
    priority: ConversationPriority = ConversationPriority.NORMAL
    whatsapp_phone: Optional[str] = Field(None, description="Enables WhatsApp on the thread when set")

    class Config:
        json_schema_extra = {
            "example": {
                "client_id": "c1b2c3d4-e5f6-7890-abcd-ef1234567890",
                "title": "Revisão do contrato de locação",
                "conversation_type": "matter_specific",
                "priority": "high"
            }
        }


class ConversationStatusUpdate(BaseModel):
    status: ConversationStatus


class ConversationParticipant(BaseModel):
    """Link between a conversation and a user or client"""
    id: Optional[str] = None
    conversation_id: str
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    participant_type: ParticipantType
    role: ParticipantRole = ParticipantRole.PARTICIPANT
    joined_at: Optional[datetime] = None
    last_read_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def _exactly_one_member(self):
        if bool(self.user_id) == bool(self.client_id):
            raise ValueError("participant must reference exactly one of user_id or client_id")
        return self


# ============================================
# MESSAGE
# ============================================

class FileMetadata(BaseModel):
    url: str
    name: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None


class Message(BaseModel):
    """
    Message row as stored in the `messages` table.

    Non-system messages carry exactly one sender: a staff user or a client.
    System messages have no human sender.
    """
    id: Optional[str] = Field(None, description="Message UUID (assigned by the store)")
    conversation_id: str
    sender_user_id: Optional[str] = None
    sender_client_id: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    content: str = ""
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    whatsapp_message_id: Optional[str] = None
    whatsapp_status: Optional[WhatsAppDeliveryStatus] = None
    is_edited: bool = False
    is_deleted: bool = False
    reply_to_id: Optional[str] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def _check_sender(self):
        has_user = bool(self.sender_user_id)
        has_client = bool(self.sender_client_id)
        if has_user and has_client:
            raise ValueError("message cannot have both a user and a client sender")
        if self.message_type != MessageType.SYSTEM.value and not (has_user or has_client):
            raise ValueError("non-system messages require a sender")
        return self

    @property
    def sender_id(self) -> Optional[str]:
        return self.sender_user_id or self.sender_client_id

    @property
    def is_from_client(self) -> bool:
        return bool(self.sender_client_id)

    def attach_file(self, file: Optional[FileMetadata]) -> "Message":
        if file:
            self.file_url = file.url
            self.file_name = file.name
            self.file_size = file.size
            self.file_type = file.mime_type
        return self

    def to_row(self) -> Dict[str, Any]:
        """Column mapping used for inserts (store-assigned fields dropped when empty)"""
        row = self.model_dump(mode="json", exclude={"id", "created_at", "read_at"})
        if self.id:
            row["id"] = self.id
        if self.created_at:
            row["created_at"] = self.created_at.isoformat()
        return row


class MessageCreate(BaseModel):
    """Schema for sending a message through the REST API"""
    content: str = Field(..., min_length=1, description="Message content")
    message_type: MessageType = MessageType.TEXT
    file: Optional[FileMetadata] = None
    reply_to_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "content": "Bom dia, segue a minuta para revisão.",
                "message_type": "text"
            }
        }

    @model_validator(mode="after")
    def _participant_message_type(self):
        if MessageType(self.message_type).value not in USER_MESSAGE_TYPES:
            raise ValueError("message_type must be text, file, image or document")
        return self
