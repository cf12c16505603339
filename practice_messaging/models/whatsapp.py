"""
WhatsApp Models
Pydantic models for the WhatsApp Business Platform: outbound requests and
results, plus the decoded shape of inbound webhook envelopes.
"""
import logging
from pydantic import BaseModel, Field, ValidationError
from typing import Optional, Dict, Any, List, Literal, Union, Callable

from practice_messaging.models.notification import MessageStatusValue

logger = logging.getLogger(__name__)


# ============================================
# OUTBOUND
# ============================================

class SendResult(BaseModel):
    """Outcome of an outbound provider call. Never raised, always returned."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MediaDownloadResult(BaseModel):
    success: bool
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data else 0


class SendWhatsAppRequest(BaseModel):
    """Request model for the staff send endpoint"""
    to: str = Field(..., description="Recipient phone number, any formatting")
    message_type: Literal["text", "document", "image"] = "text"
    text: Optional[str] = Field(None, description="Body for text messages")
    media_url: Optional[str] = Field(None, description="Public URL for document/image")
    filename: Optional[str] = None
    caption: Optional[str] = None
    conversation_id: Optional[str] = Field(None, description="Records the message on this conversation")

    class Config:
        json_schema_extra = {
            "example": {
                "to": "+55 (11) 99999-8888",
                "message_type": "text",
                "text": "Sua audiência foi confirmada para amanhã às 14h.",
                "conversation_id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
            }
        }


# ============================================
# INBOUND (webhook envelope)
# ============================================

class InboundMessageBase(BaseModel):
    from_phone: str = Field(..., description="Sender wa_id")
    provider_message_id: str
    timestamp: str = Field(..., description="Unix epoch seconds as sent by the provider")
    sender_name: Optional[str] = None

    @property
    def content(self) -> str:
        raise NotImplementedError

    @property
    def media_id(self) -> Optional[str]:
        return None

    @property
    def filename(self) -> Optional[str]:
        return None

    @property
    def mime_type(self) -> Optional[str]:
        return None


class InboundTextMessage(InboundMessageBase):
    kind: Literal["text"] = "text"
    body: str = ""

    @property
    def content(self) -> str:
        return self.body


class InboundDocumentMessage(InboundMessageBase):
    kind: Literal["document"] = "document"
    document_id: Optional[str] = None
    document_filename: Optional[str] = None
    document_mime_type: Optional[str] = None

    @property
    def content(self) -> str:
        return self.document_filename or "Documento"

    @property
    def media_id(self) -> Optional[str]:
        return self.document_id

    @property
    def filename(self) -> Optional[str]:
        return self.document_filename

    @property
    def mime_type(self) -> Optional[str]:
        return self.document_mime_type


class InboundImageMessage(InboundMessageBase):
    kind: Literal["image"] = "image"
    image_id: Optional[str] = None
    image_mime_type: Optional[str] = None
    caption: Optional[str] = None

    @property
    def content(self) -> str:
        return self.caption or "Imagem"

    @property
    def media_id(self) -> Optional[str]:
        return self.image_id

    @property
    def mime_type(self) -> Optional[str]:
        return self.image_mime_type


class InboundUnknownMessage(InboundMessageBase):
    kind: Literal["unknown"] = "unknown"
    original_type: str = "unknown"

    @property
    def content(self) -> str:
        return f"Mensagem do tipo: {self.original_type}"


InboundMessage = Union[InboundTextMessage, InboundDocumentMessage, InboundImageMessage, InboundUnknownMessage]


class StatusUpdate(BaseModel):
    provider_message_id: str
    status: MessageStatusValue
    timestamp: str
    recipient_id: Optional[str] = None

    class Config:
        use_enum_values = True


class ParsedWebhook(BaseModel):
    messages: List[InboundMessage] = Field(default_factory=list)
    statuses: List[StatusUpdate] = Field(default_factory=list)


def _common_fields(raw: Dict[str, Any], names: Dict[str, str]) -> Dict[str, Any]:
    sender = raw.get("from")
    return {
        "from_phone": sender,
        "provider_message_id": raw.get("id"),
        "timestamp": str(raw.get("timestamp", "")),
        "sender_name": names.get(sender),
    }


def _decode_text(raw: Dict[str, Any], names: Dict[str, str]) -> InboundMessage:
    return InboundTextMessage(body=(raw.get("text") or {}).get("body", ""), **_common_fields(raw, names))


def _decode_document(raw: Dict[str, Any], names: Dict[str, str]) -> InboundMessage:
    document = raw.get("document") or {}
    return InboundDocumentMessage(
        document_id=document.get("id"),
        document_filename=document.get("filename"),
        document_mime_type=document.get("mime_type"),
        **_common_fields(raw, names)
    )


def _decode_image(raw: Dict[str, Any], names: Dict[str, str]) -> InboundMessage:
    image = raw.get("image") or {}
    return InboundImageMessage(
        image_id=image.get("id"),
        image_mime_type=image.get("mime_type"),
        caption=image.get("caption"),
        **_common_fields(raw, names)
    )


def _decode_unknown(raw: Dict[str, Any], names: Dict[str, str]) -> InboundMessage:
    return InboundUnknownMessage(original_type=str(raw.get("type") or "unknown"), **_common_fields(raw, names))


_MESSAGE_DECODERS: Dict[str, Callable[[Dict[str, Any], Dict[str, str]], InboundMessage]] = {
    "text": _decode_text,
    "document": _decode_document,
    "image": _decode_image,
}


def parse_webhook_payload(payload: Dict[str, Any]) -> ParsedWebhook:
    """
    Flatten a provider envelope into inbound messages and status updates.

    Only `messages` field changes are read. Message kinds without a decoder
    become InboundUnknownMessage. Items that fail validation are skipped
    individually so one malformed entry never hides the rest.
    """
    parsed = ParsedWebhook()

    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue

            value = change.get("value") or {}
            names = {
                contact.get("wa_id"): (contact.get("profile") or {}).get("name")
                for contact in value.get("contacts") or []
            }

            for raw in value.get("messages") or []:
                decoder = _MESSAGE_DECODERS.get(raw.get("type"), _decode_unknown)
                try:
                    parsed.messages.append(decoder(raw, names))
                except ValidationError as e:
                    logger.warning(f"⚠️ Skipping malformed WhatsApp message {raw.get('id')}: {e}")

            for raw in value.get("statuses") or []:
                try:
                    parsed.statuses.append(StatusUpdate(
                        provider_message_id=raw.get("id"),
                        status=raw.get("status"),
                        timestamp=str(raw.get("timestamp", "")),
                        recipient_id=raw.get("recipient_id"),
                    ))
                except ValidationError as e:
                    logger.warning(f"⚠️ Skipping malformed WhatsApp status {raw.get('id')}: {e}")

    return parsed
