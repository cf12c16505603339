"""
WhatsApp Service
Thin client for the WhatsApp Business Platform (Cloud API): outbound text,
template, document and image messages, media download and webhook
signature verification.
"""
import hashlib
import hmac
import logging
import httpx
from typing import Optional, Dict, Any, List, Union

from practice_messaging.config import settings
from practice_messaging.models.whatsapp import SendResult, MediaDownloadResult
from practice_messaging.utils.phone import format_phone_number, is_valid_phone_number

logger = logging.getLogger(__name__)


class WhatsAppService:
    """Service for sending WhatsApp messages and downloading media"""

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        base_url: Optional[str] = None,
        business_account_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize WhatsApp Service

        Args:
            phone_number_id: Sending phone number id (default: WHATSAPP_PHONE_NUMBER_ID)
            access_token: Bearer token, also the webhook HMAC key (default: WHATSAPP_ACCESS_TOKEN)
            api_version: Graph API version, with or without leading 'v'
            base_url: Graph API host (default: WHATSAPP_API_BASE_URL)
            business_account_id: WhatsApp Business Account id
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token if access_token is not None else settings.WHATSAPP_ACCESS_TOKEN
        self.business_account_id = business_account_id or settings.WHATSAPP_BUSINESS_ACCOUNT_ID
        version = (api_version or settings.whatsapp_api_version).strip().lstrip("vV")
        host = (base_url or settings.WHATSAPP_API_BASE_URL).rstrip("/")
        self.base_url = f"{host}/v{version}"
        self.timeout = 30.0
        self._transport = transport

        if not self.is_configured:
            logger.warning("⚠️ WhatsApp is not configured - outbound messages will fail softly")
        else:
            logger.info(f"WhatsApp Service initialized with base URL: {self.base_url}")

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def _get_headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.access_token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ============ Phone helpers ============

    @staticmethod
    def format_phone_number(phone: str) -> str:
        return format_phone_number(phone)

    @staticmethod
    def is_valid_phone_number(phone: str) -> bool:
        return is_valid_phone_number(phone)

    # ============ Outbound ============

    async def send_text_message(self, to: str, message: str) -> SendResult:
        return await self._send_message({
            "to": format_phone_number(to),
            "type": "text",
            "text": {"body": message},
        })

    async def send_template_message(
        self,
        to: str,
        template_name: str,
        language_code: str = "pt_BR",
        components: Optional[List[Dict[str, Any]]] = None
    ) -> SendResult:
        return await self._send_message({
            "to": format_phone_number(to),
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components or [],
            },
        })

    async def send_document(
        self,
        to: str,
        document_url: str,
        filename: str,
        caption: Optional[str] = None
    ) -> SendResult:
        document = {"link": document_url, "filename": filename}
        if caption:
            document["caption"] = caption

        return await self._send_message({
            "to": format_phone_number(to),
            "type": "document",
            "document": document,
        })

    async def send_image(self, to: str, image_url: str, caption: Optional[str] = None) -> SendResult:
        image = {"link": image_url}
        if caption:
            image["caption"] = caption

        return await self._send_message({
            "to": format_phone_number(to),
            "type": "image",
            "image": image,
        })

    async def _send_message(self, message: Dict[str, Any]) -> SendResult:
        """POST one message envelope. Errors come back as SendResult(success=False)."""
        if not self.is_configured:
            logger.error("❌ Cannot send WhatsApp message: WhatsApp is not configured")
            return SendResult(success=False, error="WhatsApp is not configured")

        url = f"{self.base_url}/{self.phone_number_id}/messages"
        payload = {"messaging_product": "whatsapp", **message}

        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=self._get_headers())
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"❌ WhatsApp API request error: {e}")
            return SendResult(success=False, error="Network error")
        except ValueError as e:
            logger.error(f"❌ WhatsApp API returned a non-JSON response: {e}")
            return SendResult(success=False, error="Invalid response from WhatsApp API")

        if response.is_success and data.get("messages"):
            message_id = data["messages"][0].get("id")
            logger.info(f"✅ WhatsApp {message['type']} message sent to {message['to']}: {message_id}")
            return SendResult(success=True, message_id=message_id)

        error = (data.get("error") or {}).get("message") or "Unknown error"
        logger.error(f"❌ WhatsApp API error (HTTP {response.status_code}): {error}")
        return SendResult(success=False, error=error)

    # ============ Media ============

    async def download_media(self, media_id: str) -> MediaDownloadResult:
        """
        Download inbound media: resolve the short-lived URL, then fetch bytes.
        """
        if not self.is_configured:
            return MediaDownloadResult(success=False, error="WhatsApp is not configured")

        try:
            async with self._client() as client:
                meta_response = await client.get(
                    f"{self.base_url}/{media_id}",
                    headers=self._get_headers(json_body=False)
                )
                if not meta_response.is_success:
                    logger.error(f"❌ Failed to resolve media URL for {media_id}: HTTP {meta_response.status_code}")
                    return MediaDownloadResult(success=False, error="Failed to get media URL")

                media_info = meta_response.json()
                media_url = media_info.get("url")
                if not media_url:
                    return MediaDownloadResult(success=False, error="Failed to get media URL")

                media_response = await client.get(media_url, headers=self._get_headers(json_body=False))
                if not media_response.is_success:
                    logger.error(f"❌ Failed to download media {media_id}: HTTP {media_response.status_code}")
                    return MediaDownloadResult(success=False, error="Failed to download media")

                logger.info(f"📥 Downloaded WhatsApp media {media_id} ({len(media_response.content)} bytes)")
                return MediaDownloadResult(
                    success=True,
                    data=media_response.content,
                    mime_type=media_info.get("mime_type"),
                )

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Error downloading WhatsApp media {media_id}: {e}")
            return MediaDownloadResult(success=False, error="Download failed")

    # ============ Webhook ============

    def verify_webhook_signature(self, body: Union[bytes, str], signature: Optional[str]) -> bool:
        """
        Check `X-Hub-Signature-256` against HMAC-SHA256(body) keyed by the access token.
        """
        if not self.access_token or not signature:
            return False

        raw = body.encode("utf-8") if isinstance(body, str) else body
        digest = hmac.new(self.access_token.encode("utf-8"), raw, hashlib.sha256).hexdigest()
        return hmac.compare_digest(f"sha256={digest}", signature)

    @staticmethod
    def get_default_templates() -> Dict[str, Dict[str, Any]]:
        """Pre-approved templates used by Brazilian law firms"""
        def body(*names: str) -> List[Dict[str, Any]]:
            return [{
                "type": "body",
                "parameters": [{"type": "text", "text": f"{{{{{name}}}}}"} for name in names],
            }]

        return {
            "welcome": {
                "name": "welcome_client",
                "components": body("client_name", "law_firm_name"),
            },
            "appointment_reminder": {
                "name": "appointment_reminder",
                "components": body("client_name", "appointment_date", "appointment_time"),
            },
            "document_received": {
                "name": "document_received",
                "components": body("client_name", "document_name"),
            },
            "case_update": {
                "name": "case_update",
                "components": body("client_name", "case_number", "update_description"),
            },
        }


# Singleton instance
_whatsapp_service: Optional[WhatsAppService] = None


def get_whatsapp_service() -> WhatsAppService:
    """Get or create the WhatsAppService singleton configured from settings"""
    global _whatsapp_service
    if _whatsapp_service is None:
        _whatsapp_service = WhatsAppService()
    return _whatsapp_service
