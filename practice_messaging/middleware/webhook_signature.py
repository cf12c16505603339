"""
Webhook Signature Middleware
Validates WhatsApp webhook deliveries using the X-Hub-Signature-256 header
"""
from fastapi import Request, HTTPException, status
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


async def verify_whatsapp_signature(request: Request) -> bytes:
    """
    Dependency that checks the HMAC-SHA256 signature of the raw body.

    Returns:
        The raw request body, so the endpoint parses exactly the bytes that
        were verified

    Raises:
        HTTPException: 401 if the signature is missing or does not match
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    whatsapp = request.app.state.whatsapp
    client_host = request.client.host if request.client else "unknown"

    if not signature:
        logger.warning(f"🚫 WhatsApp webhook from {client_host} missing {SIGNATURE_HEADER} header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    if not whatsapp.verify_webhook_signature(body, signature):
        logger.warning(f"🚫 Invalid WhatsApp webhook signature from {client_host}: {signature[:20]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    logger.debug(f"✅ WhatsApp webhook signature verified from {client_host}")
    return body
