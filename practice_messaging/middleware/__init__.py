"""
Middleware Package
Request validation dependencies for the application
"""
from practice_messaging.middleware.webhook_signature import verify_whatsapp_signature

__all__ = ['verify_whatsapp_signature']
