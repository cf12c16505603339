"""
Application Configuration
Centralized configuration management using environment variables
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class Settings:
    """Application settings loaded from environment variables"""

    # Supabase Configuration
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_KEY: str = os.getenv("SUPABASE_KEY", "")  # Anon key for client
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    SUPABASE_JWT_SECRET: str = os.getenv("SUPABASE_JWT_SECRET", "")

    # WhatsApp Business Platform (Cloud API)
    WHATSAPP_BUSINESS_ACCOUNT_ID: str = os.getenv("WHATSAPP_BUSINESS_ACCOUNT_ID", "")
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_WEBHOOK_VERIFY_TOKEN: str = os.getenv("WHATSAPP_WEBHOOK_VERIFY_TOKEN", "")
    WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "17.0")
    WHATSAPP_API_BASE_URL: str = os.getenv("WHATSAPP_API_BASE_URL", "https://graph.facebook.com")

    # Service hours
    BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo")
    FIRM_NAME: str = os.getenv("FIRM_NAME", "Prima Facie")

    # SMTP Configuration (email notifications)
    SMTP_HOST: str = os.getenv("SMTP_HOST", "")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASS: str = os.getenv("SMTP_PASS", "")
    SMTP_FROM_NAME: str = os.getenv("SMTP_FROM_NAME", "Prima Facie")
    SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "")

    # Push gateway (push notifications)
    PUSH_GATEWAY_URL: str = os.getenv("PUSH_GATEWAY_URL", "")
    PUSH_GATEWAY_KEY: Optional[str] = os.getenv("PUSH_GATEWAY_KEY")

    # Realtime Configuration
    REALTIME_BACKEND: str = os.getenv("REALTIME_BACKEND", "memory").lower()
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD")

    # CORS Configuration
    CORS_ORIGINS: List[str] = _split_origins(
        os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    )

    @property
    def whatsapp_api_version(self) -> str:
        """API version without the leading 'v' (both '17.0' and 'v17.0' are accepted)"""
        return self.WHATSAPP_API_VERSION.strip().lstrip("vV")

    @property
    def is_whatsapp_configured(self) -> bool:
        """Check if outbound WhatsApp configuration is present"""
        return bool(self.WHATSAPP_PHONE_NUMBER_ID and self.WHATSAPP_ACCESS_TOKEN)

    @property
    def is_supabase_configured(self) -> bool:
        """Check if Supabase configuration is present"""
        return bool(self.SUPABASE_URL and (self.SUPABASE_SERVICE_KEY or self.SUPABASE_KEY))

    @property
    def is_auth_configured(self) -> bool:
        """Check if JWT verification can run"""
        return bool(self.SUPABASE_JWT_SECRET)

    @property
    def is_smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_FROM_EMAIL)


# Global settings instance
settings = Settings()
