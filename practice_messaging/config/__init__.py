"""Application configuration"""
from practice_messaging.config.settings import settings, Settings

__all__ = ["settings", "Settings"]
