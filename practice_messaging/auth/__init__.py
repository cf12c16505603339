"""
Authentication Module

Provides JWT authentication for staff users and portal clients using Supabase.
"""
from practice_messaging.auth.jwt_handler import decode_jwt_token, extract_user_from_token, JWTValidationError
from practice_messaging.auth.dependencies import get_current_user, get_current_staff

__all__ = [
    "decode_jwt_token",
    "extract_user_from_token",
    "JWTValidationError",
    "get_current_user",
    "get_current_staff",
]
