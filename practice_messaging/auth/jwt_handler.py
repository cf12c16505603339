"""
JWT Token Handler

Validates Supabase JWTs and turns their claims into the caller.
Uses python-jose for JWT operations.
"""
import logging
from typing import Dict, Any
from jose import jwt, JWTError

from practice_messaging.config import settings
from practice_messaging.models.conversation import ParticipantType
from practice_messaging.models.user import User

logger = logging.getLogger(__name__)

CALLER_TYPES = {member.value for member in ParticipantType}


class JWTValidationError(Exception):
    """Custom exception for JWT validation errors"""
    pass


def decode_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify signature, audience and expiry of a Supabase JWT.

    Raises:
        JWTValidationError: If auth is not configured or the token is invalid,
            expired or has no `exp` claim
    """
    if not settings.is_auth_configured:
        logger.error("Supabase JWT configuration is missing")
        raise JWTValidationError("Authentication service is not configured")

    if not token:
        raise JWTValidationError("Token is required")

    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience="authenticated",
            options={"require_exp": True},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token has expired")
        raise JWTValidationError("Token has expired")
    except jwt.JWTClaimsError as e:
        logger.warning(f"JWT claims error: {e}")
        raise JWTValidationError("Invalid token claims")
    except JWTError as e:
        logger.warning(f"JWT validation error: {e}")
        raise JWTValidationError("Invalid token")


def read_caller_metadata(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return `app_metadata` with a checked `user_type`.

    A missing type means staff. Staff callers act inside one law firm, so
    their token must name it; portal clients are scoped by conversation.
    """
    app_metadata = dict(payload.get("app_metadata") or {})
    caller_type = app_metadata.get("user_type") or ParticipantType.STAFF.value

    if caller_type not in CALLER_TYPES:
        raise JWTValidationError(f"Unknown caller type: {caller_type}")

    if caller_type != ParticipantType.CLIENT.value and not app_metadata.get("law_firm_id"):
        raise JWTValidationError("Staff token has no law_firm_id")

    app_metadata["user_type"] = caller_type
    return app_metadata


def extract_user_from_token(token: str) -> User:
    """
    Decode the token and build the caller.

    Raises:
        JWTValidationError: If the token is invalid, lacks the sub/email
            claims or names an unknown caller type
    """
    payload = decode_jwt_token(token)

    user_id = payload.get("sub")
    email = payload.get("email")

    if not user_id:
        raise JWTValidationError("User ID (sub) not found in token")

    if not email:
        raise JWTValidationError("Email not found in token")

    app_metadata = read_caller_metadata(payload)
    user_metadata = payload.get("user_metadata") or {}

    return User(
        user_id=user_id,
        email=email,
        display_name=user_metadata.get("full_name") or payload.get("display_name", ""),
        aud=payload.get("aud"),
        role=payload.get("role"),
        law_firm_id=app_metadata.get("law_firm_id"),
        exp=payload.get("exp"),
        iat=payload.get("iat"),
        user_metadata=user_metadata,
        app_metadata=app_metadata,
    )
