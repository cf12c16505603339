"""
FastAPI Authentication Dependencies
"""
import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from practice_messaging.auth.jwt_handler import extract_user_from_token, JWTValidationError
from practice_messaging.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(
    scheme_name="BearerAuth",
    description="Enter your JWT token from authentication",
    auto_error=True
)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    FastAPI dependency to get the current authenticated caller.

    Raises:
        HTTPException: 401 if token is missing or invalid
                      403 if token is expired
    """
    if not credentials:
        logger.warning("Authorization header missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = extract_user_from_token(credentials.credentials)
    except JWTValidationError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user.is_token_expired:
        logger.warning(f"Expired token used by: {user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_current_staff(user: User = Depends(get_current_user)) -> User:
    """Same as get_current_user but rejects portal clients"""
    if user.is_client:
        logger.warning(f"Client {user.user_id} attempted a staff-only operation")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required",
        )
    return user
