"""
Notification API Endpoints
Unread notifications, read state and per-recipient preferences
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Depends, status

from practice_messaging.api.deps import get_notification_service, get_preference_service
from practice_messaging.auth.dependencies import get_current_user
from practice_messaging.models.notification import (
    ChatNotification, NotificationPreference, NotificationPreferenceUpdate
)
from practice_messaging.models.user import User
from practice_messaging.services.notification_service import NotificationService
from practice_messaging.services.preference_service import NotificationPreferenceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get(
    "/unread",
    response_model=List[ChatNotification],
    summary="List unread notifications"
)
async def list_unread(
    current_user: User = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service)
):
    return await notifications.get_unread_notifications(current_user.user_id, current_user.is_client)


@router.post(
    "/read-all",
    summary="Mark all notifications read"
)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service)
):
    count = await notifications.mark_all_as_read(current_user.user_id, current_user.is_client)
    return {"success": True, "marked": count}


@router.post(
    "/{notification_id}/read",
    summary="Mark one notification read"
)
async def mark_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    notifications: NotificationService = Depends(get_notification_service)
):
    if not await notifications.mark_as_read(notification_id, current_user.user_id, current_user.is_client):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found"
        )
    return {"success": True, "notification_id": notification_id}


@router.get(
    "/preferences",
    response_model=NotificationPreference,
    summary="Get notification preferences",
    description="Stored preferences, or the defaults for the caller's recipient kind"
)
async def get_preferences(
    current_user: User = Depends(get_current_user),
    preferences: NotificationPreferenceService = Depends(get_preference_service)
):
    result = await preferences.get_preferences(current_user.user_id, current_user.is_client)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification preferences are temporarily unavailable"
        )
    return result


@router.put(
    "/preferences",
    response_model=NotificationPreference,
    summary="Update notification preferences",
    description="Partial update; omitted fields keep their current value"
)
async def update_preferences(
    request: NotificationPreferenceUpdate,
    current_user: User = Depends(get_current_user),
    preferences: NotificationPreferenceService = Depends(get_preference_service)
):
    try:
        return await preferences.update_preferences(current_user.user_id, request, current_user.is_client)
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )
