"""
Notification Preference Service
Per-recipient channel settings stored in `notification_preferences`
"""
import logging
from typing import Optional, Union, Dict, Any
from datetime import datetime

from practice_messaging.models.notification import NotificationPreference, NotificationPreferenceUpdate

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = (
    "email_notifications",
    "push_notifications",
    "whatsapp_notifications",
    "urgent_only",
    "business_hours_only",
)


def recipient_column(is_client: bool) -> str:
    return "client_id" if is_client else "user_id"


class NotificationPreferenceService:
    """Read and upsert notification preferences"""

    def __init__(self, supabase):
        self.supabase = supabase

    async def get_preferences(
        self,
        recipient_id: str,
        is_client: bool = False
    ) -> Optional[NotificationPreference]:
        """
        Get preferences for a staff user or client.

        A recipient without a stored row gets synthesized defaults. None is
        returned only when the lookup itself fails.
        """
        try:
            response = self.supabase.table("notification_preferences") \
                .select("*") \
                .eq(recipient_column(is_client), recipient_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching notification preferences for {recipient_id}: {e}")
            return None

        if not response.data:
            logger.debug(f"ℹ️  No stored preferences for {recipient_id}, using defaults")
            return NotificationPreference.default_for(recipient_id, is_client)

        return NotificationPreference(**response.data[0])

    async def update_preferences(
        self,
        recipient_id: str,
        preferences: Union[NotificationPreferenceUpdate, Dict[str, Any]],
        is_client: bool = False
    ) -> NotificationPreference:
        """
        Upsert preferences (last write wins).

        Fields missing from `preferences` keep their current value, or the
        recipient's default when nothing is stored yet.

        Raises:
            ValueError: If a field value cannot be read as a boolean
            RuntimeError: If the upsert fails
        """
        if not isinstance(preferences, NotificationPreferenceUpdate):
            preferences = NotificationPreferenceUpdate(**preferences)
        changes = preferences.model_dump(exclude_none=True)

        current = await self.get_preferences(recipient_id, is_client) \
            or NotificationPreference.default_for(recipient_id, is_client)

        column = recipient_column(is_client)
        row = {field: getattr(current, field) for field in PREFERENCE_FIELDS}
        row.update(changes)
        row[column] = recipient_id
        row["updated_at"] = datetime.utcnow().isoformat()

        try:
            response = self.supabase.table("notification_preferences") \
                .upsert(row, on_conflict=column) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error updating notification preferences for {recipient_id}: {e}")
            raise RuntimeError(f"Failed to update notification preferences: {str(e)}")

        logger.info(f"✅ Notification preferences updated for {recipient_id}: {changes}")
        if response.data:
            return NotificationPreference(**response.data[0])
        return NotificationPreference(**row)
