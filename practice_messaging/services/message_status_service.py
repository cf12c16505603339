"""
Message Status Service
Per-message, per-recipient delivery/read state stored in `message_status`.

Writes go through a merge policy. The default policy is last-write-wins:
a replayed "delivered" arriving after "read" overwrites it. Ordering is not
enforced because provider events carry no sequence number we can trust.
"""
import logging
from typing import List, Optional, Union
from datetime import datetime

from practice_messaging.models.notification import MessageStatus, MessageStatusValue
from practice_messaging.services.preference_service import recipient_column

logger = logging.getLogger(__name__)


class StatusMergePolicy:
    """Strategy that persists one status observation"""

    def write(self, supabase, record: MessageStatus) -> None:
        raise NotImplementedError


class LastWriteWinsPolicy(StatusMergePolicy):
    """Upsert keyed on (message, recipient); newest write replaces the row"""

    def write(self, supabase, record: MessageStatus) -> None:
        column = "client_id" if record.client_id else "user_id"
        supabase.table("message_status") \
            .upsert(record.model_dump(mode="json"), on_conflict=f"message_id,{column}") \
            .execute()


class MessageStatusService:
    """Record and read per-recipient message status"""

    def __init__(self, supabase, policy: Optional[StatusMergePolicy] = None):
        self.supabase = supabase
        self.policy = policy or LastWriteWinsPolicy()

    async def update_status(
        self,
        message_id: str,
        recipient_id: str,
        status: Union[MessageStatusValue, str],
        is_client: bool = False,
        timestamp: Optional[datetime] = None
    ) -> bool:
        """
        Upsert the status of `message_id` for one recipient.

        Failures are logged and reported through the return value only; this
        is bookkeeping and must never break the caller's message path.
        """
        try:
            record = MessageStatus(
                message_id=message_id,
                user_id=None if is_client else recipient_id,
                client_id=recipient_id if is_client else None,
                status=status,
                timestamp=timestamp or datetime.utcnow(),
            )
            self.policy.write(self.supabase, record)
        except Exception as e:
            logger.error(f"❌ Error updating message status {message_id} -> {status}: {e}")
            return False

        logger.debug(f"📬 Message status updated: message={message_id}, recipient={recipient_id}, status={record.status}")
        return True

    async def get_statuses(self, message_id: str) -> List[MessageStatus]:
        try:
            response = self.supabase.table("message_status") \
                .select("*") \
                .eq("message_id", message_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching statuses for message {message_id}: {e}")
            return []

        return [MessageStatus(**row) for row in response.data or []]

    async def get_status(
        self,
        message_id: str,
        recipient_id: str,
        is_client: bool = False
    ) -> Optional[MessageStatus]:
        try:
            response = self.supabase.table("message_status") \
                .select("*") \
                .eq("message_id", message_id) \
                .eq(recipient_column(is_client), recipient_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching status of message {message_id} for {recipient_id}: {e}")
            return None

        if not response.data:
            return None
        return MessageStatus(**response.data[0])
