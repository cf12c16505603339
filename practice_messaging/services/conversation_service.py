"""
Conversation Service
Conversations, participants and messages in the hosted store
"""
import logging
from typing import Optional, List, Dict, Any, Union
from datetime import datetime

from practice_messaging.models.conversation import (
    Conversation, ConversationCreate, ConversationParticipant, ConversationStatus,
    Message, ParticipantRole, ParticipantType
)
from practice_messaging.models.notification import MessageStatusValue
from practice_messaging.models.user import User
from practice_messaging.services.message_status_service import MessageStatusService
from practice_messaging.utils.phone import format_phone_number

logger = logging.getLogger(__name__)

STAFF_PARTICIPANT_TYPES = {ParticipantType.LAWYER.value, ParticipantType.STAFF.value, ParticipantType.ADMIN.value}


class ConversationService:
    """Persistence for the conversation/message tables"""

    def __init__(self, supabase, status_service: Optional[MessageStatusService] = None):
        self.supabase = supabase
        self.status_service = status_service or MessageStatusService(supabase)

    # ============ Conversations ============

    def insert_conversation(self, row: Dict[str, Any]) -> Conversation:
        """
        Raises:
            RuntimeError: If the insert fails
        """
        try:
            response = self.supabase.table("conversations").insert(row).execute()
        except Exception as e:
            logger.error(f"❌ Error creating conversation: {e}")
            raise RuntimeError(f"Failed to create conversation: {str(e)}")

        if not response.data:
            raise RuntimeError("Failed to create conversation")

        conversation = Conversation(**response.data[0])
        logger.info(f"✅ Conversation created: {conversation.id} ({conversation.title})")
        return conversation

    async def create_conversation(self, data: ConversationCreate, creator: User) -> Conversation:
        """
        Staff-initiated conversation: the creator joins as owner and the
        client as a client participant.
        """
        conversation = self.insert_conversation({
            "law_firm_id": creator.law_firm_id,
            "client_id": data.client_id,
            "matter_id": data.matter_id,
            "title": data.title,
            "topic": data.topic,
            "conversation_type": data.conversation_type.value,
            "status": ConversationStatus.ACTIVE.value,
            "priority": data.priority.value,
            "whatsapp_enabled": bool(data.whatsapp_phone),
            "whatsapp_phone": format_phone_number(data.whatsapp_phone) if data.whatsapp_phone else None,
        })

        creator_type = creator.user_type if creator.user_type in STAFF_PARTICIPANT_TYPES else ParticipantType.STAFF.value
        await self.add_participant(
            conversation.id,
            user_id=creator.user_id,
            participant_type=creator_type,
            role=ParticipantRole.OWNER,
        )
        await self.add_participant(
            conversation.id,
            client_id=data.client_id,
            participant_type=ParticipantType.CLIENT,
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            response = self.supabase.table("conversations") \
                .select("*") \
                .eq("id", conversation_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching conversation {conversation_id}: {e}")
            return None

        if not response.data:
            return None
        return Conversation(**response.data[0])

    async def find_active_whatsapp_conversation(self, phone: str) -> Optional[Conversation]:
        response = self.supabase.table("conversations") \
            .select("*") \
            .eq("whatsapp_phone", format_phone_number(phone)) \
            .eq("status", ConversationStatus.ACTIVE.value) \
            .limit(1) \
            .execute()

        if not response.data:
            return None
        return Conversation(**response.data[0])

    async def update_status(
        self,
        conversation_id: str,
        status: Union[ConversationStatus, str]
    ) -> Optional[Conversation]:
        """Archive, close or reactivate. Returns None when the conversation does not exist."""
        new_status = ConversationStatus(status).value
        try:
            response = self.supabase.table("conversations") \
                .update({"status": new_status}) \
                .eq("id", conversation_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error updating conversation {conversation_id} status: {e}")
            raise RuntimeError(f"Failed to update conversation status: {str(e)}")

        if not response.data:
            return None

        logger.info(f"✅ Conversation {conversation_id} status -> {new_status}")
        return Conversation(**response.data[0])

    async def touch_last_message(self, conversation_id: str, at: Optional[datetime] = None) -> None:
        try:
            self.supabase.table("conversations") \
                .update({"last_message_at": (at or datetime.utcnow()).isoformat()}) \
                .eq("id", conversation_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error updating last_message_at for {conversation_id}: {e}")

    # ============ Participants ============

    async def add_participant(
        self,
        conversation_id: str,
        participant_type: Union[ParticipantType, str],
        user_id: Optional[str] = None,
        client_id: Optional[str] = None,
        role: Union[ParticipantRole, str] = ParticipantRole.PARTICIPANT
    ) -> ConversationParticipant:
        """
        Raises:
            ValueError: Unless exactly one of user_id / client_id is given
            RuntimeError: If the insert fails
        """
        participant = ConversationParticipant(
            conversation_id=conversation_id,
            user_id=user_id,
            client_id=client_id,
            participant_type=participant_type,
            role=role,
            joined_at=datetime.utcnow(),
        )

        try:
            response = self.supabase.table("conversation_participants") \
                .insert(participant.model_dump(mode="json", exclude={"id"})) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error adding participant to {conversation_id}: {e}")
            raise RuntimeError(f"Failed to add participant: {str(e)}")

        if response.data:
            participant = ConversationParticipant(**response.data[0])

        logger.info(
            f"👥 Participant added to {conversation_id}: "
            f"{participant.participant_type} {user_id or client_id} ({participant.role})"
        )
        return participant

    async def get_participants(self, conversation_id: str) -> List[ConversationParticipant]:
        try:
            response = self.supabase.table("conversation_participants") \
                .select("*") \
                .eq("conversation_id", conversation_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error fetching participants of {conversation_id}: {e}")
            return []

        return [ConversationParticipant(**row) for row in response.data or []]

    async def is_participant(self, conversation_id: str, member_id: str, is_client: bool = False) -> bool:
        participants = await self.get_participants(conversation_id)
        if is_client:
            return any(p.client_id == member_id for p in participants)
        return any(p.user_id == member_id for p in participants)

    # ============ Messages ============

    async def insert_message(self, message: Message) -> Message:
        """
        Persist a message. This is the primary write of every send path.

        Raises:
            RuntimeError: If the insert fails
        """
        try:
            response = self.supabase.table("messages").insert(message.to_row()).execute()
        except Exception as e:
            logger.error(f"❌ Error saving message to {message.conversation_id}: {e}")
            raise RuntimeError(f"Failed to save message: {str(e)}")

        if not response.data:
            raise RuntimeError("Failed to save message")

        return Message(**response.data[0])

    async def list_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before: Optional[str] = None
    ) -> List[Message]:
        """Oldest first; `before` pages backwards from an ISO timestamp"""
        query = self.supabase.table("messages") \
            .select("*") \
            .eq("conversation_id", conversation_id) \
            .eq("is_deleted", False)
        if before:
            query = query.lt("created_at", before)

        response = query.order("created_at", desc=True).limit(limit).execute()
        return [Message(**row) for row in reversed(response.data or [])]

    async def get_message_by_provider_id(self, whatsapp_message_id: str) -> Optional[Message]:
        response = self.supabase.table("messages") \
            .select("*") \
            .eq("whatsapp_message_id", whatsapp_message_id) \
            .limit(1) \
            .execute()

        if not response.data:
            return None
        return Message(**response.data[0])

    async def update_message(self, message_id: str, changes: Dict[str, Any]) -> bool:
        try:
            response = self.supabase.table("messages") \
                .update(changes) \
                .eq("id", message_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error updating message {message_id}: {e}")
            return False
        return bool(response.data)

    async def mark_read(self, conversation_id: str, reader_id: str, is_client: bool = False) -> int:
        """
        Mark a conversation read for one participant.

        Stamps the participant's last_read_at and records a `read` status for
        every message the reader did not send. Returns the number of status
        rows written.
        """
        now = datetime.utcnow()
        column = "client_id" if is_client else "user_id"
        try:
            self.supabase.table("conversation_participants") \
                .update({"last_read_at": now.isoformat()}) \
                .eq("conversation_id", conversation_id) \
                .eq(column, reader_id) \
                .execute()
        except Exception as e:
            logger.error(f"❌ Error updating last_read_at on {conversation_id}: {e}")

        messages = await self.list_messages(conversation_id, limit=500)
        written = 0
        for message in messages:
            if message.sender_id == reader_id or not message.id:
                continue
            if await self.status_service.update_status(
                message.id, reader_id, MessageStatusValue.READ, is_client=is_client, timestamp=now
            ):
                written += 1

        logger.info(f"👁️ Conversation {conversation_id} read by {reader_id}: {written} messages")
        return written
