"""
Realtime Conversation Service
Per-conversation pub/sub for new messages and typing indicators, plus a
presence scope for online/away/offline status.
"""
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Union

from practice_messaging.models.conversation import Conversation, FileMetadata, Message, MessageType
from practice_messaging.models.realtime import PresenceChange, PresenceState, PresenceStatus, TypingIndicator
from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.notification_sink import NotificationEvent, NotificationSink
from practice_messaging.services.realtime_registry import ChannelRegistry, RealtimeChannel

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_SCOPE = "online-users"

Unsubscribe = Callable[[], None]


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def presence_channel(scope: str) -> str:
    return f"presence:{scope}"


def _noop_unsubscribe() -> None:
    return None


async def _call(handler: Callable, *args) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class PresenceSubscription:
    """Handle returned by subscribe_to_presence"""

    def __init__(
        self,
        service: Optional["RealtimeService"] = None,
        channel: Optional[RealtimeChannel] = None,
        state: Optional[PresenceState] = None,
        subscriber_id: Optional[int] = None
    ):
        self._service = service
        self._channel = channel
        self.state = state
        self._subscriber_id = subscriber_id

    @property
    def active(self) -> bool:
        return self._channel is not None

    async def update_status(self, status: Union[PresenceStatus, str]) -> None:
        if not self.active:
            return
        self.state.status = PresenceStatus(status).value
        self._channel.presence[self.state.key] = self.state
        await self._service._publish_presence(self._channel, "join", self.state)

    async def leave(self) -> None:
        if not self.active:
            return
        channel, self._channel = self._channel, None
        channel.remove_subscriber(self._subscriber_id)
        # Other connections of the same member keep it online
        if channel.untrack(self.state.key):
            self.state.status = PresenceStatus.OFFLINE.value
            await self._service._publish_presence(channel, "leave", self.state)
        self._service.registry.release(channel.name)


class RealtimeService:
    """Realtime conversation channel operations"""

    def __init__(
        self,
        registry: ChannelRegistry,
        conversations: ConversationService,
        sink: Optional[NotificationSink] = None,
        presence_scope: str = DEFAULT_PRESENCE_SCOPE
    ):
        self.registry = registry
        self.conversations = conversations
        self.sink = sink
        self.presence_scope = presence_scope

    # ============ Conversation channel ============

    def subscribe(
        self,
        conversation_id: str,
        on_message: Callable[[Message], Any],
        on_typing: Optional[Callable[[TypingIndicator], Any]] = None
    ) -> Unsubscribe:
        """
        Subscribe to one conversation. Always returns an unsubscribe callable;
        when realtime is unavailable it is a no-op and nothing is delivered.
        """
        if not self.registry.available:
            logger.warning(f"⚠️ Realtime unavailable, subscription to {conversation_id} is inactive")
            return _noop_unsubscribe

        name = conversation_channel(conversation_id)

        def dispatch(event: str, payload: Dict[str, Any]):
            if event == "message":
                return on_message(Message(**payload))
            if event == "typing" and on_typing is not None:
                return on_typing(TypingIndicator(**payload))
            return None

        try:
            channel = self.registry.get_or_create(name)
            subscriber_id = channel.add_subscriber(dispatch)
        except Exception as e:
            logger.error(f"❌ Failed to subscribe to {name}: {e}")
            return _noop_unsubscribe

        def unsubscribe() -> None:
            if channel.remove_subscriber(subscriber_id):
                self.registry.release(name)

        return unsubscribe

    async def send_typing_indicator(
        self,
        conversation_id: str,
        user_id: str,
        user_name: str,
        is_typing: bool,
        is_client: bool = False
    ) -> None:
        if not self.registry.available:
            return

        indicator = TypingIndicator(
            conversation_id=conversation_id,
            user_id=user_id,
            user_name=user_name,
            is_typing=is_typing,
            is_client=is_client,
        )
        try:
            await self.registry.publish(conversation_channel(conversation_id), "typing", indicator.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"❌ Failed to send typing indicator on {conversation_id}: {e}")

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        sender_id: str,
        is_client: bool = False,
        message_type: Union[MessageType, str] = MessageType.TEXT,
        file: Optional[FileMetadata] = None,
        reply_to_id: Optional[str] = None
    ) -> Message:
        """
        Persist and broadcast a message, then notify the other participants.

        Raises:
            RuntimeError: If the message could not be persisted. Nothing is
                broadcast in that case.
        """
        message = Message(
            conversation_id=conversation_id,
            sender_user_id=None if is_client else sender_id,
            sender_client_id=sender_id if is_client else None,
            message_type=message_type,
            content=content,
            reply_to_id=reply_to_id,
        ).attach_file(file)

        saved = await self.conversations.insert_message(message)
        await self.conversations.touch_last_message(conversation_id)

        await self.broadcast_message(saved)
        await self.notify_participants(saved)

        logger.info(f"💬 Message {saved.id} sent on {conversation_id} by {sender_id}")
        return saved

    async def broadcast_message(self, message: Message) -> int:
        """Broadcast an already-persisted message. Failures are logged only."""
        if not self.registry.available:
            return 0
        try:
            return await self.registry.publish(
                conversation_channel(message.conversation_id), "message", message.model_dump(mode="json")
            )
        except Exception as e:
            logger.error(f"❌ Failed to broadcast message {message.id}: {e}")
            return 0

    async def notify_participants(self, message: Message, conversation: Optional[Conversation] = None) -> int:
        """Queue a new_message notification for every participant except the sender"""
        if self.sink is None or message.message_type == MessageType.SYSTEM:
            return 0

        conversation = conversation or await self.conversations.get_conversation(message.conversation_id)
        if conversation is None:
            logger.warning(f"⚠️ Conversation {message.conversation_id} not found, skipping notifications")
            return 0

        queued = 0
        for participant in await self.conversations.get_participants(conversation.id):
            recipient_id = participant.user_id or participant.client_id
            if recipient_id == message.sender_id:
                continue
            if self.sink.dispatch(NotificationEvent(
                kind="new_message",
                message=message,
                conversation=conversation,
                recipient_id=recipient_id,
                is_client=bool(participant.client_id),
            )):
                queued += 1
        return queued

    # ============ Presence ============

    async def subscribe_to_presence(
        self,
        user_id: str,
        user_type: str,
        user_name: str,
        on_change: Callable[[PresenceChange], Any],
        scope: Optional[str] = None
    ) -> PresenceSubscription:
        """
        Track the caller as online in a presence scope and receive deltas.

        The subscriber first gets a `sync` with the full state, then `join`
        and `leave` changes for everyone in the scope (including itself).
        """
        if not self.registry.available:
            logger.warning(f"⚠️ Realtime unavailable, presence for {user_id} is inactive")
            return PresenceSubscription()

        channel = self.registry.get_or_create(presence_channel(scope or self.presence_scope))

        def dispatch(event: str, payload: Dict[str, Any]):
            if event == "presence":
                return on_change(PresenceChange(**payload))
            return None

        subscriber_id = channel.add_subscriber(dispatch)
        state = PresenceState(user_id=user_id, user_type=user_type, user_name=user_name)
        first_connection = channel.track(state)
        state = channel.presence.get(state.key, state)

        try:
            await _call(on_change, PresenceChange(
                event="sync",
                members={key: member.model_dump(mode="json") for key, member in list(channel.presence.items())},
            ))
        except Exception as e:
            logger.error(f"❌ Presence sync callback failed for {user_id}: {e}")

        if first_connection:
            await self._publish_presence(channel, "join", state)
            logger.info(f"🟢 Presence join: {state.key} on {channel.name}")
        return PresenceSubscription(self, channel, state, subscriber_id)

    async def _publish_presence(self, channel: RealtimeChannel, event: str, state: PresenceState) -> None:
        change = PresenceChange(event=event, key=state.key, state=state)
        try:
            await self.registry.publish(channel.name, "presence", change.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"❌ Failed to publish presence {event} for {state.key}: {e}")
