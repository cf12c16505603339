"""
Notification Sink
Non-blocking hand-off of notification work to background asyncio tasks.

The request path calls `dispatch(event)` and returns immediately. Each event
runs in its own task; failures are logged here and never reach the caller
that persisted the message.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from practice_messaging.models.conversation import Conversation, Message

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    kind: str  # "new_message" or "status_update"
    message: Message
    conversation: Conversation
    recipient_id: str
    is_client: bool = False
    status: Optional[str] = None


NotificationHandler = Callable[[NotificationEvent], Awaitable[None]]


class NotificationSink:
    """Background dispatcher for NotificationEvents"""

    def __init__(self, handler: Optional[NotificationHandler] = None):
        self._handler = handler
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self.failures = 0

    def set_handler(self, handler: NotificationHandler) -> None:
        self._handler = handler

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: NotificationEvent) -> bool:
        """
        Schedule `event` for background handling.

        Returns False (after logging) when the sink is closed, has no handler,
        or no event loop is running. Never raises.
        """
        if self._closed:
            logger.warning(f"⚠️ Notification sink closed, dropping {event.kind} for {event.recipient_id}")
            return False

        if self._handler is None:
            logger.error("❌ Notification sink has no handler configured")
            return False

        try:
            task = asyncio.get_running_loop().create_task(self._run(event))
        except RuntimeError as e:
            logger.error(f"❌ Cannot schedule notification outside an event loop: {e}")
            return False

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, event: NotificationEvent) -> None:
        try:
            await self._handler(event)
        except asyncio.CancelledError:
            logger.warning(f"⚠️ Notification task cancelled: {event.kind} for {event.recipient_id}")
            raise
        except Exception as e:
            self.failures += 1
            logger.error(
                f"❌ Notification dispatch failed: kind={event.kind}, "
                f"message={event.message.id}, recipient={event.recipient_id}: {e}"
            )

    async def drain(self) -> None:
        """Wait for every in-flight notification task"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        await self.drain()
        logger.info("Notification sink closed")
