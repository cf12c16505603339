"""
Realtime Channel Registry
Process-local pub/sub channels keyed by name, with an optional Redis relay
that fans broadcasts out to the other worker processes.

Channel names:
    conversation:{conversation_id}  new messages and typing indicators
    presence:{scope}                online/away/offline state
"""
import asyncio
import inspect
import itertools
import json
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from practice_messaging.config import settings
from practice_messaging.models.realtime import PresenceState

logger = logging.getLogger(__name__)

# callback(event, payload); may be sync or async
ChannelCallback = Callable[[str, Dict[str, Any]], Any]

_subscriber_ids = itertools.count(1)


class RealtimeChannel:
    """One named topic with any number of independent subscribers"""

    def __init__(self, name: str):
        self.name = name
        self._subscribers: Dict[int, ChannelCallback] = {}
        self._lock = threading.Lock()
        # Only populated on presence channels
        self.presence: Dict[str, PresenceState] = {}
        # Open local connections per presence key
        self._presence_refs: Dict[str, int] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_subscriber(self, callback: ChannelCallback) -> int:
        subscriber_id = next(_subscriber_ids)
        with self._lock:
            self._subscribers[subscriber_id] = callback
        return subscriber_id

    def remove_subscriber(self, subscriber_id: int) -> bool:
        with self._lock:
            return self._subscribers.pop(subscriber_id, None) is not None

    def apply_presence(self, change: Dict[str, Any]) -> None:
        """Mirror a join/leave delta into the local presence map"""
        key = change.get("key")
        if not key:
            return
        with self._lock:
            if change.get("event") == "join" and change.get("state"):
                self.presence[key] = PresenceState(**change["state"])
            elif change.get("event") == "leave" and key not in self._presence_refs:
                self.presence.pop(key, None)

    def track(self, state: PresenceState) -> bool:
        """Count one more connection for state.key. True when it is the first."""
        with self._lock:
            count = self._presence_refs.get(state.key, 0)
            self._presence_refs[state.key] = count + 1
            if count == 0 or state.key not in self.presence:
                self.presence[state.key] = state
            return count == 0

    def untrack(self, key: str) -> bool:
        """Count one connection gone for key. True when it was the last."""
        with self._lock:
            remaining = self._presence_refs.get(key, 0) - 1
            if remaining > 0:
                self._presence_refs[key] = remaining
                return False
            self._presence_refs.pop(key, None)
            self.presence.pop(key, None)
            return True

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Deliver to every current subscriber. A failing callback is logged and
        does not stop delivery to the rest. Returns the number delivered.
        """
        with self._lock:
            callbacks = list(self._subscribers.items())

        delivered = 0
        for subscriber_id, callback in callbacks:
            try:
                result = callback(event, payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"❌ Realtime subscriber {subscriber_id} on {self.name} failed ({event}): {e}")

        logger.debug(f"📢 Broadcast {event} on {self.name}: delivered={delivered}/{len(callbacks)}")
        return delivered


class RedisRelay:
    """
    Cross-process fan-out over Redis pub/sub.

    Every local broadcast is published on `realtime:{channel}` tagged with this
    process's origin id; events from other origins are handed back to the
    registry for local delivery.
    """

    PREFIX = "realtime:"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        db: Optional[int] = None,
        password: Optional[str] = None,
        client: Optional[redis.Redis] = None
    ):
        self.origin = uuid.uuid4().hex
        self._client = client or redis.Redis(
            host=host or settings.REDIS_HOST,
            port=port or settings.REDIS_PORT,
            db=db if db is not None else settings.REDIS_DB,
            password=password if password is not None else settings.REDIS_PASSWORD,
            decode_responses=True,
        )
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    async def start(self, deliver: Callable[[str, str, Dict[str, Any]], Awaitable[None]]) -> None:
        await self._client.ping()
        self._pubsub = self._client.pubsub()
        await self._pubsub.psubscribe(f"{self.PREFIX}*")
        self._listener = asyncio.create_task(self._listen(deliver))
        logger.info(f"✅ Redis realtime relay started (origin={self.origin})")

    async def publish(self, channel_name: str, event: str, payload: Dict[str, Any]) -> None:
        envelope = json.dumps({"origin": self.origin, "event": event, "payload": payload}, default=str)
        await self._client.publish(f"{self.PREFIX}{channel_name}", envelope)

    async def _listen(self, deliver) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                envelope = json.loads(message["data"])
                if envelope.get("origin") == self.origin:
                    continue
                channel_name = message["channel"][len(self.PREFIX):]
                await deliver(channel_name, envelope["event"], envelope.get("payload") or {})
            except Exception as e:
                logger.error(f"❌ Error relaying realtime event from Redis: {e}")

    async def close(self) -> None:
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        await self._client.aclose()
        logger.info("Redis realtime relay closed")


class ChannelRegistry:
    """
    Lock-guarded map of channel name -> RealtimeChannel.

    Created once per process in the application lifespan and injected into
    the services that need it. Concurrent lookups for the same name always
    return the same channel object.
    """

    def __init__(self, relay: Optional[RedisRelay] = None):
        self._channels: Dict[str, RealtimeChannel] = {}
        self._lock = threading.Lock()
        self._relay = relay
        self._started = False

    @property
    def available(self) -> bool:
        return self._started

    @property
    def relay_enabled(self) -> bool:
        return self._relay is not None

    async def start(self) -> None:
        if self._relay is not None:
            try:
                await self._relay.start(self._deliver_remote)
            except Exception as e:
                logger.error(f"❌ Redis relay unavailable, realtime stays local to this process: {e}")
                self._relay = None
        self._started = True
        logger.info("✅ Realtime channel registry started")

    async def close(self) -> None:
        self._started = False
        if self._relay is not None:
            try:
                await self._relay.close()
            except Exception as e:
                logger.error(f"❌ Error closing Redis relay: {e}")
        with self._lock:
            self._channels.clear()
        logger.info("Realtime channel registry closed")

    def get_or_create(self, name: str) -> RealtimeChannel:
        with self._lock:
            channel = self._channels.get(name)
            if channel is None:
                channel = RealtimeChannel(name)
                self._channels[name] = channel
                logger.debug(f"Realtime channel created: {name}")
            return channel

    def get(self, name: str) -> Optional[RealtimeChannel]:
        with self._lock:
            return self._channels.get(name)

    def release(self, name: str) -> None:
        """Drop a channel once its last subscriber and presence entry are gone"""
        with self._lock:
            channel = self._channels.get(name)
            if channel is not None and channel.subscriber_count == 0 and not channel.presence:
                del self._channels[name]

    async def publish(self, name: str, event: str, payload: Dict[str, Any]) -> int:
        """Broadcast locally, then relay to other processes when enabled"""
        delivered = 0
        channel = self.get(name)
        if channel is not None:
            delivered = await channel.broadcast(event, payload)

        if self._relay is not None:
            try:
                await self._relay.publish(name, event, payload)
            except Exception as e:
                logger.error(f"❌ Failed to relay {event} on {name}: {e}")

        return delivered

    async def _deliver_remote(self, name: str, event: str, payload: Dict[str, Any]) -> None:
        channel = self.get(name)
        if channel is None:
            return
        if event == "presence":
            channel.apply_presence(payload)
        await channel.broadcast(event, payload)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            channels: List[RealtimeChannel] = list(self._channels.values())
        return {
            "available": self.available,
            "relay": "redis" if self._relay is not None else None,
            "total_channels": len(channels),
            "total_subscribers": sum(c.subscriber_count for c in channels),
            "channels": {c.name: c.subscriber_count for c in channels},
        }


def build_registry() -> ChannelRegistry:
    """Registry configured from REALTIME_BACKEND"""
    if settings.REALTIME_BACKEND == "redis":
        return ChannelRegistry(relay=RedisRelay())
    return ChannelRegistry()
