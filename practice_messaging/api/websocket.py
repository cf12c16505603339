"""
WebSocket API Endpoints
Realtime bridge for conversation channels and the presence scope
"""
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, Query, status
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from practice_messaging.auth.jwt_handler import extract_user_from_token, JWTValidationError
from practice_messaging.models.conversation import Message, MessageType, USER_MESSAGE_TYPES
from practice_messaging.models.realtime import PresenceChange, TypingIndicator
from practice_messaging.models.user import User
from practice_messaging.services.conversation_service import ConversationService
from practice_messaging.services.realtime_service import RealtimeService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])

KEEPALIVE_SECONDS = 30.0


async def authenticate_websocket(websocket: WebSocket, token: Optional[str]) -> Optional[User]:
    """Verify the token query parameter; closes the socket with 1008 on failure"""
    if not token:
        logger.warning("WebSocket connection attempt without token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    try:
        user = extract_user_from_token(token)
    except JWTValidationError as e:
        logger.warning(f"Invalid WebSocket token: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    if user.is_token_expired:
        logger.warning(f"Expired WebSocket token for {user.user_id}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    return user


def build_realtime_service(websocket: WebSocket) -> RealtimeService:
    state = websocket.app.state
    return RealtimeService(state.registry, ConversationService(state.supabase), state.sink)


async def send_frame(websocket: WebSocket, frame: Dict[str, Any]) -> None:
    frame.setdefault("timestamp", datetime.utcnow().isoformat())
    await websocket.send_json(frame)


async def receive_frame(websocket: WebSocket) -> Optional[Dict[str, Any]]:
    """
    Next JSON frame from the client, or None after sending a keepalive ping
    when the client has been silent for KEEPALIVE_SECONDS.
    """
    try:
        data = await asyncio.wait_for(websocket.receive_text(), timeout=KEEPALIVE_SECONDS)
    except asyncio.TimeoutError:
        await send_frame(websocket, {"type": "ping", "message": "keepalive"})
        return None

    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        await send_frame(websocket, {"type": "error", "message": "Frames must be JSON objects"})
        return None

    if not isinstance(frame, dict):
        await send_frame(websocket, {"type": "error", "message": "Frames must be JSON objects"})
        return None
    return frame


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_websocket(
    websocket: WebSocket,
    conversation_id: str,
    token: Optional[str] = Query(None, description="JWT authentication token")
):
    """
    Realtime conversation channel.

    **Connection URL:**
    ```
    ws://your-api.com/ws/conversations/{conversation_id}?token={jwt_token}
    ```

    **Server frames:** `connection_established`, `message` (a persisted
    message), `typing`, `ping`, `pong`, `error`.

    **Client frames:**
    - `{"type": "typing", "is_typing": true}`
    - `{"type": "message", "content": "...", "message_type": "text", "reply_to_id": null}`
    - `{"type": "ping"}`
    """
    user = await authenticate_websocket(websocket, token)
    if user is None:
        return

    if websocket.app.state.supabase is None:
        logger.error("WebSocket rejected: database is not configured")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    realtime = build_realtime_service(websocket)
    if not await realtime.conversations.is_participant(conversation_id, user.user_id, user.is_client):
        logger.warning(f"User {user.user_id} attempted to join conversation {conversation_id} without being a participant")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def on_message(message: Message):
        await send_frame(websocket, {"type": "message", "data": message.model_dump(mode="json")})

    async def on_typing(indicator: TypingIndicator):
        if indicator.user_id != user.user_id:
            await send_frame(websocket, {"type": "typing", "data": indicator.model_dump(mode="json")})

    unsubscribe = realtime.subscribe(conversation_id, on_message, on_typing)
    user_name = user.display_name or user.email
    logger.info(f"✅ WebSocket joined conversation {conversation_id}: user={user.user_id}")

    try:
        await send_frame(websocket, {
            "type": "connection_established",
            "conversation_id": conversation_id,
            "realtime_available": realtime.registry.available,
        })

        while True:
            frame = await receive_frame(websocket)
            if frame is None:
                continue

            frame_type = frame.get("type", "")
            if frame_type == "ping":
                await send_frame(websocket, {"type": "pong"})

            elif frame_type == "pong":
                logger.debug(f"🏓 Received pong from user={user.user_id}")

            elif frame_type == "typing":
                await realtime.send_typing_indicator(
                    conversation_id, user.user_id, user_name, bool(frame.get("is_typing")), user.is_client
                )

            elif frame_type == "message":
                message_type = str(frame.get("message_type") or MessageType.TEXT.value)
                if message_type not in USER_MESSAGE_TYPES:
                    await send_frame(websocket, {
                        "type": "error", "message": "message_type must be text, file, image or document"
                    })
                    continue
                try:
                    await realtime.send_message(
                        conversation_id,
                        content=str(frame.get("content") or ""),
                        sender_id=user.user_id,
                        is_client=user.is_client,
                        message_type=message_type,
                        reply_to_id=frame.get("reply_to_id"),
                    )
                except (RuntimeError, ValidationError, ValueError) as e:
                    logger.error(f"❌ WebSocket send failed on {conversation_id}: {e}")
                    await send_frame(websocket, {"type": "error", "message": "Message could not be sent"})

            else:
                await send_frame(websocket, {"type": "error", "message": f"Unknown frame type: {frame_type}"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: user={user.user_id}, conversation={conversation_id}")

    except Exception as e:
        logger.error(f"Error in WebSocket loop: {e}")

    finally:
        unsubscribe()
        if realtime.registry.available:
            await realtime.send_typing_indicator(conversation_id, user.user_id, user_name, False, user.is_client)


@router.websocket("/ws/presence")
async def presence_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT authentication token")
):
    """
    Presence scope.

    **Server frames:** `presence_sync` (full state on join), `presence_join`,
    `presence_leave`, `ping`, `pong`.

    **Client frames:** `{"type": "status", "status": "away"}`, `{"type": "ping"}`.
    The caller is reported offline when the socket closes.
    """
    user = await authenticate_websocket(websocket, token)
    if user is None:
        return

    await websocket.accept()
    realtime = build_realtime_service(websocket)

    async def on_change(change: PresenceChange):
        await send_frame(websocket, {"type": f"presence_{change.event}", "data": change.model_dump(mode="json")})

    subscription = await realtime.subscribe_to_presence(
        user.user_id,
        "client" if user.is_client else "user",
        user.display_name or user.email,
        on_change,
    )

    try:
        while True:
            frame = await receive_frame(websocket)
            if frame is None:
                continue

            frame_type = frame.get("type", "")
            if frame_type == "ping":
                await send_frame(websocket, {"type": "pong"})
            elif frame_type == "status":
                try:
                    await subscription.update_status(frame.get("status"))
                except ValueError:
                    await send_frame(websocket, {"type": "error", "message": "status must be online, away or offline"})
            elif frame_type != "pong":
                await send_frame(websocket, {"type": "error", "message": f"Unknown frame type: {frame_type}"})

    except WebSocketDisconnect:
        logger.info(f"Presence socket disconnected: user={user.user_id}")

    except Exception as e:
        logger.error(f"Error in presence WebSocket loop: {e}")

    finally:
        await subscription.leave()


@router.get(
    "/ws/stats",
    summary="Get realtime statistics",
    description="Channel and subscriber counts of the realtime registry in this process"
)
async def get_websocket_stats(request: Request):
    stats = request.app.state.registry.get_stats()
    stats["timestamp"] = datetime.utcnow().isoformat()
    return stats
