"""
Realtime Models
Ephemeral signals broadcast on realtime channels. Nothing here is persisted.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class TypingIndicator(BaseModel):
    conversation_id: str
    user_id: str
    user_name: str
    is_typing: bool
    is_client: bool = False
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class PresenceState(BaseModel):
    user_id: str
    user_type: str = Field(..., description="user or client")
    user_name: str
    status: PresenceStatus = PresenceStatus.ONLINE
    online_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True

    @property
    def key(self) -> str:
        return f"{self.user_type}:{self.user_id}"


class PresenceChange(BaseModel):
    """Delta delivered to presence subscribers"""
    event: str = Field(..., description="sync, join or leave")
    key: Optional[str] = None
    state: Optional[PresenceState] = None
    members: dict = Field(default_factory=dict, description="Full state, only on sync")
