from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from chatsync.schemas.presence import PresenceStatus


ConversationKind = Literal["direct", "group"]


class Counterpart(BaseModel):

    display_name: str
    user_id: Optional[str] = None
    avatar: Optional[str] = None
    # None for group conversations and for users never seen active
    last_active_at: Optional[datetime] = None


class MessagePreview(BaseModel):

    text: str
    sent_at: Optional[datetime] = None


class Conversation(BaseModel):

    id: str
    kind: ConversationKind
    counterpart: Counterpart
    last_message_preview: Optional[MessagePreview] = None
    unread_count: int = Field(default=0, ge=0)

    @property
    def shows_presence(self) -> bool:
        return self.kind == "direct"


class ConversationView(BaseModel):

    id: str
    kind: ConversationKind
    display_name: str
    avatar: Optional[str] = None
    presence: Optional[PresenceStatus] = None
    preview_text: Optional[str] = None
    preview_time: Optional[str] = None
    unread_count: int = 0
