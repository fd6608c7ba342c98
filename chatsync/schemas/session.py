from typing import List, Optional

from pydantic import BaseModel

from chatsync.schemas.conversation import ConversationView
from chatsync.schemas.message import Message


class RenderSignal(BaseModel):

    revision: int
    scroll_to_bottom: bool = False
    reason: str = ""


class ReadModel(BaseModel):

    phase: str
    conversations: List[ConversationView]
    active_conversation_id: Optional[str] = None
    active_thread: List[Message]
    is_cold_loading: bool = False
    is_sending: bool = False
    compose_text: str = ""
    search_filter: str = ""
    last_error: Optional[str] = None
    revision: int = 0


class MountPayload(BaseModel):

    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
