from typing import List, Literal, Optional, TypedDict

from chatsync.models.user import UserDocument


class LastMessageDocument(TypedDict, total=False):
    content: str
    sender: str
    sent_at: str


class TeamDocument(TypedDict, total=False):
    _id: str
    team_name: str
    logo: Optional[str]


class ConversationDocument(TypedDict, total=False):
    _id: str
    type: Literal["direct", "group", "team"]
    name: Optional[str]
    participants: List[UserDocument]
    team: Optional[TeamDocument]
    last_message: Optional[LastMessageDocument]
    # already narrowed to the requesting user by the server
    unread_count: int
    updated_at: str
