from typing import Literal, TypedDict, Union

from chatsync.models.user import UserDocument


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation: str
    # populated user document or bare id
    sender: Union[UserDocument, str]
    content: str
    message_type: Literal["text", "image", "system"]
    created_at: str
    createdAt: str
    is_deleted: bool
