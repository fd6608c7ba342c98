from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


MAX_MESSAGE_LENGTH = 2000

MessageOrigin = Literal["confirmed", "optimistic"]


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    text: str
    sent_at: datetime
    origin: MessageOrigin = "confirmed"

    @property
    def is_optimistic(self) -> bool:
        return self.origin == "optimistic"


class SendPayload(BaseModel):

    text: str = Field(min_length=1)


class ComposePayload(BaseModel):

    text: str = ""


class FilterPayload(BaseModel):

    query: str = ""
