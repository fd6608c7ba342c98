import logging
from datetime import datetime, timezone
from typing import List, Optional

from chatsync.core.errors import ApiError, ColdLoadError
from chatsync.repositories.message_api import MessageApi
from chatsync.schemas.conversation import Conversation


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _preview_key(conversation: Conversation) -> datetime:
    preview = conversation.last_message_preview
    if preview is None or preview.sent_at is None:
        return _EPOCH
    sent_at = preview.sent_at
    return sent_at if sent_at.tzinfo else sent_at.replace(tzinfo=timezone.utc)


class ConversationStore:

    def __init__(self, api: MessageApi) -> None:
        self._api = api
        self._conversations: tuple[Conversation, ...] = ()
        self._loaded = False

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def refresh(self, silent: bool = False) -> bool:
        """Replace the list with a fresh fetch and report whether it changed.

        A silent refresh logs failures and keeps the stale list; a cold one
        raises ``ColdLoadError``.
        """
        try:
            fetched = await self._api.list_conversations()
        except ApiError as exc:
            if silent:
                logger.warning("conversation list refresh failed: %s", exc)
                return False
            logger.error("conversation list load failed: %s", exc)
            raise ColdLoadError("conversations", exc) from exc
        # stable sort keeps server order among conversations without a preview
        ordered = tuple(sorted(fetched, key=_preview_key, reverse=True))
        changed = not self._loaded or ordered != self._conversations
        self._conversations = ordered
        self._loaded = True
        return changed

    def find(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def clear_unread(self, conversation_id: str) -> bool:
        conversation = self.find(conversation_id)
        if conversation is None or conversation.unread_count == 0:
            return False
        updated = conversation.model_copy(update={"unread_count": 0})
        self._conversations = tuple(updated if c.id == conversation_id else c for c in self._conversations)
        return True

    def search(self, query: str) -> List[Conversation]:
        needle = query.strip().lower()
        if not needle:
            return list(self._conversations)
        return [c for c in self._conversations if needle in c.counterpart.display_name.lower()]
