import itertools
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from chatsync.schemas.message import Message


LOCAL_ID_PREFIX = "local-"


class OptimisticSendQueue:
    """Locally created messages that the server has not yet shown back.

    Entries are kept per conversation in enqueue order, which is also the
    order reconciliation matches them in.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._counter = itertools.count(1)
        self._pending: Dict[str, List[Message]] = {}
        self._server_ids: Dict[str, str] = {}

    def enqueue(self, conversation_id: str, sender_id: str, text: str) -> Message:
        message = Message(
            id=f"{LOCAL_ID_PREFIX}{next(self._counter)}",
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            sent_at=self._clock(),
            origin="optimistic",
        )
        self._pending.setdefault(conversation_id, []).append(message)
        return message

    def acknowledge(self, local_id: str, server_id: str) -> None:
        if self._find(local_id) is not None:
            self._server_ids[local_id] = server_id

    def server_id(self, local_id: str) -> Optional[str]:
        return self._server_ids.get(local_id)

    def confirm(self, local_id: str) -> Optional[Message]:
        return self._remove(local_id)

    def reject(self, local_id: str) -> Optional[Message]:
        # the caller owns the visible thread and the compose box; it uses the
        # returned message to drop the bubble and restore the text
        return self._remove(local_id)

    def pending(self, conversation_id: str) -> List[Message]:
        return list(self._pending.get(conversation_id, ()))

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._pending.values())

    def _find(self, local_id: str) -> Optional[Message]:
        for entries in self._pending.values():
            for message in entries:
                if message.id == local_id:
                    return message
        return None

    def _remove(self, local_id: str) -> Optional[Message]:
        for conversation_id, entries in self._pending.items():
            for index, message in enumerate(entries):
                if message.id == local_id:
                    del entries[index]
                    if not entries:
                        del self._pending[conversation_id]
                    self._server_ids.pop(local_id, None)
                    return message
        return None
