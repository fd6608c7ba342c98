import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Set

from chatsync.core.errors import ApiError, ColdLoadError
from chatsync.repositories.message_api import MessageApi
from chatsync.schemas.message import Message
from chatsync.services.send_queue import OptimisticSendQueue


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadUpdate:
    changed: bool
    scroll_to_bottom: bool = False
    discarded: bool = False
    failed: bool = False
    skipped: bool = False


UNCHANGED = ThreadUpdate(changed=False)


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class MessageThreadCache:
    """Per-conversation message logs with a last-message-id watermark.

    ``load`` is the cold path and always replaces. ``refresh`` is the silent
    path and leaves the cache untouched when the newest server id equals the
    watermark. Both fold the optimistic send queue into the fetched thread.
    """

    def __init__(self, api: MessageApi, queue: OptimisticSendQueue) -> None:
        self._api = api
        self._queue = queue
        self._threads: Dict[str, List[Message]] = {}
        self._watermarks: Dict[str, Optional[str]] = {}
        self._generations: Dict[str, int] = {}
        self._fetches: Dict[str, "asyncio.Future[List[Message]]"] = {}

    def has(self, conversation_id: str) -> bool:
        return conversation_id in self._threads

    def watermark(self, conversation_id: str) -> Optional[str]:
        return self._watermarks.get(conversation_id)

    def confirmed(self, conversation_id: str) -> List[Message]:
        return list(self._threads.get(conversation_id, ()))

    def messages(self, conversation_id: str) -> List[Message]:
        # optimistic entries without a server match stay at the tail
        return self.confirmed(conversation_id) + self._queue.pending(conversation_id)

    def clear(self, conversation_id: str) -> None:
        self._threads.pop(conversation_id, None)
        self._watermarks.pop(conversation_id, None)

    def _fetch(self, conversation_id: str) -> "asyncio.Future[List[Message]]":
        # at most one get_thread per conversation; later callers join it
        pending = self._fetches.get(conversation_id)
        if pending is not None:
            return pending
        fetch = asyncio.ensure_future(self._api.get_thread(conversation_id))
        self._fetches[conversation_id] = fetch
        fetch.add_done_callback(partial(self._fetch_done, conversation_id))
        return fetch

    def _fetch_done(self, conversation_id: str, fetch: "asyncio.Future[List[Message]]") -> None:
        if self._fetches.get(conversation_id) is fetch:
            del self._fetches[conversation_id]
        if not fetch.cancelled() and fetch.exception() is not None:
            logger.debug("thread %s fetch raised %r", conversation_id, fetch.exception())

    async def load(
        self,
        conversation_id: str,
        is_current: Callable[[], bool] = lambda: True,
    ) -> ThreadUpdate:
        """Cold load. Joins a refresh already in flight instead of fetching twice."""
        generation = self._generations.get(conversation_id, 0) + 1
        self._generations[conversation_id] = generation
        try:
            fetched = await asyncio.shield(self._fetch(conversation_id))
        except ApiError as exc:
            logger.error("thread %s load failed: %s", conversation_id, exc)
            raise ColdLoadError("messages", exc) from exc
        if generation != self._generations.get(conversation_id) or not is_current():
            logger.debug("discarding superseded load of thread %s", conversation_id)
            return ThreadUpdate(changed=False, discarded=True)
        self._apply(conversation_id, fetched)
        return ThreadUpdate(changed=True, scroll_to_bottom=True)

    async def refresh(
        self,
        conversation_id: str,
        is_current: Callable[[], bool] = lambda: True,
    ) -> ThreadUpdate:
        if conversation_id in self._fetches:
            return ThreadUpdate(changed=False, skipped=True)
        generation = self._generations.get(conversation_id, 0)
        try:
            fetched = await asyncio.shield(self._fetch(conversation_id))
        except ApiError as exc:
            logger.warning("thread %s refresh failed, retrying next tick: %s", conversation_id, exc)
            return ThreadUpdate(changed=False, failed=True)
        if generation != self._generations.get(conversation_id, 0) or not is_current():
            logger.debug("discarding stale refresh of thread %s", conversation_id)
            return ThreadUpdate(changed=False, discarded=True)
        newest_id = fetched[-1].id if fetched else None
        if conversation_id in self._threads and newest_id == self._watermarks.get(conversation_id):
            return UNCHANGED
        previous = self._threads.get(conversation_id) or []
        previous_newest = _utc(previous[-1].sent_at) if previous else None
        self._apply(conversation_id, fetched)
        scroll = bool(fetched) and (previous_newest is None or _utc(fetched[-1].sent_at) > previous_newest)
        return ThreadUpdate(changed=True, scroll_to_bottom=scroll)

    def _apply(self, conversation_id: str, fetched: Sequence[Message]) -> None:
        known = {m.id for m in self._threads.get(conversation_id, ())}
        self._reconcile(conversation_id, fetched, known)
        self._threads[conversation_id] = list(fetched)
        self._watermarks[conversation_id] = fetched[-1].id if fetched else None

    def _reconcile(self, conversation_id: str, fetched: Sequence[Message], known: Set[str]) -> None:
        pending = self._queue.pending(conversation_id)
        if not pending:
            return
        by_id = {m.id: m for m in fetched}
        claimed: Set[str] = set()
        # exact matches through the id the send call returned
        for local in pending:
            server_id = self._queue.server_id(local.id)
            if server_id and server_id in by_id and server_id not in claimed:
                claimed.add(server_id)
                self._queue.confirm(local.id)
        # then text + sender, earliest unmatched local entry first; only
        # messages new since the previous fetch are candidates
        candidates = [m for m in fetched if m.id not in known and m.id not in claimed]
        for local in self._queue.pending(conversation_id):
            match = next(
                (m for m in candidates if m.sender_id == local.sender_id and m.text == local.text),
                None,
            )
            if match is None:
                continue
            candidates.remove(match)
            claimed.add(match.id)
            self._queue.confirm(local.id)
