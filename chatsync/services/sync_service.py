import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional, Set

from chatsync.core.config import Settings
from chatsync.core.errors import ApiError, ColdLoadError, SessionClosedError
from chatsync.repositories.conversation_store import ConversationStore
from chatsync.repositories.message_api import MessageApi
from chatsync.repositories.thread_cache import MessageThreadCache, ThreadUpdate
from chatsync.schemas.conversation import ConversationView
from chatsync.schemas.message import MAX_MESSAGE_LENGTH, Message
from chatsync.schemas.session import ReadModel, RenderSignal
from chatsync.services.presence import presence_for
from chatsync.services.send_queue import OptimisticSendQueue
from chatsync.utils.poll_scheduler import CONVERSATION_POLL, HEARTBEAT, THREAD_POLL, PollScheduler
from chatsync.utils.timefmt import format_preview_time


logger = logging.getLogger(__name__)

LOAD_CONVERSATIONS_FAILED = "Failed to load conversations"
LOAD_MESSAGES_FAILED = "Failed to load messages"
SEND_FAILED = "Failed to send message"
MESSAGE_TOO_LONG = f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters"


class SessionPhase(str, Enum):

    IDLE = "idle"
    COLD_LOADING = "cold_loading"
    LIVE = "live"
    SWITCHING = "switching"


@dataclass
class SessionContext:
    """Who is using the view and how to reach the backend; lives as long as the view."""

    user_id: str
    api: MessageApi
    settings: Settings = field(default_factory=Settings)
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)


@dataclass
class SyncSession:
    phase: SessionPhase = SessionPhase.IDLE
    active_conversation_id: Optional[str] = None
    previous_conversation_id: Optional[str] = None
    last_rendered_message_id: Optional[str] = None
    is_cold_loading: bool = False
    search_filter: str = ""
    last_error: Optional[str] = None
    drafts: Dict[str, str] = field(default_factory=dict)
    sending: Set[str] = field(default_factory=set)
    revision: int = 0


RenderListener = Callable[[RenderSignal], None]


class SyncSessionController:
    """Keeps the conversation list and the open thread live by polling.

    One instance backs one mounted messaging view. ``mount`` arms the list
    poll and the heartbeat, ``open_conversation`` (re)arms the thread poll,
    ``unmount`` cancels everything and ends the session for good.
    """

    def __init__(self, context: SessionContext, scheduler: Optional[PollScheduler] = None) -> None:
        self.context = context
        self._settings = context.settings
        self._api = context.api
        self.queue = OptimisticSendQueue(clock=context.clock)
        self.store = ConversationStore(context.api)
        self.cache = MessageThreadCache(context.api, self.queue)
        self.scheduler = scheduler or PollScheduler()
        self._session: Optional[SyncSession] = None
        self._closed = False
        self._listeners: List[RenderListener] = []

    @property
    def session(self) -> SyncSession:
        if self._session is None:
            raise SessionClosedError("messaging view is not mounted")
        return self._session

    @property
    def mounted(self) -> bool:
        return self._session is not None

    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, reason: str, scroll_to_bottom: bool = False) -> None:
        session = self.session
        session.revision += 1
        signal = RenderSignal(revision=session.revision, scroll_to_bottom=scroll_to_bottom, reason=reason)
        for listener in list(self._listeners):
            listener(signal)

    def _is_active(self, conversation_id: str) -> bool:
        return self._session is not None and self._session.active_conversation_id == conversation_id

    # lifecycle

    async def mount(self, conversation_id: Optional[str] = None) -> ReadModel:
        if self._closed:
            raise SessionClosedError("session was unmounted; create a new controller")
        if self._session is not None:
            return self.read_model()
        self._session = SyncSession()
        logger.info("messaging view mounted for user %s", self.context.user_id)
        try:
            await self.store.refresh(silent=False)
        except ColdLoadError:
            if self._session is not None:
                self._session.last_error = LOAD_CONVERSATIONS_FAILED
        if self._session is None:
            return self._empty_model()
        self._emit("conversations")
        self.scheduler.arm(CONVERSATION_POLL, self._settings.conversation_poll_seconds, self.poll_conversations)
        self.scheduler.arm(HEARTBEAT, self._settings.heartbeat_seconds, self.heartbeat, fire_immediately=True)
        target = conversation_id if conversation_id and self.store.find(conversation_id) else None
        if target is None and self.store.conversations:
            target = self.store.conversations[0].id
        if target is not None:
            await self.open_conversation(target)
        return self.read_model()

    async def unmount(self) -> None:
        self.scheduler.cancel_all()
        if self._session is not None:
            logger.info("messaging view unmounted for user %s", self.context.user_id)
        self._session = None
        self._closed = True

    # commands

    async def open_conversation(self, conversation_id: str) -> ReadModel:
        session = self.session
        if conversation_id == session.active_conversation_id:
            return self.read_model()
        # the old thread timer goes before anything touches the new thread
        self.scheduler.cancel(THREAD_POLL)
        silent = conversation_id == session.previous_conversation_id and self.cache.has(conversation_id)
        session.phase = SessionPhase.SWITCHING if session.phase == SessionPhase.LIVE else SessionPhase.COLD_LOADING
        if session.active_conversation_id is not None:
            session.previous_conversation_id = session.active_conversation_id
            logger.info("switching from %s to %s", session.active_conversation_id, conversation_id)
        session.active_conversation_id = conversation_id
        session.last_rendered_message_id = self.cache.watermark(conversation_id) if silent else None
        session.is_cold_loading = not silent
        session.last_error = None
        self._emit("open", scroll_to_bottom=silent)

        if silent:
            update = await self.cache.refresh(conversation_id, is_current=partial(self._is_active, conversation_id))
        else:
            try:
                update = await self.cache.load(conversation_id, is_current=partial(self._is_active, conversation_id))
            except ColdLoadError:
                update = None
                if self._is_active(conversation_id):
                    self.cache.clear(conversation_id)
                    session.last_error = LOAD_MESSAGES_FAILED
        if not self._is_active(conversation_id):
            return self.read_model() if self.mounted else self._empty_model()
        if update is not None and update.discarded:
            # a newer open of the same conversation owns the outcome
            return self.read_model()

        session.phase = SessionPhase.LIVE
        session.is_cold_loading = False
        session.last_rendered_message_id = self.cache.watermark(conversation_id)
        if update is not None and update.changed and self.store.clear_unread(conversation_id):
            logger.debug("cleared unread count for %s", conversation_id)
        if not silent or update.changed:
            self._emit("loaded", scroll_to_bottom=update is not None and update.scroll_to_bottom)
        self.scheduler.arm(
            THREAD_POLL,
            self._settings.thread_poll_seconds,
            partial(self.poll_thread, conversation_id),
        )
        return self.read_model()

    async def send_message(self, text: str) -> Optional[Message]:
        session = self.session
        conversation_id = session.active_conversation_id
        body = (text or "").strip()
        if conversation_id is None or not body or conversation_id in session.sending:
            return None
        if len(body) > MAX_MESSAGE_LENGTH:
            session.last_error = MESSAGE_TOO_LONG
            self._emit("error")
            return None
        local = self.queue.enqueue(conversation_id, self.context.user_id, body)
        session.drafts.pop(conversation_id, None)
        session.sending.add(conversation_id)
        session.last_error = None
        self._emit("send", scroll_to_bottom=True)
        try:
            confirmed = await self._api.send_message(conversation_id, body)
        except ApiError as exc:
            logger.error("send to %s failed: %s", conversation_id, exc)
            self.queue.reject(local.id)
            if self._session is None:
                return None
            # restore only if the user has not started typing something else
            if not session.drafts.get(conversation_id):
                session.drafts[conversation_id] = body
            session.sending.discard(conversation_id)
            session.last_error = SEND_FAILED
            self._emit("send_failed")
            return None
        self.queue.acknowledge(local.id, confirmed.id)
        if self._session is None:
            return local
        session.sending.discard(conversation_id)
        self._emit("sent")
        return local

    def set_compose(self, text: str) -> None:
        session = self.session
        if session.active_conversation_id is None:
            return
        session.drafts[session.active_conversation_id] = text

    def select_filter(self, query: str) -> None:
        session = self.session
        if query == session.search_filter:
            return
        session.search_filter = query
        self._emit("filter")

    # timer ticks

    async def poll_thread(self, conversation_id: str) -> ThreadUpdate:
        if not self._is_active(conversation_id):
            return ThreadUpdate(changed=False, discarded=True)
        update = await self.cache.refresh(conversation_id, is_current=partial(self._is_active, conversation_id))
        if update.changed and self._is_active(conversation_id):
            self.session.last_rendered_message_id = self.cache.watermark(conversation_id)
            self._emit("thread", scroll_to_bottom=update.scroll_to_bottom)
        return update

    async def poll_conversations(self) -> bool:
        if self._session is None:
            return False
        changed = await self.store.refresh(silent=True)
        if changed and self._session is not None:
            if self.session.last_error == LOAD_CONVERSATIONS_FAILED:
                self.session.last_error = None
            self._emit("conversations")
        return changed

    async def heartbeat(self) -> None:
        try:
            await self._api.publish_heartbeat()
        except Exception as exc:
            logger.debug("heartbeat failed: %s", exc)

    # read side

    def read_model(self) -> ReadModel:
        session = self.session
        now = self.context.clock()
        policy = self._settings.presence
        views = [
            ConversationView(
                id=c.id,
                kind=c.kind,
                display_name=c.counterpart.display_name,
                avatar=c.counterpart.avatar,
                presence=presence_for(c, now, policy),
                preview_text=c.last_message_preview.text if c.last_message_preview else None,
                preview_time=format_preview_time(c.last_message_preview.sent_at, now) if c.last_message_preview else None,
                unread_count=c.unread_count,
            )
            for c in self.store.search(session.search_filter)
        ]
        active = session.active_conversation_id
        return ReadModel(
            phase=session.phase.value,
            conversations=views,
            active_conversation_id=active,
            active_thread=self.cache.messages(active) if active else [],
            is_cold_loading=session.is_cold_loading,
            is_sending=active in session.sending if active else False,
            compose_text=session.drafts.get(active, "") if active else "",
            search_filter=session.search_filter,
            last_error=session.last_error,
            revision=session.revision,
        )

    def _empty_model(self) -> ReadModel:
        return ReadModel(phase=SessionPhase.IDLE.value, conversations=[], active_thread=[])
