import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from chatsync.core.config import Settings
from chatsync.core.errors import ApiError
from chatsync.schemas.conversation import Conversation, Counterpart, MessagePreview
from chatsync.schemas.message import Message
from chatsync.services.sync_service import SessionContext, SyncSessionController


NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
ME = "user-me"
ALICE = "user-alice"


def make_message(message_id: str, conversation_id: str, sender_id: str, text: str, minutes_ago: float) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        text=text,
        sent_at=NOW - timedelta(minutes=minutes_ago),
    )


def make_conversations() -> List[Conversation]:
    return [
        Conversation(
            id="c1",
            kind="direct",
            counterpart=Counterpart(display_name="Alice Martin", user_id=ALICE, last_active_at=NOW - timedelta(seconds=30)),
            last_message_preview=MessagePreview(text="see you", sent_at=NOW - timedelta(minutes=5)),
            unread_count=2,
        ),
        Conversation(
            id="c2",
            kind="group",
            counterpart=Counterpart(display_name="Sunday League"),
            last_message_preview=MessagePreview(text="kickoff at 10", sent_at=NOW - timedelta(hours=3)),
        ),
    ]


def make_thread() -> List[Message]:
    return [
        make_message("m1", "c1", ALICE, "hi", 30),
        make_message("m2", "c1", ME, "hey", 20),
        make_message("m3", "c1", ALICE, "see you", 5),
    ]


class FakeMessageApi:
    """In-memory stand-in for the backend, with switchable failures and gates."""

    def __init__(self) -> None:
        self.user_id: Optional[str] = ME
        self.conversations: List[Conversation] = make_conversations()
        self.threads: Dict[str, List[Message]] = {
            "c1": make_thread(),
            "c2": [make_message("g1", "c2", "user-bob", "kickoff at 10", 180)],
        }
        self.fail_list = False
        self.fail_threads: Set[str] = set()
        self.fail_after_gate: Set[str] = set()
        self.fail_send = False
        self.fail_heartbeat = False
        self.deliver_sends = True
        self.thread_gates: Dict[str, asyncio.Event] = {}
        self.list_gate: Optional[asyncio.Event] = None
        self.send_gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.heartbeats = 0
        self.user_delay = 0.0
        self._next_id = 100

    async def current_user_id(self) -> str:
        if self.user_delay:
            await asyncio.sleep(self.user_delay)
        return self.user_id

    async def list_conversations(self) -> List[Conversation]:
        self.calls.append(("list_conversations",))
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list:
            raise ApiError("list unavailable", status=503)
        return list(self.conversations)

    async def get_thread(self, conversation_id: str) -> List[Message]:
        self.calls.append(("get_thread", conversation_id))
        if conversation_id in self.fail_threads:
            raise ApiError("thread unavailable", status=503)
        # what the server had when the request was dispatched
        snapshot = list(self.threads.get(conversation_id, []))
        gate = self.thread_gates.get(conversation_id)
        if gate is not None:
            await gate.wait()
        if conversation_id in self.fail_after_gate:
            raise ApiError("thread unavailable", status=503)
        return snapshot

    async def send_message(self, conversation_id: str, text: str) -> Message:
        self.calls.append(("send_message", conversation_id, text))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            raise ApiError("send rejected", status=500)
        self._next_id += 1
        message = Message(
            id=f"m{self._next_id}",
            conversation_id=conversation_id,
            sender_id=ME,
            text=text,
            sent_at=NOW + timedelta(seconds=self._next_id),
        )
        if self.deliver_sends:
            self.threads.setdefault(conversation_id, []).append(message)
        return message

    async def publish_heartbeat(self) -> None:
        self.heartbeats += 1
        if self.fail_heartbeat:
            raise ApiError("heartbeat failed", status=500)

    def thread_fetches(self, conversation_id: str) -> int:
        return sum(1 for call in self.calls if call == ("get_thread", conversation_id))


# long enough that only explicitly driven ticks run inside a test
QUIET_SETTINGS = Settings(thread_poll_seconds=3600, heartbeat_seconds=3600)


@pytest.fixture
def api() -> FakeMessageApi:
    return FakeMessageApi()


@pytest.fixture
def make_controller(api):
    def factory(settings: Settings = QUIET_SETTINGS) -> SyncSessionController:
        context = SessionContext(user_id=ME, api=api, settings=settings, clock=lambda: NOW)
        return SyncSessionController(context)

    return factory
