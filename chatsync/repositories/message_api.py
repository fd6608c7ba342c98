import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from pydantic import ValidationError

from chatsync.core.errors import ApiError
from chatsync.models.conversation import ConversationDocument
from chatsync.models.message import MessageDocument
from chatsync.models.user import UserDocument
from chatsync.schemas.conversation import Conversation, Counterpart, MessagePreview
from chatsync.schemas.message import Message


logger = logging.getLogger(__name__)


class MessageApi(Protocol):

    async def list_conversations(self) -> List[Conversation]: ...

    async def get_thread(self, conversation_id: str) -> List[Message]: ...

    async def send_message(self, conversation_id: str, text: str) -> Message: ...

    async def publish_heartbeat(self) -> None: ...


def _ref_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("_id") or value.get("id")
    return str(value) if value is not None else None


def _display_name(user: UserDocument) -> str:
    first = (user.get("first_name") or "").strip()
    if first:
        return f"{first} {(user.get('last_name') or '').strip()}".strip()
    return user.get("username") or "Unknown"


def conversation_from_document(doc: ConversationDocument, me: Optional[str]) -> Conversation:
    participants = [p for p in doc.get("participants") or [] if isinstance(p, dict)]
    kind = "direct" if doc.get("type", "direct") == "direct" else "group"
    if kind == "direct":
        other = next((p for p in participants if _ref_id(p) != me), participants[0] if participants else {})
        counterpart = Counterpart(
            display_name=_display_name(other) if other else (doc.get("name") or "Unknown"),
            user_id=_ref_id(other) if other else None,
            avatar=other.get("avatar") if other else None,
            last_active_at=other.get("last_active") if other else None,
        )
    else:
        team = doc.get("team") or {}
        counterpart = Counterpart(
            display_name=doc.get("name") or team.get("team_name") or "Group Chat",
            avatar=team.get("logo"),
        )
    last = doc.get("last_message") or None
    preview = None
    if last and last.get("content") is not None:
        preview = MessagePreview(text=last["content"], sent_at=last.get("sent_at"))
    return Conversation(
        id=_ref_id(doc) or "",
        kind=kind,
        counterpart=counterpart,
        last_message_preview=preview,
        unread_count=max(0, int(doc.get("unread_count") or 0)),
    )


def message_from_document(doc: MessageDocument, conversation_id: str) -> Message:
    return Message(
        id=_ref_id(doc) or "",
        conversation_id=_ref_id(doc.get("conversation")) or conversation_id,
        sender_id=_ref_id(doc.get("sender")) or "",
        text=doc.get("content") or "",
        sent_at=doc.get("created_at") or doc.get("createdAt"),
        origin="confirmed",
    )


class HttpMessageApi:
    """aiohttp client for the community backend's messaging endpoints.

    Every failure, transport or application level, surfaces as ``ApiError``
    so callers only have one thing to catch.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        user_id: Optional[str] = None,
        timeout_seconds: float = 10.0,
        page_size: int = 50,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._page_size = page_size
        self._session = session
        self._owns_session = session is None
        self.user_id = user_id

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.request(method, url, headers=self._headers(), **kwargs) as response:
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = None
                if response.status >= 400:
                    detail = payload.get("message") if isinstance(payload, dict) else None
                    raise ApiError(detail or response.reason or "request failed", status=response.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ApiError(f"{method} {path} failed: {exc!r}") from exc
        if not isinstance(payload, dict):
            return {}
        if payload.get("success") is False:
            raise ApiError(payload.get("message") or "request rejected", status=response.status)
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def current_user_id(self) -> str:
        if self.user_id:
            return self.user_id
        data = await self._request("GET", "/auth/me")
        user_id = _ref_id(data.get("user"))
        if not user_id:
            raise ApiError("current user missing from /auth/me response")
        self.user_id = user_id
        return user_id

    async def list_conversations(self) -> List[Conversation]:
        data = await self._request("GET", "/messages/conversations")
        try:
            return [conversation_from_document(doc, self.user_id) for doc in data.get("conversations") or []]
        except (ValidationError, TypeError, ValueError) as exc:
            raise ApiError(f"malformed conversation list: {exc}") from exc

    async def get_thread(self, conversation_id: str) -> List[Message]:
        data = await self._request(
            "GET",
            f"/messages/conversations/{conversation_id}",
            params={"limit": str(self._page_size)},
        )
        try:
            return [message_from_document(doc, conversation_id) for doc in data.get("messages") or []]
        except (ValidationError, TypeError, ValueError) as exc:
            raise ApiError(f"malformed thread {conversation_id}: {exc}") from exc

    async def send_message(self, conversation_id: str, text: str) -> Message:
        data = await self._request(
            "POST",
            f"/messages/conversations/{conversation_id}/messages",
            json={"content": text, "message_type": "text"},
        )
        doc = data.get("message")
        if not isinstance(doc, dict):
            raise ApiError("send response did not include the stored message")
        try:
            return message_from_document(doc, conversation_id)
        except (ValidationError, TypeError, ValueError) as exc:
            raise ApiError(f"malformed send response: {exc}") from exc

    async def publish_heartbeat(self) -> None:
        await self._request("POST", "/auth/heartbeat")
