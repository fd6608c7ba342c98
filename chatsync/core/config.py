import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


DEFAULT_API_URL = "http://localhost:8046/api"


@dataclass(frozen=True)
class PresencePolicy:
    # thresholds are exclusive upper bounds for the fresher state
    online_seconds: float = 120.0
    away_seconds: float = 600.0

    def __post_init__(self) -> None:
        if self.online_seconds <= 0:
            raise ValueError("online_seconds must be positive")
        if self.away_seconds <= self.online_seconds:
            raise ValueError("away_seconds must be greater than online_seconds")


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    api_token: Optional[str] = None
    thread_poll_seconds: float = 3.0
    conversation_poll_seconds: Optional[float] = None
    heartbeat_seconds: float = 30.0
    request_timeout_seconds: float = 10.0
    thread_page_size: int = 50
    log_level: str = "INFO"
    presence: PresencePolicy = field(default_factory=PresencePolicy)

    def __post_init__(self) -> None:
        if self.conversation_poll_seconds is None:
            object.__setattr__(self, "conversation_poll_seconds", self.thread_poll_seconds * 2)
        for name in ("thread_poll_seconds", "conversation_poll_seconds", "heartbeat_seconds", "request_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.thread_page_size < 1:
            raise ValueError("thread_page_size must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        conversation_poll = os.getenv("CHATSYNC_CONVERSATION_POLL_SECONDS")
        return cls(
            api_url=os.getenv("CHATSYNC_API_URL", DEFAULT_API_URL),
            api_token=os.getenv("CHATSYNC_API_TOKEN") or None,
            thread_poll_seconds=float(os.getenv("CHATSYNC_THREAD_POLL_SECONDS", "3")),
            conversation_poll_seconds=float(conversation_poll) if conversation_poll else None,
            heartbeat_seconds=float(os.getenv("CHATSYNC_HEARTBEAT_SECONDS", "30")),
            request_timeout_seconds=float(os.getenv("CHATSYNC_REQUEST_TIMEOUT_SECONDS", "10")),
            thread_page_size=int(os.getenv("CHATSYNC_THREAD_PAGE_SIZE", "50")),
            log_level=os.getenv("CHATSYNC_LOG_LEVEL", "INFO").upper(),
            presence=PresencePolicy(
                online_seconds=float(os.getenv("CHATSYNC_ONLINE_SECONDS", "120")),
                away_seconds=float(os.getenv("CHATSYNC_AWAY_SECONDS", "600")),
            ),
        )
