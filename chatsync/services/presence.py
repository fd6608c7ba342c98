from datetime import datetime, timezone
from typing import Optional

from chatsync.core.config import PresencePolicy
from chatsync.schemas.conversation import Conversation
from chatsync.schemas.presence import PresenceStatus


DEFAULT_POLICY = PresencePolicy()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def estimate(
    last_active_at: Optional[datetime],
    now: datetime,
    policy: PresencePolicy = DEFAULT_POLICY,
) -> PresenceStatus:
    """Classify how recently a user was active.

    Exactly at a threshold the staler bucket wins. Timestamps in the future
    (clock skew between server and client) count as online.
    """
    if last_active_at is None:
        return PresenceStatus.OFFLINE
    elapsed = (_as_utc(now) - _as_utc(last_active_at)).total_seconds()
    if elapsed < policy.online_seconds:
        return PresenceStatus.ONLINE
    if elapsed < policy.away_seconds:
        return PresenceStatus.AWAY
    return PresenceStatus.OFFLINE


def presence_for(
    conversation: Conversation,
    now: datetime,
    policy: PresencePolicy = DEFAULT_POLICY,
) -> Optional[PresenceStatus]:
    # group conversations never carry a presence dot
    if not conversation.shows_presence:
        return None
    return estimate(conversation.counterpart.last_active_at, now, policy)
