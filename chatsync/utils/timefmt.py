from datetime import datetime, timezone
from typing import Optional


SECONDS_PER_DAY = 24 * 60 * 60


def format_preview_time(sent_at: Optional[datetime], now: datetime) -> str:
    """Short label for a conversation preview: clock time, "Yesterday",
    "N days ago" within a week, else the ISO date. Days are whole elapsed
    24 hour periods, not calendar days."""
    if sent_at is None:
        return ""
    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    diff_days = int((now - sent_at).total_seconds() // SECONDS_PER_DAY)
    local_sent = sent_at.astimezone(now.tzinfo)
    if diff_days <= 0:
        hour = local_sent.hour % 12 or 12
        suffix = "AM" if local_sent.hour < 12 else "PM"
        return f"{hour}:{local_sent.minute:02d} {suffix}"
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    return local_sent.date().isoformat()
