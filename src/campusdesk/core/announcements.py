import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

CATEGORIES = ("General", "Academic", "Events", "Emergency", "Important")
PRIORITIES = ("Low", "Medium", "High", "Critical")

AUDIENCE_ALL = "All"
AUDIENCE_YEAR = "Specific Year"
AUDIENCE_SEMESTER = "Specific Semester"
AUDIENCE_DEPARTMENT = "Specific Department"
AUDIENCES = (AUDIENCE_ALL, AUDIENCE_YEAR, AUDIENCE_SEMESTER, AUDIENCE_DEPARTMENT)


@dataclass(frozen=True)
class AudienceProfile:
    year: Optional[int] = None
    semester: Optional[int] = None
    department: Optional[str] = None


def matches_audience(announcement: Mapping[str, Any], profile: AudienceProfile) -> bool:
    audience = announcement.get("target_audience") or AUDIENCE_ALL
    if audience == AUDIENCE_ALL:
        return True
    if audience == AUDIENCE_YEAR:
        return profile.year is not None and announcement.get("target_year") == profile.year
    if audience == AUDIENCE_SEMESTER:
        return profile.semester is not None and announcement.get("target_semester") == profile.semester
    if audience == AUDIENCE_DEPARTMENT:
        return profile.department is not None and announcement.get("target_department") == profile.department
    return False


def _parse_iso(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_live(announcement: Mapping[str, Any], now: datetime) -> bool:
    if not announcement.get("is_active", True):
        return False
    expires_at = _parse_iso(announcement.get("expires_at"))
    if expires_at is None:
        return True
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return expires_at > now


def sort_for_display(announcements: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Highest priority first, newest first within a priority."""
    ranked = sorted(announcements, key=lambda item: str(item.get("created_at") or ""), reverse=True)
    rank = {name: index for index, name in enumerate(PRIORITIES)}
    return sorted(ranked, key=lambda item: rank.get(item.get("priority"), -1), reverse=True)


class Subscription:
    def __init__(self, profile: AudienceProfile, loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self.profile = profile
        self.loop = loop
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, payload: Dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Announcement feed queue full; dropped %s", payload.get("id"))

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


@dataclass
class AnnouncementChannel:
    """
    In-process fan-out of announcements to live subscribers.

    Delivery is best effort: subscribers that are not matched by the
    audience predicate are skipped, and a subscriber whose queue is full
    loses the message.
    """

    queue_size: int = 100
    _subscriptions: List[Subscription] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def subscribe(self, profile: AudienceProfile, loop: asyncio.AbstractEventLoop) -> Subscription:
        subscription = Subscription(profile, loop, self.queue_size)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Announcement subscriber added (%d live)", len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, announcement: Mapping[str, Any]) -> int:
        payload = dict(announcement)
        with self._lock:
            targets = [sub for sub in self._subscriptions if matches_audience(payload, sub.profile)]

        delivered = 0
        for sub in targets:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, payload)
            except RuntimeError:
                # Loop already closed; the subscriber is gone.
                self.unsubscribe(sub)
                continue
            delivered += 1

        logger.info("Announcement %s published to %d subscriber(s)", payload.get("id"), delivered)
        return delivered
