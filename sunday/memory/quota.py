"""Conversation quota: caps on creating new sessions."""

import logging
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from sunday.errors import QuotaExceeded

from .schemas import UserStatus, utcnow
from .store import ChatStore

logger = logging.getLogger(__name__)


class QuotaStatus(BaseModel):
    """Snapshot of a user's new-session quota."""

    sessions_created: int
    lifetime_limit: Optional[int] = None
    lifetime_remaining: Optional[int] = None
    window_sessions: int = 0
    window_limit: Optional[int] = None
    window_remaining: Optional[int] = None
    window_reset_at: Optional[datetime] = None


def parse_reset_time(value: str) -> time:
    """Parse an "HH:MM" boundary."""
    hours, minutes = value.strip().split(":")
    return time(hour=int(hours), minute=int(minutes))


class ConversationQuotaGovernor:
    """Gates creation of new sessions only.

    Continuing an existing session never consults or consumes quota.
    Supports a lifetime cap and a rolling window cap that resets at a daily
    wall-clock boundary.
    """

    def __init__(
        self,
        store: ChatStore,
        lifetime_limit: Optional[int] = 25,
        window_limit: Optional[int] = None,
        reset_time: time = time(0, 0),
        tz: tzinfo = timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.lifetime_limit = lifetime_limit
        self.window_limit = window_limit
        self.reset_time = reset_time
        self.tz = tz
        self.clock = clock or utcnow

    @classmethod
    def from_settings(cls, store: ChatStore, settings) -> "ConversationQuotaGovernor":
        return cls(
            store,
            lifetime_limit=settings.quota_lifetime_sessions,
            window_limit=settings.quota_window_sessions,
            reset_time=parse_reset_time(settings.quota_reset_time),
            tz=ZoneInfo(settings.quota_timezone),
        )

    def next_reset(self, now: datetime) -> datetime:
        """Next occurrence of the boundary time strictly after now."""
        local_now = now.astimezone(self.tz)
        candidate = datetime.combine(local_now.date(), self.reset_time, tzinfo=self.tz)
        if candidate <= local_now:
            candidate = datetime.combine(
                local_now.date() + timedelta(days=1), self.reset_time, tzinfo=self.tz
            )
        return candidate.astimezone(timezone.utc)

    def _roll_window(self, status: UserStatus, now: datetime) -> UserStatus:
        if status.window_reset_at is None or status.window_reset_at <= now:
            return status.model_copy(
                update={"window_sessions": 0, "window_reset_at": self.next_reset(now)}
            )
        return status

    async def consume(self, user_id: str) -> UserStatus:
        """Take one new-session slot.

        Runs as a transactional read-then-write on the user status.

        Returns:
            Updated user status

        Raises:
            QuotaExceeded: If the lifetime or window cap is reached
        """
        now = self.clock()

        def take_slot(status: UserStatus) -> UserStatus:
            status = self._roll_window(status, now)
            if self.lifetime_limit is not None and status.sessions_created >= self.lifetime_limit:
                raise QuotaExceeded("lifetime", self.lifetime_limit)
            if self.window_limit is not None and status.window_sessions >= self.window_limit:
                raise QuotaExceeded("window", self.window_limit, status.window_reset_at)
            return status.model_copy(
                update={
                    "sessions_created": status.sessions_created + 1,
                    "window_sessions": status.window_sessions + 1,
                }
            )

        try:
            updated = await self.store.update_user_status(user_id, take_slot)
        except QuotaExceeded as e:
            logger.info(f"Quota exceeded for user {user_id}: {e}")
            raise

        logger.debug(
            f"Session slot taken for user {user_id} "
            f"(lifetime={updated.sessions_created}, window={updated.window_sessions})"
        )
        return updated

    async def status(self, user_id: str) -> QuotaStatus:
        """Report quota usage without consuming anything."""
        now = self.clock()
        status = self._roll_window(await self.store.get_user_status(user_id), now)

        def remaining(limit: Optional[int], used: int) -> Optional[int]:
            return None if limit is None else max(0, limit - used)

        return QuotaStatus(
            sessions_created=status.sessions_created,
            lifetime_limit=self.lifetime_limit,
            lifetime_remaining=remaining(self.lifetime_limit, status.sessions_created),
            window_sessions=status.window_sessions,
            window_limit=self.window_limit,
            window_remaining=remaining(self.window_limit, status.window_sessions),
            window_reset_at=status.window_reset_at,
        )
