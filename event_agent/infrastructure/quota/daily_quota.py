"""进程内的每日 AI 对话配额。

- 每个用户每天最多 daily_prompt_limit 次（默认 5），可以按用户单独设置上限。
- 计数在 UTC 零点重置；被拒绝时 retry_after 为下一个 UTC 零点。
- unlimited_users 中的用户（例如管理员）不受限制，也不计数。
"""

import threading
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional

from event_agent.config.settings import settings
from event_agent.domain.quota import QuotaService, QuotaStatus


UNLIMITED = 999


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_reset(now: datetime) -> datetime:
    """now 之后的下一个 UTC 零点。"""

    tomorrow = now.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


@dataclass
class _Usage:
    day: date
    count: int = 0
    daily_limit: Optional[int] = None


class DailyQuotaTracker(QuotaService):
    def __init__(
        self,
        daily_limit: Optional[int] = None,
        unlimited_users: Iterable[str] = (),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._default_limit = settings.daily_prompt_limit if daily_limit is None else daily_limit
        self._unlimited = set(unlimited_users)
        self._clock = clock
        self._lock = threading.Lock()
        self._usage: Dict[str, _Usage] = {}

    def check_quota(self, user_id: str) -> QuotaStatus:
        if user_id in self._unlimited:
            return QuotaStatus(allowed=True, remaining=UNLIMITED, limit=UNLIMITED, reason="Unlimited access")
        now = self._clock()
        with self._lock:
            usage = self._current(user_id, now)
            limit = self._limit_for(usage)
            remaining = max(0, limit - usage.count)
        if remaining > 0:
            return QuotaStatus(allowed=True, remaining=remaining, limit=limit)
        return QuotaStatus(
            allowed=False,
            remaining=0,
            limit=limit,
            retry_after=next_reset(now),
            reason="Daily limit reached",
        )

    def increment_usage(self, user_id: str) -> None:
        if user_id in self._unlimited:
            return
        with self._lock:
            usage = self._current(user_id, self._clock())
            usage.count += 1

    def set_daily_limit(self, user_id: str, limit: int) -> None:
        """为单个用户设置每日上限（只影响该用户）。"""

        if limit < 0:
            raise ValueError("daily limit must be >= 0")
        with self._lock:
            self._current(user_id, self._clock()).daily_limit = limit

    def _current(self, user_id: str, now: datetime) -> _Usage:
        today = now.astimezone(timezone.utc).date()
        usage = self._usage.get(user_id)
        if usage is None:
            usage = self._usage[user_id] = _Usage(day=today)
        elif usage.day != today:
            usage.day = today
            usage.count = 0
        return usage

    def _limit_for(self, usage: _Usage) -> int:
        return self._default_limit if usage.daily_limit is None else usage.daily_limit
