from collections.abc import Callable
from datetime import datetime

from mathsolver.schemas import Token


class QuotaClock:
    """Lazy calendar-day reset of per-token daily counters.

    There is no background job: a stale counter is corrected the first time
    the token is looked at on a new day.
    """

    def __init__(self, now: Callable[[], datetime] = datetime.now) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now()

    @staticmethod
    def is_stale(token: Token, now: datetime) -> bool:
        return token.last_used_at.date() != now.date()

    def maybe_reset(self, token: Token, now: datetime | None = None) -> bool:
        now = now or self.now()
        if not self.is_stale(token, now):
            return False
        token.used_today = 0
        token.last_used_at = now
        return True
