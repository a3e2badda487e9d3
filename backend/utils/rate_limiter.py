"""Per-key sliding-window limiter for signing-link OTP submissions (in-memory, per process)."""
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self):
        self.attempts: Dict[str, Deque[datetime]] = {}

    def _prune(self, key: str, now: datetime, window: timedelta) -> Deque[datetime]:
        stamps = self.attempts.get(key)
        if stamps is None:
            return deque()
        while stamps and now - stamps[0] >= window:
            stamps.popleft()
        if not stamps:
            # Idle keys are dropped so the map only holds live windows
            del self.attempts[key]
        return stamps

    async def check_rate_limit(
        self,
        key: str,
        max_attempts: int,
        window_minutes: int
    ) -> Tuple[bool, Optional[str]]:
        """Record an attempt for `key` unless the window is full.

        Returns (allowed, error_message).
        """
        now = datetime.now(timezone.utc)
        window = timedelta(minutes=window_minutes)
        stamps = self._prune(key, now, window)

        if len(stamps) >= max_attempts:
            retry_after = max(int((stamps[0] + window - now).total_seconds()), 1)
            logger.info(f"Rate limit hit key={key[:24]} attempts={len(stamps)} retry_after={retry_after}s")
            return False, f"Too many attempts. Try again in {retry_after} seconds"

        stamps.append(now)
        self.attempts[key] = stamps
        return True, None

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self.attempts.clear()
        else:
            self.attempts.pop(key, None)


rate_limiter = RateLimiter()
