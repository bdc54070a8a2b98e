"""
Rate limiting service for verification code issuance
Redis-backed with in-memory fallback
"""
import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from redis.exceptions import RedisError

from ...core.clock import seconds_until, to_epoch, from_epoch
from ..verification_errors import CooldownActiveError

logger = logging.getLogger(__name__)


class RateLimitService:
    """
    Rate limiting service for code issuance (request and resend).

    Limits (per session key):
    - Cooldown: minimum interval between two issuances
    - Window: at most `issue_limit` issuances per `issue_window`

    The session's own last_issued_at is always taken into account, so the
    cooldown holds even if this service's records were lost.
    """

    def __init__(
        self,
        cooldown: timedelta = timedelta(seconds=60),
        issue_limit: int = 5,
        issue_window: timedelta = timedelta(minutes=10),
        redis_client=None,
        key_prefix: str = "otpverify",
    ):
        self.cooldown = cooldown
        self.issue_limit = issue_limit
        self.issue_window = issue_window
        self._redis = redis_client
        self._key_prefix = key_prefix
        # Fallback in-memory store: key -> issuance timestamps (epoch seconds)
        self._issues: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:rate_limit:issue:{key}"

    def _window_seconds(self) -> int:
        return max(1, int(self.issue_window.total_seconds()))

    def _recent_issues_redis(self, key: str, now: float) -> Optional[List[float]]:
        """Issuance timestamps inside the window from Redis. Returns None if Redis unavailable."""
        if not self._redis:
            return None

        try:
            redis_key = self._redis_key(key)
            pipe = self._redis.pipeline()
            # Remove old entries (cleanup)
            pipe.zremrangebyscore(redis_key, 0, now - self._window_seconds())
            pipe.zrangebyscore(redis_key, now - self._window_seconds(), "+inf", withscores=True)
            _, entries = pipe.execute()
            return sorted(float(score) for _, score in entries)
        except RedisError as e:
            logger.warning(f"[OTP][RateLimit] Redis check failed, using fallback: {e}")
            return None

    def _recent_issues_memory(self, key: str, now: float) -> List[float]:
        with self._lock:
            window_start = now - self.issue_window.total_seconds()
            recent = [ts for ts in self._issues.get(key, []) if ts > window_start]
            if recent:
                self._issues[key] = recent
            else:
                self._issues.pop(key, None)
            return list(recent)

    def _recent_issues(self, key: str, now: float) -> List[float]:
        recent = self._recent_issues_redis(key, now)
        if recent is None:
            recent = self._recent_issues_memory(key, now)
        return recent

    def retry_after(self, key: str, now: datetime, last_issued_at: Optional[datetime] = None) -> int:
        """
        Seconds until another code may be issued for key (0 if allowed now).

        Args:
            key: Session key
            now: Current time
            last_issued_at: Issuance time recorded on the live session, if any
        """
        now_ts = to_epoch(now)
        recent = self._recent_issues(key, now_ts)

        latest = last_issued_at
        if recent:
            recorded = from_epoch(recent[-1])
            if latest is None or recorded > latest:
                latest = recorded

        wait = 0
        if latest is not None:
            wait = seconds_until(latest + self.cooldown, now)

        if len(recent) >= self.issue_limit:
            # Oldest issuance that must leave the window before the count drops below the limit
            oldest = from_epoch(recent[len(recent) - self.issue_limit])
            wait = max(wait, seconds_until(oldest + self.issue_window, now))

        return wait

    def check_issue(self, key: str, now: datetime, last_issued_at: Optional[datetime] = None) -> None:
        """
        Raise CooldownActiveError if a code may not be issued for key right now.
        """
        wait = self.retry_after(key, now, last_issued_at)
        if wait > 0:
            logger.info(f"[OTP][RateLimit] Issuance blocked for {key}, retry in {wait}s")
            raise CooldownActiveError(retry_after=wait)

    def record_issue(self, key: str, now: datetime) -> None:
        """Record a code issuance"""
        now_ts = to_epoch(now)
        if self._redis:
            try:
                redis_key = self._redis_key(key)
                pipe = self._redis.pipeline()
                pipe.zadd(redis_key, {str(now_ts): now_ts})
                pipe.zremrangebyscore(redis_key, 0, now_ts - self._window_seconds())
                pipe.expire(redis_key, self._window_seconds())
                pipe.execute()
            except RedisError as e:
                logger.warning(f"[OTP][RateLimit] Redis record failed: {e}")
        # Also record in memory (fallback)
        with self._lock:
            self._issues[key].append(now_ts)

    def forget_issue(self, key: str, issued_at: datetime) -> None:
        """Drop one issuance record, used when the code could not be delivered"""
        issued_ts = to_epoch(issued_at)
        if self._redis:
            try:
                self._redis.zrem(self._redis_key(key), str(issued_ts))
            except RedisError as e:
                logger.warning(f"[OTP][RateLimit] Redis forget failed: {e}")
        with self._lock:
            entries = self._issues.get(key)
            if entries and issued_ts in entries:
                entries.remove(issued_ts)
                if not entries:
                    self._issues.pop(key, None)

    def prune(self, now: datetime) -> int:
        """Remove in-memory records outside the window. Returns keys dropped."""
        window_start = to_epoch(now) - self.issue_window.total_seconds()
        dropped = 0
        with self._lock:
            for key in list(self._issues.keys()):
                recent = [ts for ts in self._issues[key] if ts > window_start]
                if recent:
                    self._issues[key] = recent
                else:
                    del self._issues[key]
                    dropped += 1
        return dropped
