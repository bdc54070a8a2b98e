"""
Verification session repositories.

One live session per key. Every read-modify-write goes through
compare_and_update, which is atomic per key:
- InMemorySessionRepository: one lock per key, single process only
- RedisSessionRepository: WATCH/MULTI/EXEC with bounded retries, shared
  across instances, native per-key TTL
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, Optional

from redis.exceptions import WatchError

from ..core.clock import Clock, utc_now
from ..models.verification_session import VerificationSession
from .verification_errors import SessionConflictError

logger = logging.getLogger(__name__)

Mutator = Callable[[Optional[VerificationSession]], Optional[VerificationSession]]


class SessionRepository(ABC):
    """Keyed store of verification sessions"""

    def __init__(self, retention: timedelta = timedelta(hours=1), clock: Clock = utc_now):
        self.retention = retention
        self._clock = clock

    def is_stale(self, session: VerificationSession, now: datetime) -> bool:
        return now >= session.retain_until(self.retention)

    @abstractmethod
    def create(self, key: str, session: VerificationSession) -> None:
        """Insert or overwrite the session for key."""

    @abstractmethod
    def get(self, key: str) -> Optional[VerificationSession]:
        """Fetch the session for key; stale sessions read as absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the session for key if present."""

    @abstractmethod
    def compare_and_update(self, key: str, mutator: Mutator) -> Optional[VerificationSession]:
        """
        Fetch, mutate and store as one atomic unit for key.

        Args:
            key: Session key
            mutator: Receives the current session (or None) and returns the
                session to store, or None to delete. Raising aborts the
                update and leaves the stored session untouched.

        Returns:
            The session that was stored, or None if the key was deleted
        """

    @abstractmethod
    def purge_stale(self, now: Optional[datetime] = None) -> int:
        """Remove stale sessions. Returns the number removed."""


class _KeyLock:
    """Per-key lock plus the number of threads holding or waiting on it."""
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class InMemorySessionRepository(SessionRepository):
    """
    Process-local repository.

    Thread-safe. Operations on the same key are serialized by a per-key lock;
    different keys never wait on each other.
    """

    def __init__(self, retention: timedelta = timedelta(hours=1), clock: Clock = utc_now):
        super().__init__(retention=retention, clock=clock)
        self._sessions: Dict[str, VerificationSession] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        # users counts holders and waiters; purge_stale only drops idle entries
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1

    def _load(self, key: str) -> Optional[VerificationSession]:
        """Read the session for key, evicting it if stale. Caller holds the key lock."""
        session = self._sessions.get(key)
        if session is not None and self.is_stale(session, self._clock()):
            logger.debug(f"[OTP][Store] Evicting stale session {key}")
            self._sessions.pop(key, None)
            return None
        return session

    def create(self, key: str, session: VerificationSession) -> None:
        with self._key_lock(key):
            self._sessions[key] = session

    def get(self, key: str) -> Optional[VerificationSession]:
        with self._key_lock(key):
            return self._load(key)

    def delete(self, key: str) -> None:
        with self._key_lock(key):
            self._sessions.pop(key, None)

    def compare_and_update(self, key: str, mutator: Mutator) -> Optional[VerificationSession]:
        with self._key_lock(key):
            current = self._load(key)
            updated = mutator(current)
            if updated is None:
                self._sessions.pop(key, None)
            else:
                self._sessions[key] = updated
            return updated

    def purge_stale(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        removed = 0
        for key in list(self._sessions.keys()):
            with self._key_lock(key):
                session = self._sessions.get(key)
                if session is not None and self.is_stale(session, now):
                    del self._sessions[key]
                    removed += 1

        # Drop locks for keys that hold no session and have no holders or waiters
        with self._locks_guard:
            for key in list(self._locks.keys()):
                if key not in self._sessions and self._locks[key].users == 0:
                    del self._locks[key]

        if removed:
            logger.info(f"[OTP][Store] Purged {removed} stale session(s)")
        return removed

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionRepository(SessionRepository):
    """
    Redis-backed repository for multi-instance deployments.

    Sessions are stored as JSON with a TTL equal to their retention horizon,
    so Redis reaps stale sessions on its own.
    """

    def __init__(
        self,
        redis_client,
        retention: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
        key_prefix: str = "otpverify",
        max_retries: int = 5,
    ):
        super().__init__(retention=retention, clock=clock)
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._max_retries = max(1, max_retries)

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:session:{key}"

    def _ttl_ms(self, session: VerificationSession, now: datetime) -> int:
        ttl = (session.retain_until(self.retention) - now).total_seconds()
        return max(1, int(ttl * 1000))

    @staticmethod
    def _encode(session: VerificationSession) -> str:
        return json.dumps(session.to_dict(), separators=(",", ":"))

    @staticmethod
    def _decode(raw) -> Optional[VerificationSession]:
        if not raw:
            return None
        return VerificationSession.from_dict(json.loads(raw))

    def create(self, key: str, session: VerificationSession) -> None:
        now = self._clock()
        self._redis.set(self._redis_key(key), self._encode(session), px=self._ttl_ms(session, now))

    def get(self, key: str) -> Optional[VerificationSession]:
        session = self._decode(self._redis.get(self._redis_key(key)))
        if session is not None and self.is_stale(session, self._clock()):
            return None
        return session

    def delete(self, key: str) -> None:
        self._redis.delete(self._redis_key(key))

    def compare_and_update(self, key: str, mutator: Mutator) -> Optional[VerificationSession]:
        redis_key = self._redis_key(key)

        for attempt in range(1, self._max_retries + 1):
            with self._redis.pipeline() as pipe:
                try:
                    pipe.watch(redis_key)
                    now = self._clock()
                    current = self._decode(pipe.get(redis_key))
                    if current is not None and self.is_stale(current, now):
                        current = None

                    updated = mutator(current)

                    pipe.multi()
                    if updated is None:
                        pipe.delete(redis_key)
                    else:
                        pipe.set(redis_key, self._encode(updated), px=self._ttl_ms(updated, now))
                    pipe.execute()
                    return updated
                except WatchError:
                    logger.info(f"[OTP][Store] Concurrent update on {key}, retrying ({attempt}/{self._max_retries})")

        logger.warning(f"[OTP][Store] Giving up on {key} after {self._max_retries} conflicting updates")
        raise SessionConflictError(key, self._max_retries)

    def purge_stale(self, now: Optional[datetime] = None) -> int:
        # Keys carry their own TTL; nothing to sweep.
        return 0
