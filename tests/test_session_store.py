"""
Tests for session repositories (in-memory and Redis WATCH/MULTI/EXEC)
"""
import json
import threading
import time
from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import WatchError

from otpverify.models.verification_session import VerificationPurpose, VerificationSession
from otpverify.services.session_store import InMemorySessionRepository, RedisSessionRepository
from otpverify.services.verification_errors import SessionConflictError, SessionNotFoundError

KEY = "signup:a@b.com"


def make_session(clock, **overrides) -> VerificationSession:
    now = clock()
    fields = dict(
        identifier="a@b.com",
        purpose=VerificationPurpose.SIGNUP,
        code_hash="digest",
        created_at=now,
        expires_at=now + timedelta(seconds=300),
        last_issued_at=now,
        max_attempts=3,
    )
    fields.update(overrides)
    return VerificationSession(**fields)


class TestInMemorySessionRepository:
    def test_create_get_delete(self, repository, clock):
        session = make_session(clock)
        repository.create(KEY, session)
        assert repository.get(KEY) == session

        repository.delete(KEY)
        assert repository.get(KEY) is None
        # Deleting twice is a no-op
        repository.delete(KEY)

    def test_create_replaces_existing(self, repository, clock):
        repository.create(KEY, make_session(clock, code_hash="old"))
        repository.create(KEY, make_session(clock, code_hash="new"))
        assert repository.get(KEY).code_hash == "new"
        assert len(repository) == 1

    def test_compare_and_update_stores_result(self, repository, clock):
        repository.create(KEY, make_session(clock))
        updated = repository.compare_and_update(KEY, lambda s: replace(s, attempt_count=s.attempt_count + 1))
        assert updated.attempt_count == 1
        assert repository.get(KEY).attempt_count == 1

    def test_compare_and_update_none_deletes(self, repository, clock):
        repository.create(KEY, make_session(clock))
        assert repository.compare_and_update(KEY, lambda s: None) is None
        assert repository.get(KEY) is None

    def test_mutator_sees_none_for_missing_key(self, repository):
        seen = []
        repository.compare_and_update(KEY, lambda s: seen.append(s))
        assert seen == [None]

    def test_raising_mutator_leaves_session_untouched(self, repository, clock):
        session = make_session(clock)
        repository.create(KEY, session)

        def boom(current):
            raise SessionNotFoundError()

        with pytest.raises(SessionNotFoundError):
            repository.compare_and_update(KEY, boom)
        assert repository.get(KEY) == session

    def test_session_kept_through_retention_then_evicted(self, repository, clock):
        repository.create(KEY, make_session(clock))

        clock.advance(300 + 3599)
        assert repository.get(KEY) is not None

        clock.advance(1)
        assert repository.get(KEY) is None
        assert len(repository) == 0

    def test_lock_extends_retention(self, repository, clock):
        repository.create(KEY, make_session(clock, locked_until=clock() + timedelta(seconds=900)))
        clock.advance(300 + 3600)
        assert repository.get(KEY) is not None
        clock.advance(600)
        assert repository.get(KEY) is None

    def test_purge_stale(self, repository, clock):
        repository.create(KEY, make_session(clock))
        clock.advance(1000)
        repository.create("signup:c@d.com", make_session(clock, identifier="c@d.com"))

        clock.advance(3000)
        assert repository.purge_stale() == 1
        assert repository.get(KEY) is None
        assert repository.get("signup:c@d.com") is not None

    def test_concurrent_updates_are_not_lost(self, clock):
        repository = InMemorySessionRepository(clock=clock)
        repository.create(KEY, make_session(clock, max_attempts=10_000))

        def bump():
            for _ in range(200):
                repository.compare_and_update(KEY, lambda s: replace(s, attempt_count=s.attempt_count + 1))

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert repository.get(KEY).attempt_count == 1600

    def test_different_keys_do_not_block(self, repository, clock):
        repository.create(KEY, make_session(clock))
        other_key = "signup:c@d.com"
        entered = threading.Event()
        release = threading.Event()

        def slow(current):
            entered.set()
            release.wait(timeout=5)
            return current

        worker = threading.Thread(target=repository.compare_and_update, args=(KEY, slow))
        worker.start()
        assert entered.wait(timeout=5)

        # Holding KEY must not stall another identifier
        repository.compare_and_update(other_key, lambda s: make_session(clock, identifier="c@d.com"))
        assert repository.get(other_key) is not None

        release.set()
        worker.join(timeout=5)

    def test_purge_keeps_lock_of_key_in_use(self, repository, clock):
        """A key with no session yet keeps its lock while someone holds it."""
        with repository._key_lock(KEY):
            held = repository._locks[KEY]
            repository.purge_stale(clock())
            assert repository._locks.get(KEY) is held

        repository.purge_stale(clock())
        assert KEY not in repository._locks

    def test_purge_keeps_lock_of_waiting_thread(self, repository, clock):
        entered = threading.Event()
        release = threading.Event()
        order = []

        def holder(current):
            entered.set()
            release.wait(timeout=5)
            order.append("holder")
            return None

        def waiter(current):
            order.append("waiter")
            return None

        first = threading.Thread(target=repository.compare_and_update, args=(KEY, holder))
        first.start()
        assert entered.wait(timeout=5)

        second = threading.Thread(target=repository.compare_and_update, args=(KEY, waiter))
        second.start()
        for _ in range(500):
            if repository._locks[KEY].users == 2:
                break
            time.sleep(0.01)
        assert repository._locks[KEY].users == 2

        # Neither the holder nor the blocked waiter loses the shared lock
        repository.purge_stale(clock())
        assert KEY in repository._locks

        # A third caller must queue on the same lock rather than run alongside
        third_ran = threading.Event()
        third = threading.Thread(
            target=repository.compare_and_update,
            args=(KEY, lambda s: third_ran.set()),
        )
        third.start()
        assert not third_ran.wait(timeout=0.2)

        release.set()
        for t in (first, second, third):
            t.join(timeout=5)
        assert order == ["holder", "waiter"]
        assert third_ran.is_set()
        repository.purge_stale(clock())
        assert KEY not in repository._locks


def make_redis(pipe):
    client = MagicMock()
    client.pipeline.return_value.__enter__.return_value = pipe
    return client


class TestRedisSessionRepository:
    def test_get_decodes_json(self, clock):
        session = make_session(clock)
        client = MagicMock()
        client.get.return_value = json.dumps(session.to_dict())
        repository = RedisSessionRepository(client, clock=clock)

        assert repository.get(KEY) == session
        client.get.assert_called_once_with("otpverify:session:signup:a@b.com")

    def test_get_missing(self, clock):
        client = MagicMock()
        client.get.return_value = None
        assert RedisSessionRepository(client, clock=clock).get(KEY) is None

    def test_get_hides_stale_session(self, clock):
        session = make_session(clock)
        client = MagicMock()
        client.get.return_value = json.dumps(session.to_dict())
        repository = RedisSessionRepository(client, clock=clock)

        clock.advance(300 + 3600)
        assert repository.get(KEY) is None

    def test_create_sets_ttl_to_retention_horizon(self, clock):
        client = MagicMock()
        repository = RedisSessionRepository(client, retention=timedelta(seconds=3600), clock=clock, key_prefix="app")
        repository.create(KEY, make_session(clock))

        args, kwargs = client.set.call_args
        assert args[0] == "app:session:signup:a@b.com"
        assert kwargs["px"] == (300 + 3600) * 1000

    def test_compare_and_update_watches_and_writes(self, clock):
        session = make_session(clock)
        pipe = MagicMock()
        pipe.get.return_value = json.dumps(session.to_dict())
        repository = RedisSessionRepository(make_redis(pipe), clock=clock)

        updated = repository.compare_and_update(KEY, lambda s: replace(s, attempt_count=1))

        assert updated.attempt_count == 1
        pipe.watch.assert_called_once_with("otpverify:session:signup:a@b.com")
        pipe.multi.assert_called_once()
        stored = json.loads(pipe.set.call_args[0][1])
        assert stored["attempt_count"] == 1
        pipe.execute.assert_called_once()

    def test_compare_and_update_delete(self, clock):
        pipe = MagicMock()
        pipe.get.return_value = json.dumps(make_session(clock).to_dict())
        repository = RedisSessionRepository(make_redis(pipe), clock=clock)

        assert repository.compare_and_update(KEY, lambda s: None) is None
        pipe.delete.assert_called_once_with("otpverify:session:signup:a@b.com")
        pipe.set.assert_not_called()

    def test_retries_on_watch_error(self, clock):
        pipe = MagicMock()
        pipe.get.return_value = json.dumps(make_session(clock).to_dict())
        pipe.execute.side_effect = [WatchError(), []]
        repository = RedisSessionRepository(make_redis(pipe), clock=clock)
        calls = []

        def mutate(current):
            calls.append(current)
            return replace(current, attempt_count=1)

        repository.compare_and_update(KEY, mutate)
        assert len(calls) == 2

    def test_gives_up_after_max_retries(self, clock):
        pipe = MagicMock()
        pipe.get.return_value = None
        pipe.execute.side_effect = WatchError()
        repository = RedisSessionRepository(make_redis(pipe), clock=clock, max_retries=3)

        with pytest.raises(SessionConflictError) as exc_info:
            repository.compare_and_update(KEY, lambda s: make_session(clock))
        assert exc_info.value.attempts == 3
        assert pipe.execute.call_count == 3

    def test_raising_mutator_writes_nothing(self, clock):
        pipe = MagicMock()
        pipe.get.return_value = None
        repository = RedisSessionRepository(make_redis(pipe), clock=clock)

        def boom(current):
            raise SessionNotFoundError()

        with pytest.raises(SessionNotFoundError):
            repository.compare_and_update(KEY, boom)
        pipe.multi.assert_not_called()
        pipe.execute.assert_not_called()

    def test_purge_is_noop(self, clock):
        assert RedisSessionRepository(MagicMock(), clock=clock).purge_stale() == 0
