from datetime import timedelta

from app.models import ProcessingLock
from app.services import lock_service


class TestProcessingLock:
    def test_second_acquire_fails_while_held(self, db, make_conversation, now):
        conversation = make_conversation()

        owner = lock_service.try_acquire(db, conversation.id, ttl_seconds=60, now=now)
        contender = lock_service.try_acquire(db, conversation.id, ttl_seconds=60, now=now + timedelta(seconds=5))

        assert owner is not None
        assert contender is None

    def test_expired_lock_can_be_taken_over(self, db, make_conversation, now):
        conversation = make_conversation()

        first = lock_service.try_acquire(db, conversation.id, ttl_seconds=30, now=now)
        second = lock_service.try_acquire(db, conversation.id, ttl_seconds=30, now=now + timedelta(seconds=31))

        assert first is not None
        assert second is not None
        assert second != first
        assert db.query(ProcessingLock).one().owner == second

    def test_release_allows_reacquire(self, db, make_conversation, now):
        conversation = make_conversation()
        owner = lock_service.try_acquire(db, conversation.id, now=now)

        assert lock_service.release(db, conversation.id, owner) is True
        assert lock_service.try_acquire(db, conversation.id, now=now) is not None

    def test_release_with_stale_owner_keeps_new_holder(self, db, make_conversation, now):
        conversation = make_conversation()
        stale = lock_service.try_acquire(db, conversation.id, ttl_seconds=10, now=now)
        current = lock_service.try_acquire(db, conversation.id, ttl_seconds=10, now=now + timedelta(seconds=20))

        assert lock_service.release(db, conversation.id, stale) is False
        assert db.query(ProcessingLock).one().owner == current

    def test_locks_are_per_conversation(self, db, make_conversation, now):
        one = make_conversation(external_customer_id="A")
        two = make_conversation(external_customer_id="B")

        assert lock_service.try_acquire(db, one.id, now=now) is not None
        assert lock_service.try_acquire(db, two.id, now=now) is not None
