"""
Tests for idempotency claims.

Tests cover:
- First claim wins, retries lose
- Keys are scoped per channel
- Concurrent claims on one key at strong levels have exactly one winner
- Replica requirements that cannot be met
"""

import threading

import pytest
from sqlalchemy import func, select

from chatstore.consistency import ConsistencyLevel
from chatstore.dedup import try_claim
from chatstore.errors import NotInitialized, StorageUnavailable
from chatstore.models import DedupRecord
from chatstore.storage import Database


def count_claims(db: Database) -> int:
    with db.session() as session:
        return session.execute(select(func.count()).select_from(DedupRecord)).scalar_one()


class TestTryClaim:
    """Test sequential claims."""

    def test_first_claim_accepted(self, db):
        with db.session() as session:
            assert try_claim(db, session, "c1", "k1", ConsistencyLevel.ONE) is True

        assert count_claims(db) == 1

    def test_retry_rejected(self, db):
        with db.session() as session:
            assert try_claim(db, session, "c1", "k1", ConsistencyLevel.ONE) is True
            assert try_claim(db, session, "c1", "k1", ConsistencyLevel.ONE) is False

        assert count_claims(db) == 1

    def test_retry_rejected_from_new_session(self, db):
        with db.session() as session:
            try_claim(db, session, "c1", "k1", ConsistencyLevel.QUORUM)
        with db.session() as session:
            assert try_claim(db, session, "c1", "k1", ConsistencyLevel.QUORUM) is False

    def test_session_usable_after_duplicate(self, db):
        with db.session() as session:
            try_claim(db, session, "c1", "k1", ConsistencyLevel.ONE)
            assert try_claim(db, session, "c1", "k1", ConsistencyLevel.ONE) is False
            assert try_claim(db, session, "c1", "k2", ConsistencyLevel.ONE) is True

    def test_same_key_in_other_channel_is_independent(self, db):
        with db.session() as session:
            assert try_claim(db, session, "a", "k1", ConsistencyLevel.ONE) is True
            assert try_claim(db, session, "b", "k1", ConsistencyLevel.ONE) is True

        assert count_claims(db) == 2


class TestConcurrentClaims:
    """Test racing claims on a single key."""

    @pytest.mark.parametrize("level", [ConsistencyLevel.QUORUM, ConsistencyLevel.ALL])
    def test_exactly_one_winner(self, db, level):
        racers = 8
        barrier = threading.Barrier(racers)
        results = []
        errors = []
        lock = threading.Lock()

        def claim():
            barrier.wait()
            try:
                with db.session() as session:
                    accepted = try_claim(db, session, "race", "same-key", level)
                with lock:
                    results.append(accepted)
            except Exception as e:  # surfaced by the assertion below
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=claim) for _ in range(racers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert results.count(True) == 1
        assert results.count(False) == racers - 1
        assert count_claims(db) == 1


class TestClaimFailures:
    """Test claims that cannot be served."""

    def test_level_needing_more_replicas_than_exist(self, db):
        with db.session() as session:
            with pytest.raises(StorageUnavailable) as exc_info:
                try_claim(db, session, "c1", "k1", ConsistencyLevel.TWO)

        assert exc_info.value.details["required_replicas"] == 2
        assert count_claims(db) == 0

    def test_replication_factor_decides_available_levels(self, settings):
        db = Database(settings.DATABASE_URL, replication_factor=2)
        db.connect()
        try:
            with db.session() as session:
                assert try_claim(db, session, "c1", "k1", ConsistencyLevel.TWO) is True
                assert try_claim(db, session, "c1", "k2", ConsistencyLevel.ALL) is True
                with pytest.raises(StorageUnavailable):
                    try_claim(db, session, "c1", "k3", ConsistencyLevel.THREE)
        finally:
            db.close()

    def test_unconnected_handle(self, settings):
        db = Database(settings.DATABASE_URL)

        with pytest.raises(NotInitialized):
            db.session()
