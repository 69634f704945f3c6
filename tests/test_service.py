"""
Tests for the append/list operations.

Covers the end-to-end store behaviour without HTTP: deduplication,
paging, consistency warnings, channel isolation, and the orphaned
claim left behind by a failed write, plus concurrent appends racing
on one client key.
"""

import threading
from unittest import mock

import pytest

from chatstore import repository
from chatstore.config import Settings
from chatstore.errors import NotInitialized, StorageUnavailable, ValidationError
from chatstore.service import Accepted, Deduplicated, append_message, list_messages
from chatstore.storage import Database


def append(db, generator, settings, channel_id="c1", content="hello", **kwargs):
    return append_message(db, generator, settings, channel_id=channel_id, user_id="u1", content=content, **kwargs)


class TestAppendMessage:
    """Test append_message()."""

    def test_accepted(self, db, generator, settings):
        result = append(db, generator, settings)

        assert isinstance(result, Accepted)
        assert result.message_id.version == 1
        assert result.warning is None

    def test_duplicate_client_key(self, db, generator, settings):
        first = append(db, generator, settings, client_key="k1")
        second = append(db, generator, settings, client_key="k1")

        assert isinstance(first, Accepted)
        assert isinstance(second, Deduplicated)

        listing = list_messages(db, settings, "c1", limit=10)
        assert [m.message_id for m in listing.items] == [first.message_id]

    def test_without_client_key_every_append_is_stored(self, db, generator, settings):
        append(db, generator, settings, content="same")
        append(db, generator, settings, content="same")

        assert len(list_messages(db, settings, "c1").items) == 2

    def test_bogus_consistency_warns(self, db, generator, settings):
        result = append(db, generator, settings, consistency="BOGUS")

        assert isinstance(result, Accepted)
        assert result.warning == "Invalid consistency level 'BOGUS', using default 'ONE'"

    def test_deduplicated_keeps_warning(self, db, generator, settings):
        append(db, generator, settings, client_key="k1")
        result = append(db, generator, settings, client_key="k1", consistency="sometimes")

        assert isinstance(result, Deduplicated)
        assert "sometimes" in result.warning

    def test_unavailable_level_surfaces(self, db, generator, settings):
        with pytest.raises(StorageUnavailable):
            append(db, generator, settings, consistency="TWO")

    def test_failed_write_orphans_the_claim(self, db, generator, settings):
        with mock.patch.object(repository, "append", side_effect=StorageUnavailable("replica down")):
            with pytest.raises(StorageUnavailable):
                append(db, generator, settings, client_key="k1")

        # The claim survived without a message, so the resend is suppressed
        assert isinstance(append(db, generator, settings, client_key="k1"), Deduplicated)
        assert list_messages(db, settings, "c1").items == []

    def test_not_initialized(self, generator, settings):
        db = Database(settings.DATABASE_URL)

        with pytest.raises(NotInitialized):
            append(db, generator, settings)


class TestListMessages:
    """Test list_messages()."""

    def test_pages_are_disjoint(self, db, generator, settings):
        appended = [append(db, generator, settings, channel_id="c2", content=f"m{n}").message_id for n in range(10)]

        first = list_messages(db, settings, "c2", limit=3)
        second = list_messages(db, settings, "c2", limit=3, before=str(first.next_before))

        assert [m.message_id for m in first.items] == appended[:-4:-1]
        assert first.next_before == appended[7]
        assert [m.message_id for m in second.items] == [appended[6], appended[5], appended[4]]
        assert not {m.message_id for m in first.items} & {m.message_id for m in second.items}

    def test_both_cursors_rejected_before_storage(self, generator, settings):
        # An unconnected handle would raise NotInitialized if storage were touched
        db = Database(settings.DATABASE_URL)

        with pytest.raises(ValidationError):
            list_messages(db, settings, "c3", limit=5, before=str(generator.next()), after=str(generator.next()))

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds_rejected_before_storage(self, generator, settings, limit):
        db = Database(settings.DATABASE_URL)

        with pytest.raises(ValidationError):
            list_messages(db, settings, "c3", limit=limit)

    @pytest.mark.parametrize("limit", [1, 100])
    def test_limit_bounds_accepted(self, db, generator, settings, limit):
        append(db, generator, settings)

        assert len(list_messages(db, settings, "c1", limit=limit).items) == 1

    def test_read_default_is_separate_from_write_default(self, db, generator, settings):
        settings = Settings(DATABASE_URL=settings.DATABASE_URL, DEFAULT_READ_CONSISTENCY="QUORUM")

        result = list_messages(db, settings, "c1", consistency="nope")

        assert result.warning == "Invalid consistency level 'nope', using default 'QUORUM'"

    def test_no_cross_channel_leakage(self, db, generator, settings):
        for n in range(3):
            append(db, generator, settings, channel_id="a", content=f"a-{n}")
            append(db, generator, settings, channel_id="b", content=f"b-{n}")

        a_items = list_messages(db, settings, "a").items
        b_items = list_messages(db, settings, "b").items

        assert sorted(m.content for m in a_items) == ["a-0", "a-1", "a-2"]
        assert sorted(m.content for m in b_items) == ["b-0", "b-1", "b-2"]


def run_concurrently(count, target):
    """Start `count` threads on `target(n)` together; return (results, errors)."""
    barrier = threading.Barrier(count)
    results = []
    errors = []
    lock = threading.Lock()

    def worker(n):
        barrier.wait()
        try:
            result = target(n)
            with lock:
                results.append(result)
        except Exception as e:  # surfaced by the caller's assertions
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestConcurrentAppends:
    """Test appends issued in parallel from several threads."""

    def test_same_client_key_stores_one_message(self, db, generator, settings):
        racers = 8

        results, errors = run_concurrently(
            racers,
            lambda n: append(db, generator, settings, channel_id="load", content=f"try {n}",
                             client_key="same-key", consistency="QUORUM"),
        )

        assert errors == []
        accepted = [r for r in results if isinstance(r, Accepted)]
        assert len(accepted) == 1
        assert sum(isinstance(r, Deduplicated) for r in results) == racers - 1

        (stored,) = list_messages(db, settings, "load", limit=100).items
        assert stored.message_id == accepted[0].message_id

    def test_appends_without_key_all_stored(self, db, generator, settings):
        racers = 8

        results, errors = run_concurrently(
            racers,
            lambda n: append(db, generator, settings, channel_id="load", content=f"m{n}"),
        )

        assert errors == []
        ids = {r.message_id for r in results}
        assert len(ids) == racers

        listed = list_messages(db, settings, "load", limit=100).items
        assert {m.message_id for m in listed} == ids
        assert sorted(m.content for m in listed) == sorted(f"m{n}" for n in range(racers))
