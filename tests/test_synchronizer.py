"""
Test suite for the coalescing synchronizer

Covers:
- Last-write-wins folding of batches
- Idempotent application of net effects
- Debounce behavior of the quiet-period timer
- Conflict retry, retry exhaustion and terminal write errors
- Serialization of batches against the record store
"""

import asyncio

import pytest

from tagsync.errors import RecordWriteFailure, VersionConflict
from tagsync.models import NetEffect, PendingOperation, SyncStatus
from tagsync.synchronizer import (
    CoalescingSynchronizer,
    SyncPhase,
    apply_net_effect,
    fold_operations,
)

from fakes import InMemoryRecordStore, store_error

QUIET = 0.05

add = PendingOperation.add
remove = PendingOperation.remove


def test_fold_add_then_remove_ensures_absent():
    net = fold_operations([add("x"), remove("x")])
    assert net == NetEffect(ensure_present=(), ensure_absent=("x",))


def test_fold_remove_then_add_ensures_present():
    net = fold_operations([remove("x"), add("x")])
    assert net == NetEffect(ensure_present=("x",), ensure_absent=())


def test_fold_repeated_add_is_single_entry():
    net = fold_operations([add("x"), add("x")])
    assert net.ensure_present == ("x",)
    assert net.ensure_absent == ()


def test_fold_keeps_first_seen_order():
    net = fold_operations([add("c"), add("a"), remove("b"), remove("c"), add("c"), add("d")])
    assert net.ensure_present == ("c", "a", "d")
    assert net.ensure_absent == ("b",)


def test_fold_empty_batch():
    assert fold_operations([]).is_empty


def test_apply_net_effect_is_idempotent():
    net = NetEffect(ensure_present=("b", "c"), ensure_absent=("a",))
    once = apply_net_effect(("a", "b", "z"), net)
    twice = apply_net_effect(once, net)

    assert once == ("b", "z", "c")
    assert twice == once


def test_apply_net_effect_does_not_duplicate_existing_ids():
    net = NetEffect(ensure_present=("a",))
    assert apply_net_effect(("a", "a", "b"), net) == ("a", "b")


def test_invalid_settings_rejected():
    store = InMemoryRecordStore()
    with pytest.raises(ValueError):
        CoalescingSynchronizer(store, "entry-1", quiet_period=0)
    with pytest.raises(ValueError):
        CoalescingSynchronizer(store, "entry-1", max_attempts=0)


def test_draining_empty_queue_makes_no_remote_call():
    store = InMemoryRecordStore()

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        outcome = await sync.flush()
        assert outcome is None
        assert sync.phase is SyncPhase.IDLE

    asyncio.run(scenario())
    assert store.get_calls == 0
    assert store.update_calls == []


def test_rapid_toggles_produce_one_write():
    store = InMemoryRecordStore(membership=["keep"])
    outcomes = []

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, on_outcome=outcomes.append)
        for item_id in ["a", "b", "c", "d", "e"]:
            sync.enqueue(add(item_id))
        sync.enqueue(remove("c"))
        assert sync.phase is SyncPhase.ACCUMULATING
        assert sync.pending_count == 6

        await asyncio.sleep(QUIET * 4)
        await sync.wait_idle()
        assert sync.phase is SyncPhase.IDLE
        assert sync.pending_count == 0

    asyncio.run(scenario())

    assert len(store.writes) == 1
    assert store.membership() == ("keep", "a", "b", "d", "e")
    assert store.version() == 2
    assert [o.status for o in outcomes] == [SyncStatus.SUCCEEDED]
    assert len(outcomes[0].operations) == 6


def test_spaced_toggles_produce_one_write_each():
    store = InMemoryRecordStore()

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        for item_id in ["a", "b", "c"]:
            sync.enqueue(add(item_id))
            await asyncio.sleep(QUIET * 3)
            await sync.wait_idle()

    asyncio.run(scenario())

    assert len(store.writes) == 3
    assert store.membership() == ("a", "b", "c")
    assert store.version() == 4


def test_each_enqueue_restarts_quiet_period():
    store = InMemoryRecordStore()
    quiet = 0.2

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=quiet)
        sync.enqueue(add("a"))
        await asyncio.sleep(quiet * 0.6)
        sync.enqueue(add("b"))
        await asyncio.sleep(quiet * 0.6)
        # More than one quiet period since the first enqueue, less since the last
        assert store.get_calls == 0
        await asyncio.sleep(quiet)
        await sync.wait_idle()

    asyncio.run(scenario())
    assert len(store.writes) == 1
    assert store.membership() == ("a", "b")


def test_add_then_remove_issues_no_write():
    store = InMemoryRecordStore()

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        sync.enqueue(add("a"))
        sync.enqueue(remove("a"))
        return await sync.flush()

    outcome = asyncio.run(scenario())
    assert outcome.status is SyncStatus.UNCHANGED
    assert outcome.success
    assert store.update_calls == []
    assert store.version() == 1


def test_conflict_then_success_converges_without_duplicates():
    store = InMemoryRecordStore(membership=["a"])
    store.conflicts_to_raise = 1

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, max_attempts=3)
        sync.enqueue(add("a"))
        sync.enqueue(add("b"))
        return await sync.flush()

    outcome = asyncio.run(scenario())

    assert outcome.status is SyncStatus.SUCCEEDED
    assert outcome.attempts == 2
    assert store.membership() == ("a", "b")
    assert len(store.update_calls) == 2
    # Second attempt used the freshly read version, not the stale one
    assert store.update_calls[0][1] == 1
    assert store.update_calls[1][1] == 2
    assert outcome.record.version == 3


def test_conflict_retry_merges_remote_change():
    store = InMemoryRecordStore(membership=["a"])
    store.conflicts_to_raise = 1
    store.on_conflict = lambda membership: membership + ("remote",)

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        sync.enqueue(remove("a"))
        sync.enqueue(add("b"))
        return await sync.flush()

    outcome = asyncio.run(scenario())
    assert outcome.status is SyncStatus.SUCCEEDED
    assert store.membership() == ("remote", "b")


def test_exhausted_conflicts_fail_batch():
    store = InMemoryRecordStore()
    store.conflicts_to_raise = 3

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, max_attempts=3)
        sync.enqueue(add("a"))
        outcome = await sync.flush()
        assert sync.pending_count == 0
        return outcome

    outcome = asyncio.run(scenario())

    assert outcome.status is SyncStatus.FAILED
    assert not outcome.success
    assert outcome.attempts == 3
    assert isinstance(outcome.error, RecordWriteFailure)
    assert isinstance(outcome.error.__cause__, VersionConflict)
    assert store.get_calls == 3
    assert store.writes == []


def test_non_conflict_error_is_terminal():
    store = InMemoryRecordStore()
    store.update_error = store_error()

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, max_attempts=3)
        sync.enqueue(add("a"))
        return await sync.flush()

    outcome = asyncio.run(scenario())

    assert outcome.status is SyncStatus.FAILED
    assert outcome.attempts == 1
    assert isinstance(outcome.error, RecordWriteFailure)
    assert store.get_calls == 1


def test_read_error_is_terminal():
    store = InMemoryRecordStore()
    store.get_error = store_error("unreachable")

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        sync.enqueue(add("a"))
        return await sync.flush()

    outcome = asyncio.run(scenario())
    assert outcome.status is SyncStatus.FAILED
    assert store.update_calls == []


def test_unexpected_error_is_reported_as_failure():
    store = InMemoryRecordStore()
    store.update_error = KeyError("surprise")

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        sync.enqueue(add("a"))
        return await sync.flush()

    outcome = asyncio.run(scenario())
    assert outcome.status is SyncStatus.FAILED
    assert isinstance(outcome.error.__cause__, KeyError)


def test_batches_are_written_one_at_a_time():
    store = InMemoryRecordStore()
    store.update_delay = 0.3
    outcomes = []

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, on_outcome=outcomes.append)
        sync.enqueue(add("a"))
        await asyncio.sleep(QUIET * 2)
        assert sync.phase in (SyncPhase.WRITING, SyncPhase.COMMITTING)

        # Second batch accumulates and drains while the first is still writing
        sync.enqueue(add("b"))
        await asyncio.sleep(QUIET * 2)
        assert len(sync.queue) == 0
        assert sync.pending_count == 2

        await sync.wait_idle()

    asyncio.run(scenario())

    assert store.max_active == 1
    assert len(store.writes) == 2
    assert store.membership() == ("a", "b")
    assert [o.status for o in outcomes] == [SyncStatus.SUCCEEDED, SyncStatus.SUCCEEDED]


def test_unchanged_batches_do_not_count_as_concurrent_writes():
    store = InMemoryRecordStore(membership=["a"])

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET)
        for _ in range(3):
            sync.enqueue(add("a"))
            unchanged = await sync.flush()
            assert unchanged.status is SyncStatus.UNCHANGED
        sync.enqueue(add("b"))
        return await sync.flush()

    outcome = asyncio.run(scenario())

    assert outcome.status is SyncStatus.SUCCEEDED
    assert store.get_calls == 4
    assert store.writes_in_progress == 0
    assert store.max_active == 1


def test_close_flushes_and_rejects_new_operations():
    store = InMemoryRecordStore()

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=10)
        sync.enqueue(add("a"))
        await sync.close()
        with pytest.raises(RuntimeError):
            sync.enqueue(add("b"))

    asyncio.run(scenario())
    assert store.membership() == ("a",)


def test_outcome_handler_errors_do_not_break_sync():
    store = InMemoryRecordStore()

    def broken_handler(outcome):
        raise RuntimeError("listener failed")

    async def scenario():
        sync = CoalescingSynchronizer(store, "entry-1", quiet_period=QUIET, on_outcome=broken_handler)
        sync.enqueue(add("a"))
        return await sync.flush()

    outcome = asyncio.run(scenario())
    assert outcome.status is SyncStatus.SUCCEEDED
    assert store.membership() == ("a",)
