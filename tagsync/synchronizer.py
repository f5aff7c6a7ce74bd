"""
Coalescing synchronizer for optimistic tag edits

Debounces queued membership changes and pushes each batch to the record
store as a single read-modify-write cycle:

- Every enqueue re-arms a quiet-period timer; the queue drains only once
  input has stopped for the full period.
- A drained batch is folded last-write-wins per item into a net effect.
- The record is re-read before every write attempt; a version conflict
  triggers a bounded re-fetch and retry.
- Batches are written one at a time. A new batch may accumulate and drain
  while a previous one is still writing; it waits for the writer.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import RecordStoreError, RecordWriteFailure, VersionConflict
from .models import NetEffect, OperationKind, PendingOperation, Record, SyncOutcome, SyncStatus
from .mutation_queue import MutationQueue
from .protocols import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD = 2.0
DEFAULT_MAX_ATTEMPTS = 3


class SyncPhase(Enum):
    """Phases of the synchronizer state machine"""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    DRAINING = "draining"
    WRITING = "writing"
    COMMITTING = "committing"
    CONFLICT_RETRY = "conflict_retry"


def fold_operations(operations: Iterable[PendingOperation]) -> NetEffect:
    """
    Reduce a batch to its net effect

    Only the last operation on each item id counts, so an add followed by a
    remove becomes "ensure absent" and a remove followed by an add becomes
    "ensure present". Ids keep the order in which they first appeared.
    """
    last_kind: Dict[str, OperationKind] = {}
    for op in operations:
        last_kind[op.item_id] = op.kind

    return NetEffect(
        ensure_present=tuple(i for i, kind in last_kind.items() if kind is OperationKind.ADD),
        ensure_absent=tuple(i for i, kind in last_kind.items() if kind is OperationKind.REMOVE),
    )


def apply_net_effect(membership_ids: Sequence[str], net_effect: NetEffect) -> Tuple[str, ...]:
    """Apply a net effect to a membership list without duplicating ids"""
    absent = set(net_effect.ensure_absent)
    result: List[str] = []
    seen: Set[str] = set()

    for item_id in membership_ids:
        if item_id in absent or item_id in seen:
            continue
        seen.add(item_id)
        result.append(item_id)

    for item_id in net_effect.ensure_present:
        if item_id not in seen:
            seen.add(item_id)
            result.append(item_id)

    return tuple(result)


class CoalescingSynchronizer:
    """Debounced, serialized writer of pending operations for one record"""

    def __init__(self, store: RecordStore, record_id: str,
                 quiet_period: float = DEFAULT_QUIET_PERIOD,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 on_outcome: Optional[Callable[[SyncOutcome], None]] = None):
        """
        Initialize synchronizer

        Args:
            store: Record store the batches are written to
            record_id: Id of the record whose membership is synchronized
            quiet_period: Seconds of inactivity before the queue drains
            max_attempts: Write attempts per batch before giving up on conflicts
            on_outcome: Called with the SyncOutcome of every finished batch
        """
        if quiet_period <= 0:
            raise ValueError("quiet_period must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.store = store
        self.record_id = record_id
        self.quiet_period = quiet_period
        self.max_attempts = max_attempts
        self.on_outcome = on_outcome

        self.queue = MutationQueue()
        self.last_outcome: Optional[SyncOutcome] = None

        self._phase = SyncPhase.IDLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._writer_lock = asyncio.Lock()
        self._in_flight: Set[asyncio.Task] = set()
        self._unwritten = 0
        self._closed = False

    @property
    def phase(self) -> SyncPhase:
        if self._phase is SyncPhase.IDLE and self._timer is not None:
            return SyncPhase.ACCUMULATING
        return self._phase

    @property
    def pending_count(self) -> int:
        """Operations queued or drained but not yet through a write attempt"""
        return len(self.queue) + self._unwritten

    @property
    def is_busy(self) -> bool:
        return self.pending_count > 0 or bool(self._in_flight)

    def enqueue(self, op: PendingOperation) -> None:
        """Queue an operation and restart the quiet period"""
        if self._closed:
            raise RuntimeError("Synchronizer is closed")
        self.queue.enqueue(op)
        self._arm_timer()

    def _arm_timer(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.quiet_period, self._on_quiet_period_elapsed)

    def _on_quiet_period_elapsed(self) -> None:
        self._timer = None
        self._drain()

    def _drain(self) -> Optional[asyncio.Task]:
        batch = self.queue.drain()
        if not batch:
            logger.debug("Nothing queued, skipping drain")
            return None

        if not self._writer_lock.locked():
            self._set_phase(SyncPhase.DRAINING)
        logger.info(f"Drained {len(batch)} operations for record {self.record_id}")

        self._unwritten += len(batch)
        task = asyncio.get_running_loop().create_task(self._write_batch(batch))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _write_batch(self, batch: Tuple[PendingOperation, ...]) -> SyncOutcome:
        net_effect = fold_operations(batch)

        async with self._writer_lock:
            try:
                outcome = await self._push(batch, net_effect)
            except Exception as e:
                logger.exception(f"Unexpected error while syncing record {self.record_id}")
                failure = RecordWriteFailure(f"Sync of record {self.record_id} failed: {e}",
                                             self.record_id, attempts=0)
                failure.__cause__ = e
                outcome = SyncOutcome(SyncStatus.FAILED, batch, net_effect, error=failure)
            finally:
                self._unwritten -= len(batch)
                self._set_phase(SyncPhase.IDLE)

        self.last_outcome = outcome
        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception:
                logger.exception("Sync outcome handler failed")
        return outcome

    async def _push(self, batch: Tuple[PendingOperation, ...], net_effect: NetEffect) -> SyncOutcome:
        """Read-modify-write the record, retrying on version conflicts"""
        logger.debug(f"Net effect: +{list(net_effect.ensure_present)} -{list(net_effect.ensure_absent)}")
        last_conflict: Optional[VersionConflict] = None

        for attempt in range(1, self.max_attempts + 1):
            self._set_phase(SyncPhase.WRITING)
            try:
                record: Record = await asyncio.to_thread(self.store.get, self.record_id)
                membership = apply_net_effect(record.membership_ids, net_effect)

                if membership == tuple(record.membership_ids):
                    logger.info(f"Record {self.record_id} already up to date at version {record.version}")
                    return SyncOutcome(SyncStatus.UNCHANGED, batch, net_effect,
                                       attempts=attempt, record=record)

                self._set_phase(SyncPhase.COMMITTING)
                updated: Record = await asyncio.to_thread(
                    self.store.update, self.record_id, record.version, membership
                )

            except VersionConflict as e:
                last_conflict = e
                self._set_phase(SyncPhase.CONFLICT_RETRY)
                logger.warning(f"Version conflict on record {self.record_id} "
                               f"(attempt {attempt}/{self.max_attempts}): {e}")
                continue

            except RecordStoreError as e:
                logger.error(f"Failed to write record {self.record_id}: {e}")
                failure = RecordWriteFailure(f"Write of record {self.record_id} failed: {e}",
                                             self.record_id, attempts=attempt)
                failure.__cause__ = e
                return SyncOutcome(SyncStatus.FAILED, batch, net_effect,
                                   attempts=attempt, error=failure)

            logger.info(f"Wrote record {self.record_id}: version {record.version} -> {updated.version}, "
                        f"{len(updated.membership_ids)} members")
            return SyncOutcome(SyncStatus.SUCCEEDED, batch, net_effect,
                               attempts=attempt, record=updated)

        logger.error(f"Giving up on record {self.record_id} after {self.max_attempts} version conflicts")
        failure = RecordWriteFailure(
            f"Record {self.record_id} kept changing remotely; gave up after {self.max_attempts} attempts",
            self.record_id, attempts=self.max_attempts,
        )
        failure.__cause__ = last_conflict
        return SyncOutcome(SyncStatus.FAILED, batch, net_effect,
                           attempts=self.max_attempts, error=failure)

    def _set_phase(self, phase: SyncPhase) -> None:
        if phase is not self._phase:
            logger.debug(f"Synchronizer {self._phase.value} -> {phase.value}")
            self._phase = phase

    async def flush(self) -> Optional[SyncOutcome]:
        """Skip the rest of the quiet period, drain now and wait for every write"""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._drain()
        await self.wait_idle()
        return self.last_outcome

    async def wait_idle(self) -> None:
        """Wait until no batch is being written"""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def close(self) -> None:
        """Flush outstanding operations and refuse new ones"""
        self._closed = True
        await self.flush()
