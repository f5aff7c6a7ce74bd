"""Applies synchronizer outcomes back onto local selection state"""

import logging
from typing import Callable, Optional

from .models import Record, SyncOutcome, SyncStatus
from .selection import SelectionState

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Feeds batch results back into the field

    Local selection is never rolled back: what the user sees selected stays
    the local truth even when a batch could not be persisted. A failed batch
    is dropped; the next toggle is folded against the then-current record.
    """

    def __init__(self, selection: SelectionState,
                 on_change: Optional[Callable[[], None]] = None):
        self.selection = selection
        self.on_change = on_change
        self.is_sync_error = False
        self.last_error: Optional[Exception] = None
        self.last_record: Optional[Record] = None

    def apply(self, outcome: SyncOutcome) -> None:
        if outcome.status is SyncStatus.FAILED:
            self.is_sync_error = True
            self.last_error = outcome.error
            logger.warning(f"Sync failed after {outcome.attempts} attempt(s); "
                           f"keeping local selection ({len(outcome.operations)} operations dropped): "
                           f"{outcome.error}")
        else:
            if self.is_sync_error:
                logger.info("Sync recovered, clearing sync error")
            self.is_sync_error = False
            self.last_error = None
            if outcome.record is not None:
                self.last_record = outcome.record
                self._log_divergence(outcome.record)

        self.selection.refresh_validity()
        if self.on_change is not None:
            self.on_change()

    def reset(self) -> None:
        self.is_sync_error = False
        self.last_error = None
        self.last_record = None

    def _log_divergence(self, record: Record) -> None:
        local = set(self.selection.selected_ids)
        remote = set(record.membership_ids) & set(self.selection.pool.ids())
        if local != remote:
            # Expected while newer toggles are still queued
            logger.debug(f"Record {record.id} v{record.version} differs from local selection: "
                         f"remote-only={sorted(remote - local)} local-only={sorted(local - remote)}")
