"""Ordered log of membership changes awaiting a remote write"""

import logging
from typing import List, Tuple

from .models import PendingOperation

logger = logging.getLogger(__name__)


class MutationQueue:
    """
    Append-only queue of pending operations

    Duplicates and cancelling pairs are kept as-is; the synchronizer folds
    the full history when the queue is drained.
    """

    def __init__(self):
        self._operations: List[PendingOperation] = []

    def enqueue(self, op: PendingOperation) -> None:
        self._operations.append(op)
        logger.debug(f"Queued {op.kind.value} {op.item_id} ({len(self._operations)} pending)")

    def drain(self) -> Tuple[PendingOperation, ...]:
        """Take every queued operation as one batch and reset the queue"""
        batch = tuple(self._operations)
        self._operations = []
        return batch

    def __len__(self) -> int:
        return len(self._operations)

    def __bool__(self) -> bool:
        return bool(self._operations)
