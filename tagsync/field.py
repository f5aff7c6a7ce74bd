"""
Tag field controller

Wires the item pool, selection state, synchronizer and reconciler together
behind the small surface a presentation layer needs: a read-only FieldView,
toggle intents and change notifications.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .errors import PoolUnavailable, RecordStoreError
from .grouping import DEFAULT_SEPARATORS, group_items
from .models import FieldView, Item, OperationKind, PendingOperation, SyncOutcome
from .pool import ItemPool
from .protocols import CatalogSource, RecordStore, ValiditySink
from .reconciler import Reconciler
from .selection import SelectionState
from .synchronizer import DEFAULT_MAX_ATTEMPTS, DEFAULT_QUIET_PERIOD, CoalescingSynchronizer

logger = logging.getLogger(__name__)


class TagField:
    """Required tag field for a single record"""

    def __init__(
        self,
        catalog: CatalogSource,
        store: RecordStore,
        record_id: str,
        validity_sink: Optional[ValiditySink] = None,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        groups_to_display: Sequence[str] = (),
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):
        """
        Initialize tag field

        Args:
            catalog: Source of all selectable tags
            store: Versioned store holding the record's tag membership
            record_id: Record being edited
            validity_sink: Notified when the field becomes valid or invalid
            quiet_period: Debounce window in seconds for remote writes
            max_attempts: Write attempts per batch on version conflicts
            groups_to_display: Restrict selectable tags to these name groups
            separators: Group separators used for filtering and display
        """
        self.catalog = catalog
        self.store = store
        self.record_id = record_id
        self.groups_to_display = tuple(groups_to_display)
        self.separators = tuple(separators)

        self.selection = SelectionState(validity_sink)
        self.reconciler = Reconciler(self.selection, on_change=self._notify)
        self.synchronizer = CoalescingSynchronizer(
            store, record_id,
            quiet_period=quiet_period,
            max_attempts=max_attempts,
            on_outcome=self.reconciler.apply,
        )

        self.is_loading = True
        self.load_error: Optional[str] = None
        self._listeners: List[Callable[[FieldView], None]] = []

    async def load(self) -> FieldView:
        """
        Fetch the tag pool and the record, then build the selection

        Raises:
            RuntimeError: If tag changes are still queued or being written, since
                rebuilding from the record would discard them locally
        """
        if self.synchronizer.is_busy:
            raise RuntimeError("Cannot load while tag changes are still being synced")

        self.is_loading = True
        self.load_error = None
        self._notify()

        try:
            pool = await asyncio.to_thread(ItemPool.load, self.catalog)
            record = await asyncio.to_thread(self.store.get, self.record_id)
        except PoolUnavailable as e:
            self._fail_load(str(e))
        except RecordStoreError as e:
            logger.error(f"Failed to read record {self.record_id}: {e}")
            self._fail_load(f"Record {self.record_id} unavailable: {e}")
        else:
            if self.groups_to_display:
                pool = pool.filter_groups(self.groups_to_display, self.separators)
                logger.info(f"Restricted pool to groups {list(self.groups_to_display)}: {len(pool)} items")

            self.selection.initialize(pool, record.membership_ids)
            self.reconciler.reset()
            self.reconciler.last_record = record
            self.is_loading = False
            logger.info(f"Loaded record {self.record_id} v{record.version}: "
                        f"{len(self.selection.selected)} selected, {len(self.selection.available)} available")

        self._notify()
        return self.view()

    async def reload(self) -> FieldView:
        """Manual retry of the initial load"""
        return await self.load()

    def _fail_load(self, message: str) -> None:
        self.is_loading = False
        self.load_error = message
        self.selection.initialize(ItemPool(), ())

    def toggle_add(self, item_id: str) -> bool:
        return self._toggle(item_id, OperationKind.ADD)

    def toggle_remove(self, item_id: str) -> bool:
        return self._toggle(item_id, OperationKind.REMOVE)

    def _toggle(self, item_id: str, kind: OperationKind) -> bool:
        if self.is_loading or self.load_error:
            logger.warning(f"Ignoring {kind.value} of {item_id}: field is not loaded")
            return False

        if not self.selection.apply_local_toggle(item_id, kind):
            return False

        self.synchronizer.enqueue(PendingOperation(kind, item_id))
        self._notify()
        return True

    def view(self) -> FieldView:
        return FieldView(
            available_items=self.selection.available,
            selected_items=self.selection.selected,
            is_loading=self.is_loading,
            is_sync_error=self.reconciler.is_sync_error,
            is_valid=self.selection.is_satisfied,
            load_error=self.load_error,
            pending_operations=self.synchronizer.pending_count,
        )

    def selected_groups(self) -> Dict[Optional[str], List[Item]]:
        return group_items(self.selection.selected, self.separators)

    def subscribe(self, listener: Callable[[FieldView], None]) -> Callable[[], None]:
        """Register a listener for view changes; returns an unsubscribe callable"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            listener(view)

    async def flush(self) -> Optional[SyncOutcome]:
        return await self.synchronizer.flush()

    async def close(self) -> None:
        await self.synchronizer.close()
