"""
Selection state for the tag field

Holds the two ordered, disjoint collections rendered by the field:
tags still available for selection and tags currently selected.
Local toggles are applied here optimistically, before any remote write.
"""

import bisect
import logging
from typing import Iterable, List, Optional, Tuple

from .models import Item, OperationKind
from .pool import ItemPool, sort_key
from .protocols import ValiditySink

logger = logging.getLogger(__name__)


class SelectionState:
    """Optimistic local view of which pool items are selected"""

    def __init__(self, validity_sink: Optional[ValiditySink] = None):
        """
        Initialize an empty selection

        Args:
            validity_sink: Receives set_valid() when selection becomes empty or non-empty
        """
        self.validity_sink = validity_sink
        self.pool = ItemPool()
        self._available: List[Item] = []
        self._selected: List[Item] = []
        self._valid: Optional[bool] = None

    def initialize(self, pool: ItemPool,
                   remote_membership_ids: Iterable[str]) -> Tuple[Tuple[Item, ...], Tuple[Item, ...]]:
        """
        Partition the pool by the record's current membership

        Args:
            pool: Freshly loaded item pool
            remote_membership_ids: Item ids currently on the remote record

        Returns:
            Tuple of (available, selected), both ordered by name
        """
        membership = set(remote_membership_ids)
        unknown = membership.difference(pool.ids())
        if unknown:
            logger.debug(f"Ignoring {len(unknown)} member ids not in pool: {sorted(unknown)}")

        self.pool = pool
        self._selected = [item for item in pool if item.id in membership]
        self._available = [item for item in pool if item.id not in membership]
        self._valid = None
        self.refresh_validity()

        logger.debug(f"Selection initialized: {len(self._selected)} selected, "
                     f"{len(self._available)} available")
        return self.available, self.selected

    def apply_local_toggle(self, item_id: str, direction: OperationKind) -> bool:
        """
        Move an item between available and selected

        Adding an already selected item, removing an already available one,
        or toggling an id outside the pool is silently ignored.

        Returns:
            True if the selection changed, False for an ignored duplicate toggle
        """
        if direction is OperationKind.ADD:
            source, target = self._available, self._selected
        else:
            source, target = self._selected, self._available

        item = self.pool.get(item_id)
        if item is None:
            logger.warning(f"Ignoring {direction.value} of unknown item {item_id}")
            return False

        index = self._index_of(source, item)
        if index is None:
            logger.debug(f"Ignoring duplicate {direction.value} of {item_id}")
            return False

        del source[index]
        bisect.insort(target, item, key=sort_key)
        self.refresh_validity()
        return True

    def refresh_validity(self) -> bool:
        """Recompute validity and notify the sink on transitions"""
        valid = self.is_satisfied
        if valid != self._valid:
            self._valid = valid
            logger.debug(f"Field validity changed: valid={valid}")
            if self.validity_sink is not None:
                self.validity_sink.set_valid(valid)
        return valid

    @staticmethod
    def _index_of(items: List[Item], item: Item) -> Optional[int]:
        index = bisect.bisect_left(items, sort_key(item), key=sort_key)
        if index < len(items) and items[index].id == item.id:
            return index
        return None

    @property
    def available(self) -> Tuple[Item, ...]:
        return tuple(self._available)

    @property
    def selected(self) -> Tuple[Item, ...]:
        return tuple(self._selected)

    @property
    def selected_ids(self) -> Tuple[str, ...]:
        return tuple(item.id for item in self._selected)

    @property
    def is_satisfied(self) -> bool:
        """The field is valid once at least one item is selected"""
        return bool(self._selected)

    def is_selected(self, item_id: str) -> bool:
        item = self.pool.get(item_id)
        return item is not None and self._index_of(self._selected, item) is not None
