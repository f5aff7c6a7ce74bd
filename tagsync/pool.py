"""Item pool: the sorted snapshot of every selectable tag"""

import logging
import unicodedata
from typing import Callable, Iterable, Iterator, Optional, Sequence, Tuple

from .errors import PoolUnavailable, TagSyncError
from .grouping import DEFAULT_SEPARATORS, group_label
from .models import Item, Visibility
from .protocols import CatalogSource

logger = logging.getLogger(__name__)


def collation_key(name: str) -> str:
    """Fold case and accents, so "Éclair" sorts next to "eclair"."""
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(char for char in decomposed if not unicodedata.combining(char))
    return base.casefold()


def sort_key(item: Item) -> Tuple[str, str, str]:
    """Case- and accent-insensitive ordering by name, then exact name, then id"""
    return (collation_key(item.name), item.name.casefold(), item.id)


class ItemPool:
    """Immutable snapshot of the catalog, ordered by name"""

    def __init__(self, items: Iterable[Item] = ()):
        unique = {}
        for item in items:
            if item.id in unique:
                logger.debug(f"Dropping duplicate catalog item {item.id}")
                continue
            unique[item.id] = item
        self._items: Tuple[Item, ...] = tuple(sorted(unique.values(), key=sort_key))
        self._by_id = unique

    @classmethod
    def load(cls, catalog: CatalogSource) -> "ItemPool":
        """
        Fetch every item from the catalog

        Raises:
            PoolUnavailable: If the catalog fetch fails
        """
        try:
            items = catalog.list_all()
        except TagSyncError as e:
            logger.error(f"Failed to load item pool: {e}")
            raise PoolUnavailable(f"Item pool unavailable: {e}") from e

        pool = cls(items)
        logger.info(f"Loaded item pool with {len(pool)} items")
        return pool

    @property
    def items(self) -> Tuple[Item, ...]:
        return self._items

    def ids(self) -> Tuple[str, ...]:
        return tuple(item.id for item in self._items)

    def get(self, item_id: str) -> Optional[Item]:
        return self._by_id.get(item_id)

    def find_by_name(self, name: str) -> Optional[Item]:
        """Look up an item by exact name, falling back to a case-insensitive match"""
        for item in self._items:
            if item.name == name:
                return item
        folded = name.casefold()
        for item in self._items:
            if item.name.casefold() == folded:
                return item
        return None

    def filter(self, predicate: Callable[[Item], bool]) -> "ItemPool":
        return ItemPool(item for item in self._items if predicate(item))

    def filter_groups(self, groups: Sequence[str],
                      separators: Sequence[str] = DEFAULT_SEPARATORS) -> "ItemPool":
        """Keep only items whose group label is one of `groups` (all items if empty)"""
        wanted = {group.strip().casefold() for group in groups if group.strip()}
        if not wanted:
            return self

        def in_wanted_group(item: Item) -> bool:
            label = group_label(item.name, separators)
            return label is not None and label.casefold() in wanted

        return self.filter(in_wanted_group)

    def with_visibility(self, visibility: Visibility) -> "ItemPool":
        return self.filter(lambda item: item.visibility is visibility)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def __repr__(self) -> str:
        return f"ItemPool({len(self._items)} items)"
