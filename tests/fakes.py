"""In-memory collaborators shared by the test suite"""

import threading
import time
from typing import List, Optional, Sequence

from tagsync.errors import CatalogUnavailable, RecordStoreError, VersionConflict
from tagsync.models import Item, Record, Visibility


def make_items(*names: str) -> List[Item]:
    """Items whose ids are the lower-cased first word of their names"""
    return [Item(id=name.split()[0].lower(), name=name) for name in names]


ALPHA = Item("a", "Alpha", Visibility.PUBLIC)
BETA = Item("b", "Beta")


class StaticCatalog:
    """Catalog returning a fixed list of items"""

    def __init__(self, items: Sequence[Item] = (), error: Optional[Exception] = None):
        self.items = list(items)
        self.error = error
        self.calls = 0

    def list_all(self) -> List[Item]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


class InMemoryRecordStore:
    """Versioned record store with optimistic concurrency"""

    def __init__(self, record_id: str = "entry-1", membership: Sequence[str] = (), version: int = 1):
        self.records = {record_id: Record(record_id, version, tuple(membership))}
        self.get_calls = 0
        self.update_calls: List[tuple] = []
        self.writes: List[Record] = []
        self.conflicts_to_raise = 0
        self.on_conflict = None
        self.update_error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None
        self.update_delay = 0.0
        self.writes_in_progress = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Record:
        with self._lock:
            self.get_calls += 1
            if self.get_error is not None:
                raise self.get_error
            # A read overlapping an unfinished write counts as concurrent work
            self.max_active = max(self.max_active, self.writes_in_progress + 1)
            return self.records[record_id]

    def update(self, record_id: str, version: int, membership_ids: Sequence[str]) -> Record:
        with self._lock:
            self.writes_in_progress += 1
            self.max_active = max(self.max_active, self.writes_in_progress)
        try:
            if self.update_delay:
                time.sleep(self.update_delay)
            with self._lock:
                self.update_calls.append((record_id, version, tuple(membership_ids)))
                if self.update_error is not None:
                    raise self.update_error

                current = self.records[record_id]
                if self.conflicts_to_raise > 0:
                    self.conflicts_to_raise -= 1
                    # Someone else saved the record in the meantime
                    membership = current.membership_ids
                    if self.on_conflict is not None:
                        membership = self.on_conflict(membership)
                    self.records[record_id] = Record(record_id, current.version + 1, tuple(membership))
                    raise VersionConflict(record_id, version)
                if version != current.version:
                    raise VersionConflict(record_id, version)

                updated = Record(record_id, current.version + 1, tuple(membership_ids))
                self.records[record_id] = updated
                self.writes.append(updated)
                return updated
        finally:
            with self._lock:
                self.writes_in_progress -= 1

    def membership(self, record_id: str = "entry-1") -> tuple:
        return self.records[record_id].membership_ids

    def version(self, record_id: str = "entry-1") -> int:
        return self.records[record_id].version


class FakeContentful(InMemoryRecordStore):
    """Catalog and record store in one object, like ContentfulClient"""

    def __init__(self, items: Sequence[Item] = (), **kwargs):
        super().__init__(**kwargs)
        self.catalog = StaticCatalog(items)

    def list_all(self) -> List[Item]:
        return self.catalog.list_all()


class RecordingSink:
    """Validity sink remembering every call"""

    def __init__(self):
        self.values: List[bool] = []

    def set_valid(self, valid: bool) -> None:
        self.values.append(valid)

    @property
    def last(self) -> Optional[bool]:
        return self.values[-1] if self.values else None


def failing_catalog() -> StaticCatalog:
    return StaticCatalog(error=CatalogUnavailable("catalog down"))


def store_error(message: str = "boom") -> RecordStoreError:
    return RecordStoreError(message, "entry-1", status_code=500)
