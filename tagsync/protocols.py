"""Contracts for the collaborators the tag field talks to"""

from typing import Protocol, Sequence

from .models import Item, Record


class CatalogSource(Protocol):
    """Source of every selectable item"""

    def list_all(self) -> Sequence[Item]:
        """Return all items; raise CatalogUnavailable on failure"""
        ...


class RecordStore(Protocol):
    """Versioned record store with optimistic concurrency"""

    def get(self, record_id: str) -> Record:
        ...

    def update(self, record_id: str, version: int, membership_ids: Sequence[str]) -> Record:
        """Write membership against `version`; raise VersionConflict when stale"""
        ...


class ValiditySink(Protocol):
    """Receives the field validity whenever selection becomes empty or non-empty"""

    def set_valid(self, valid: bool) -> None:
        ...
