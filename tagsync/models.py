"""Data models for tag selection and entry sync"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Visibility(Enum):
    """Tag visibility as reported by the CMS"""
    PUBLIC = "public"
    PRIVATE = "private"


class OperationKind(Enum):
    """Direction of a pending membership change"""
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class Item:
    """A selectable tag from the catalog"""

    id: str
    name: str
    visibility: Visibility = Visibility.PRIVATE

    @classmethod
    def from_tag_payload(cls, payload: Dict[str, Any]) -> "Item":
        """Build an Item from a CMS tag payload ({"name", "sys": {"id", "visibility"}})"""
        sys_data = payload.get("sys", {})
        visibility = sys_data.get("visibility") or Visibility.PRIVATE.value
        return cls(
            id=sys_data["id"],
            name=payload.get("name") or sys_data["id"],
            visibility=Visibility(visibility),
        )

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC

    def __repr__(self) -> str:
        badge = "public" if self.is_public else "private"
        return f"Item({self.name} [{self.id}] - {badge})"


@dataclass(frozen=True)
class PendingOperation:
    """A membership change accepted locally but not yet persisted"""

    kind: OperationKind
    item_id: str

    @classmethod
    def add(cls, item_id: str) -> "PendingOperation":
        return cls(OperationKind.ADD, item_id)

    @classmethod
    def remove(cls, item_id: str) -> "PendingOperation":
        return cls(OperationKind.REMOVE, item_id)


@dataclass(frozen=True)
class Record:
    """Remote entry as far as tag membership is concerned"""

    id: str
    version: int
    membership_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NetEffect:
    """Folded result of a batch: ids that must end up present or absent"""

    ensure_present: Tuple[str, ...] = ()
    ensure_absent: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.ensure_present and not self.ensure_absent


class SyncStatus(Enum):
    """Terminal state of one synchronized batch"""
    SUCCEEDED = "succeeded"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    """Result of pushing one drained batch to the record store"""

    status: SyncStatus
    operations: Tuple[PendingOperation, ...]
    net_effect: NetEffect
    attempts: int = 0
    record: Optional[Record] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.status is not SyncStatus.FAILED


@dataclass(frozen=True)
class FieldView:
    """Read-only projection handed to the presentation layer"""

    available_items: Tuple[Item, ...] = ()
    selected_items: Tuple[Item, ...] = ()
    is_loading: bool = True
    is_sync_error: bool = False
    is_valid: bool = False
    load_error: Optional[str] = None
    pending_operations: int = field(default=0, compare=False)
