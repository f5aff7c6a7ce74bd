#!/usr/bin/env python3
"""
Tag Field Demonstration

Shows the optimistic tag field against an in-memory entry store:
- Instant local updates for every click
- Rapid clicks coalesced into a single entry write
- Version conflicts from a concurrent editor retried transparently
"""

import asyncio
import logging
import threading
from typing import Sequence

from tagsync.errors import VersionConflict
from tagsync.field import TagField
from tagsync.models import Item, Record, Visibility


class DemoCatalog:
    def list_all(self):
        return [
            Item("en", "Locale: en-US", Visibility.PUBLIC),
            Item("de", "Locale: de-DE", Visibility.PUBLIC),
            Item("news", "Section/News"),
            Item("draft", "Draft"),
        ]


class DemoEntryStore:
    """Entry store where another editor saves once in the middle of our first write"""

    def __init__(self):
        self.record = Record("demo-entry", 1, ("draft",))
        self.interfere = True
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Record:
        with self._lock:
            return self.record

    def update(self, record_id: str, version: int, membership_ids: Sequence[str]) -> Record:
        with self._lock:
            if self.interfere:
                self.interfere = False
                self.record = Record(record_id, self.record.version + 1, self.record.membership_ids)
                print(f"   ✏️ Another editor saved the entry (now v{self.record.version})")
            if version != self.record.version:
                raise VersionConflict(record_id, version)
            self.record = Record(record_id, version + 1, tuple(membership_ids))
            return self.record


def show(view) -> None:
    selected = ", ".join(item.name for item in view.selected_items) or "(none)"
    state = "❌ sync error" if view.is_sync_error else "✅"
    print(f"   selected: {selected}  [valid={view.is_valid}, pending={view.pending_operations}] {state}")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s',
                        datefmt='%H:%M:%S')
    store = DemoEntryStore()
    field = TagField(DemoCatalog(), store, "demo-entry", quiet_period=0.5)

    print("🚀 Loading tag field...")
    show(await field.load())

    print("\n🖱️ Rapid clicks: +en, +de, -draft, +news, -news")
    field.toggle_add("en")
    field.toggle_add("de")
    field.toggle_remove("draft")
    field.toggle_add("news")
    field.toggle_remove("news")
    show(field.view())

    print("\n⏳ Waiting for the quiet period...")
    await asyncio.sleep(1.0)
    await field.synchronizer.wait_idle()
    show(field.view())
    print(f"   remote v{store.record.version}: {list(store.record.membership_ids)}")

    print("\n📂 Grouped selection:")
    for label, items in field.selected_groups().items():
        print(f"   {label or '(ungrouped)'}: {', '.join(item.name for item in items)}")

    await field.close()


if __name__ == "__main__":
    asyncio.run(main())
