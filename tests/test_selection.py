"""Tests for the optimistic selection state"""

import random

from tagsync.models import Item, OperationKind
from tagsync.pool import ItemPool
from tagsync.selection import SelectionState

from fakes import RecordingSink, make_items

ADD = OperationKind.ADD
REMOVE = OperationKind.REMOVE


def create_selection(membership=(), sink=None):
    pool = ItemPool(make_items("Echo", "alpha", "Delta", "charlie", "Bravo"))
    selection = SelectionState(sink)
    selection.initialize(pool, membership)
    return selection, pool


def names(items):
    return [item.name for item in items]


def test_initialize_partitions_pool():
    selection, _ = create_selection(membership=["delta", "alpha", "unknown"])

    assert names(selection.selected) == ["alpha", "Delta"]
    assert names(selection.available) == ["Bravo", "charlie", "Echo"]
    assert selection.is_satisfied


def test_toggle_moves_item_and_keeps_order():
    selection, _ = create_selection(membership=["alpha", "echo"])

    assert selection.apply_local_toggle("charlie", ADD)
    assert names(selection.selected) == ["alpha", "charlie", "Echo"]
    assert names(selection.available) == ["Bravo", "Delta"]

    assert selection.apply_local_toggle("alpha", REMOVE)
    assert names(selection.selected) == ["charlie", "Echo"]
    assert names(selection.available) == ["alpha", "Bravo", "Delta"]
    assert selection.is_selected("charlie")
    assert not selection.is_selected("alpha")


def test_duplicate_toggles_are_ignored():
    selection, _ = create_selection(membership=["alpha"])

    assert not selection.apply_local_toggle("alpha", ADD)
    assert not selection.apply_local_toggle("bravo", REMOVE)
    assert not selection.apply_local_toggle("nope", ADD)
    assert selection.selected_ids == ("alpha",)


def test_validity_sink_notified_on_transitions_only():
    sink = RecordingSink()
    selection, _ = create_selection(sink=sink)
    assert sink.values == [False]

    selection.apply_local_toggle("alpha", ADD)
    selection.apply_local_toggle("bravo", ADD)
    assert sink.values == [False, True]

    selection.apply_local_toggle("alpha", REMOVE)
    assert sink.values == [False, True]

    selection.apply_local_toggle("bravo", REMOVE)
    assert sink.values == [False, True, False]
    assert not selection.is_satisfied


def test_refresh_validity_without_change_is_silent():
    sink = RecordingSink()
    selection, _ = create_selection(membership=["alpha"], sink=sink)
    selection.refresh_validity()
    selection.refresh_validity()
    assert sink.values == [True]


def test_random_toggles_preserve_invariants():
    rng = random.Random(1234)
    selection, pool = create_selection()
    ids = list(pool.ids())

    for _ in range(500):
        selection.apply_local_toggle(rng.choice(ids), rng.choice([ADD, REMOVE]))

        available = {item.id for item in selection.available}
        selected = {item.id for item in selection.selected}
        assert available.isdisjoint(selected)
        assert available | selected == set(ids)
        assert len(selection.available) + len(selection.selected) == len(ids)
        assert names(selection.selected) == names(sorted(selection.selected, key=lambda i: i.name.casefold()))
        assert selection.is_satisfied == bool(selected)


def test_reinitialize_replaces_state():
    selection, _ = create_selection(membership=["alpha"])
    smaller = ItemPool([Item("x", "X-ray")])

    available, selected = selection.initialize(smaller, ["x"])

    assert available == ()
    assert names(selected) == ["X-ray"]
    assert not selection.apply_local_toggle("alpha", REMOVE)
