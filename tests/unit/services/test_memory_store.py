"""
Tests for the MemoryStore implementation.

This module tests ordering after each mutation, action item toggling and
the fail-soft behaviour around storage errors.
"""
from unittest.mock import AsyncMock, Mock

import pytest

from memory_loop.domains.memory import Memory
from memory_loop.services.memory_store import (
    LOAD_ERROR_MESSAGE,
    SAVE_ERROR_MESSAGE,
    MemoryStore,
)


# ---------------------
# Fixtures
# ---------------------


@pytest.fixture
def mock_storage():
    storage = Mock()
    storage.load = AsyncMock(return_value=[])
    storage.save = AsyncMock(return_value=None)
    return storage


@pytest.fixture
def sample_memories():
    return [
        Memory(id="old", title="Old", createdAt=1000),
        Memory(id="new", title="New", createdAt=3000),
        Memory(
            id="tasks",
            title="Tasks",
            action_items=["a", "b", "c"],
            completed_items=[2],
            createdAt=2000,
        ),
    ]


@pytest.fixture
def store(mock_storage, sample_memories):
    return MemoryStore(storage=mock_storage, memories=sample_memories)


def ids(store):
    return [m.id for m in store.memories]


# ---------------------
# Loading
# ---------------------


@pytest.mark.asyncio
async def test_load_sorts(mock_storage, sample_memories):
    mock_storage.load.return_value = sample_memories
    store = MemoryStore(storage=mock_storage)

    await store.load()

    assert ids(store) == ["new", "tasks", "old"]
    assert store.is_loading is False
    assert store.last_error is None


@pytest.mark.asyncio
async def test_load_failure_is_empty_with_advisory(store, mock_storage):
    mock_storage.load.side_effect = ValueError("corrupt")

    await store.refresh()

    assert store.memories == []
    assert store.last_error == LOAD_ERROR_MESSAGE
    assert store.is_loading is False

    store.clear_last_error()
    assert store.last_error is None


# ---------------------
# Mutations
# ---------------------


@pytest.mark.asyncio
async def test_add_inserts_in_order_and_persists(store, mock_storage):
    memory = Memory(id="latest", createdAt=5000)

    await store.add(memory)

    assert ids(store) == ["latest", "new", "tasks", "old"]
    mock_storage.save.assert_awaited_once()
    assert [m.id for m in mock_storage.save.await_args.args[0]] == ids(store)


@pytest.mark.asyncio
async def test_add_with_equal_timestamp_goes_first(store):
    await store.add(Memory(id="twin", createdAt=3000))
    assert ids(store)[:2] == ["twin", "new"]


@pytest.mark.asyncio
async def test_toggle_pin_resorts(store, mock_storage):
    await store.toggle_pin("old")
    assert ids(store) == ["old", "new", "tasks"]
    assert store.get("old").pinned is True

    await store.toggle_pin("old")
    assert ids(store) == ["new", "tasks", "old"]
    assert mock_storage.save.await_count == 2


@pytest.mark.asyncio
async def test_toggle_pin_unknown_id_is_noop(store, mock_storage):
    await store.toggle_pin("missing")
    mock_storage.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_remove_always_persists(store, mock_storage):
    await store.remove("tasks")
    assert ids(store) == ["new", "old"]

    await store.remove("missing")
    assert mock_storage.save.await_count == 2


@pytest.mark.asyncio
async def test_toggle_action_item_twice_restores(store, mock_storage):
    original = list(store.get("tasks").completed_items)

    await store.toggle_action_item("tasks", 0)
    assert store.get("tasks").completed_items == [0, 2]

    await store.toggle_action_item("tasks", 0)
    assert store.get("tasks").completed_items == original
    assert mock_storage.save.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("index", [-1, 3, 99])
async def test_toggle_action_item_out_of_range_is_noop(store, mock_storage, index):
    await store.toggle_action_item("tasks", index)
    assert store.get("tasks").completed_items == [2]
    mock_storage.save.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_failure_keeps_change(store, mock_storage):
    mock_storage.save.side_effect = OSError("disk full")

    await store.toggle_pin("old")

    assert store.get("old").pinned is True
    assert store.last_error == SAVE_ERROR_MESSAGE

    mock_storage.save.side_effect = None
    await store.toggle_pin("old")
    assert store.last_error is None
