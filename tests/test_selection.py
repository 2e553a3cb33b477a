from __future__ import annotations

import asyncio

import pytest

from farmhub import schemas
from farmhub.errors import DirectoryError
from farmhub.preferences import MemoryKeyValueStore
from farmhub.selection import (
    DEFAULT_LOAD_ERROR,
    SELECTED_FARM_KEY,
    FarmSelectionState,
    FarmSelectionStore,
)


def mk_farm(farm_id, name: str = "Farm", **kwargs) -> schemas.FarmOut:
    return schemas.FarmOut(id=farm_id, name=name, **kwargs)


NORTH = mk_farm("1", "North")
SOUTH = mk_farm("2", "South")


class FakeDirectory:
    """Directory double: returns the configured farms or raises the configured error."""

    def __init__(self, farms=None, error: Exception | None = None):
        self.farms = list(farms or [])
        self.error = error
        self.calls = 0

    async def list(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.farms)


class GatedDirectory:
    """Each list() call blocks until the test resolves its future."""

    def __init__(self):
        self.gates: list[asyncio.Future] = []

    async def list(self):
        fut = asyncio.get_running_loop().create_future()
        self.gates.append(fut)
        return await fut


class BrokenStorage:
    def get(self, key):
        raise OSError("storage disabled")

    def set(self, key, value):
        raise OSError("quota exceeded")

    def remove(self, key):
        raise OSError("storage disabled")


def mk_store(farms=None, *, saved: str | None = None, error=None):
    storage = MemoryKeyValueStore()
    if saved is not None:
        storage.set(SELECTED_FARM_KEY, saved)
    directory = FakeDirectory(farms, error)
    return FarmSelectionStore(directory, storage), directory, storage


def load(store: FarmSelectionStore) -> FarmSelectionState:
    return asyncio.run(store.load_farms())


def test_initial_state_is_empty():
    store, _, _ = mk_store()

    assert store.state == FarmSelectionState()
    assert store.state.farms == ()
    assert store.state.selected_farm is None
    assert store.state.is_initialized is False


def test_load_without_saved_key_selects_first_and_persists_it():
    store, _, storage = mk_store([NORTH, SOUTH])

    state = load(store)

    assert state.selected_farm.id == "1"
    assert storage.get(SELECTED_FARM_KEY) == "1"
    assert state.farms == (NORTH, SOUTH)
    assert state.loading is False
    assert state.error is None
    assert state.is_initialized is True


def test_load_restores_saved_farm_without_rewriting_storage():
    store, _, storage = mk_store([NORTH, SOUTH], saved="2")
    writes = []
    original_set = storage.set
    storage.set = lambda k, v: (writes.append((k, v)), original_set(k, v))

    state = load(store)

    assert state.selected_farm.id == "2"
    assert storage.get(SELECTED_FARM_KEY) == "2"
    assert writes == []


def test_load_with_unknown_saved_key_falls_back_to_first():
    store, _, storage = mk_store([NORTH, SOUTH], saved="9")

    state = load(store)

    assert state.selected_farm.id == "1"
    assert storage.get(SELECTED_FARM_KEY) == "1"


def test_saved_key_takes_precedence_over_first_farm():
    farms = [mk_farm(str(i), f"Farm {i}") for i in range(1, 5)]
    store, _, _ = mk_store(farms, saved=farms[2].id)

    state = load(store)

    assert state.selected_farm == farms[2]


def test_integer_ids_match_saved_string_key():
    farms = [mk_farm(10, "Ten"), mk_farm(20, "Twenty")]
    store, _, storage = mk_store(farms, saved="20")

    state = load(store)

    assert state.selected_farm.id == 20
    assert storage.get(SELECTED_FARM_KEY) == "20"


def test_load_keeps_existing_selection():
    store, directory, storage = mk_store([NORTH, SOUTH])
    load(store)
    store.set_selected_farm(SOUTH)

    directory.farms = [SOUTH, NORTH]
    state = load(store)

    assert state.selected_farm == SOUTH
    assert state.farms == (SOUTH, NORTH)
    assert storage.get(SELECTED_FARM_KEY) == "2"


def test_load_with_empty_list_selects_nothing():
    store, _, storage = mk_store([])

    state = load(store)

    assert state.selected_farm is None
    assert state.is_initialized is True
    assert storage.get(SELECTED_FARM_KEY) is None


def test_auto_select_is_idempotent():
    store, _, storage = mk_store([NORTH, SOUTH])
    load(store)
    storage.set(SELECTED_FARM_KEY, "2")

    first = store.initialize_farm_selection()
    second = store.initialize_farm_selection()

    assert first.selected_farm == NORTH
    assert second.selected_farm == NORTH


def test_initialize_selection_restores_saved_farm_after_reset_selection():
    store, _, storage = mk_store([NORTH, SOUTH])
    load(store)
    store.set_selected_farm(None)
    storage.set(SELECTED_FARM_KEY, "2")

    state = store.initialize_farm_selection()

    assert state.selected_farm == SOUTH
    assert state.is_initialized is True


def test_initialize_selection_without_farms_only_marks_initialized():
    store, _, _ = mk_store()

    state = store.initialize_farm_selection()

    assert state.selected_farm is None
    assert state.is_initialized is True


def test_explicit_selection_overrides_auto_selection():
    store, _, storage = mk_store([NORTH, SOUTH])
    load(store)

    state = store.set_selected_farm(SOUTH)

    assert state.selected_farm == SOUTH
    assert storage.get(SELECTED_FARM_KEY) == "2"


def test_selecting_none_removes_saved_key():
    store, _, storage = mk_store([NORTH, SOUTH])
    load(store)

    state = store.set_selected_farm(None)

    assert state.selected_farm is None
    assert storage.get(SELECTED_FARM_KEY) is None


def test_set_selected_farm_does_not_validate_membership():
    store, _, storage = mk_store([NORTH])
    load(store)
    stranger = mk_farm("77", "Elsewhere")

    state = store.set_selected_farm(stranger)

    assert state.selected_farm == stranger
    assert storage.get(SELECTED_FARM_KEY) == "77"


def test_failed_load_keeps_farms_and_selection():
    store, directory, _ = mk_store([NORTH, SOUTH])
    load(store)
    store.set_selected_farm(SOUTH)

    directory.error = DirectoryError("backend unreachable")
    state = load(store)

    assert state.farms == (NORTH, SOUTH)
    assert state.selected_farm == SOUTH
    assert state.error == "backend unreachable"
    assert state.loading is False
    assert state.is_initialized is True


def test_failed_first_load_marks_initialized():
    store, _, _ = mk_store(error=DirectoryError("boom"))

    state = load(store)

    assert state.farms == ()
    assert state.selected_farm is None
    assert state.error == "boom"
    assert state.is_initialized is True


def test_failure_without_message_uses_default_error():
    store, _, _ = mk_store(error=RuntimeError())

    state = load(store)

    assert state.error == DEFAULT_LOAD_ERROR


def test_retry_after_failure_clears_error():
    store, directory, _ = mk_store([NORTH], error=DirectoryError("down"))
    assert load(store).error == "down"

    directory.error = None
    state = load(store)

    assert state.error is None
    assert state.selected_farm == NORTH


def test_loading_flag_is_set_while_fetch_is_outstanding():
    seen: list[FarmSelectionState] = []

    async def scenario():
        directory = GatedDirectory()
        store = FarmSelectionStore(directory, MemoryKeyValueStore())
        store.subscribe(seen.append)
        task = asyncio.create_task(store.load_farms())
        await asyncio.sleep(0)
        during = store.state
        directory.gates[0].set_result([NORTH])
        after = await task
        return during, after

    during, after = asyncio.run(scenario())

    assert during.loading is True
    assert during.error is None
    assert during.is_initialized is False
    assert after.loading is False
    assert seen[0].loading is True
    assert seen[-1] == after


def test_stale_load_completion_is_discarded():
    async def scenario():
        directory = GatedDirectory()
        store = FarmSelectionStore(directory, MemoryKeyValueStore())
        first = asyncio.create_task(store.load_farms())
        second = asyncio.create_task(store.load_farms())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert len(directory.gates) == 2

        directory.gates[1].set_result([SOUTH])
        await second
        directory.gates[0].set_result([NORTH])
        await first
        return store.state

    state = asyncio.run(scenario())

    assert state.farms == (SOUTH,)
    assert state.selected_farm == SOUTH
    assert state.loading is False


def test_stale_load_failure_does_not_set_error():
    async def scenario():
        directory = GatedDirectory()
        store = FarmSelectionStore(directory, MemoryKeyValueStore())
        first = asyncio.create_task(store.load_farms())
        second = asyncio.create_task(store.load_farms())
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        directory.gates[1].set_result([NORTH])
        await second
        directory.gates[0].set_exception(DirectoryError("late failure"))
        await first
        return store.state

    state = asyncio.run(scenario())

    assert state.error is None
    assert state.farms == (NORTH,)


def test_clear_resets_state_and_removes_saved_key():
    store, _, storage = mk_store([NORTH, SOUTH])
    load(store)

    state = store.clear_farm_state()

    assert state.farms == ()
    assert state.selected_farm is None
    assert state.loading is False
    assert state.error is None
    assert state.is_initialized is False
    assert storage.get(SELECTED_FARM_KEY) is None


def test_clear_discards_outstanding_load():
    async def scenario():
        directory = GatedDirectory()
        store = FarmSelectionStore(directory, MemoryKeyValueStore())
        task = asyncio.create_task(store.load_farms())
        await asyncio.sleep(0)
        store.clear_farm_state()
        directory.gates[0].set_result([NORTH])
        await task
        return store.state

    state = asyncio.run(scenario())

    assert state.farms == ()
    assert state.is_initialized is False


def test_broken_storage_never_breaks_selection():
    store = FarmSelectionStore(FakeDirectory([NORTH, SOUTH]), BrokenStorage())

    state = asyncio.run(store.load_farms())
    assert state.selected_farm == NORTH

    assert store.set_selected_farm(SOUTH).selected_farm == SOUTH
    assert store.clear_farm_state().farms == ()


def test_unsubscribe_stops_notifications():
    store, _, _ = mk_store([NORTH])
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.set_selected_farm(NORTH)
    unsubscribe()
    store.set_selected_farm(None)

    assert len(seen) == 1


def test_failing_listener_does_not_break_store():
    store, _, _ = mk_store([NORTH])

    def explode(_state):
        raise RuntimeError("listener bug")

    store.subscribe(explode)

    state = load(store)
    assert state.selected_farm == NORTH


@pytest.mark.parametrize(
    "saved, expected_id, expected_saved",
    [(None, "1", "1"), ("2", "2", "2"), ("9", "1", "1")],
)
def test_reconciliation_scenarios(saved, expected_id, expected_saved):
    store, _, storage = mk_store([NORTH, SOUTH], saved=saved)

    state = load(store)

    assert state.selected_farm.id == expected_id
    assert storage.get(SELECTED_FARM_KEY) == expected_saved


def test_first_load_publishes_farms_and_selection_together():
    store, _, _ = mk_store([NORTH, SOUTH])
    seen: list[FarmSelectionState] = []
    store.subscribe(seen.append)

    state = load(store)

    assert [s.loading for s in seen] == [True, False]
    assert seen[-1].farms == (NORTH, SOUTH)
    assert seen[-1].selected_farm == NORTH
    assert state is store.state
