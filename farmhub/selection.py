"""Process-wide farm selection state.

:class:`FarmSelectionStore` owns the list of known farms, the active farm and
the status of the last fetch. The active farm id is remembered in a
key-value store under :data:`SELECTED_FARM_KEY` so that the choice survives
a restart; after every successful load the remembered id is reconciled
against the farms the directory actually returned.

All mutations replace the state snapshot as a whole, so readers never see
a half-applied update. ``load_farms`` is latest-call-wins: each call takes
a ticket from a monotonic counter and a completion whose ticket is no
longer the newest is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from farmhub import schemas
from farmhub.directory import FarmDirectory
from farmhub.logging_utils import log_event
from farmhub.preferences import KeyValueStore

logger = logging.getLogger(__name__)

SELECTED_FARM_KEY = "selectedFarmId"
DEFAULT_LOAD_ERROR = "Failed to load farms"


@dataclass(frozen=True)
class FarmSelectionState:
    farms: tuple[schemas.FarmOut, ...] = ()
    selected_farm: Optional[schemas.FarmOut] = None
    loading: bool = False
    error: Optional[str] = None
    is_initialized: bool = False


Listener = Callable[[FarmSelectionState], None]


class FarmSelectionStore:
    def __init__(self, directory: FarmDirectory, storage: KeyValueStore):
        self._directory = directory
        self._storage = storage
        self._state = FarmSelectionState()
        self._request_seq = 0
        self._listeners: list[Listener] = []

    @property
    def state(self) -> FarmSelectionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, **changes) -> FarmSelectionState:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Farm selection listener failed")
        return self._state

    # ---------- persisted preference ----------

    def _read_saved_id(self) -> Optional[str]:
        try:
            return self._storage.get(SELECTED_FARM_KEY)
        except Exception as e:
            logger.warning("Failed to load selected farm from storage: %s", e)
            return None

    def _save_selected_id(self, farm_id: Optional[schemas.FarmId]) -> None:
        try:
            if farm_id is not None:
                self._storage.set(SELECTED_FARM_KEY, str(farm_id))
            else:
                self._storage.remove(SELECTED_FARM_KEY)
        except Exception as e:
            logger.warning("Failed to save selected farm to storage: %s", e)

    def _pick_default(
        self, farms: Sequence[schemas.FarmOut]
    ) -> tuple[schemas.FarmOut, bool]:
        """Return the farm to auto-select and whether storage must be rewritten."""
        saved_id = self._read_saved_id()
        if saved_id is not None:
            for farm in farms:
                # storage only holds strings; ids may be ints
                if str(farm.id) == saved_id:
                    return farm, False
        return farms[0], True

    def _auto_select(self, candidates: Sequence[schemas.FarmOut], **changes) -> FarmSelectionState:
        farm, rewrite = self._pick_default(candidates)
        state = self._commit(selected_farm=farm, **changes)
        if rewrite:
            self._save_selected_id(farm.id)
        log_event("farm_auto_selected", farm_id=farm.id, restored=not rewrite)
        return state

    # ---------- operations ----------

    async def load_farms(self) -> FarmSelectionState:
        """Fetch farms from the directory and reconcile the active farm.

        Never raises: a directory failure is recorded in ``error`` and the
        previous farms and selection are kept.
        """
        self._request_seq += 1
        ticket = self._request_seq
        self._commit(loading=True, error=None)
        log_event("farms_load_started", ticket=ticket)

        try:
            farms = tuple(await self._directory.list())
        except Exception as e:
            if ticket != self._request_seq:
                log_event("farms_load_discarded", ticket=ticket, latest=self._request_seq)
                return self._state
            message = str(e) or DEFAULT_LOAD_ERROR
            log_event("farms_load_failed", ticket=ticket, error=message)
            return self._commit(loading=False, error=message, is_initialized=True)

        if ticket != self._request_seq:
            log_event("farms_load_discarded", ticket=ticket, latest=self._request_seq)
            return self._state

        log_event("farms_loaded", ticket=ticket, count=len(farms))
        changes = dict(loading=False, farms=farms, error=None, is_initialized=True)
        if farms and self._state.selected_farm is None:
            return self._auto_select(farms, **changes)
        return self._commit(**changes)

    def set_selected_farm(self, farm: Optional[schemas.FarmOut]) -> FarmSelectionState:
        state = self._commit(selected_farm=farm)
        self._save_selected_id(farm.id if farm is not None else None)
        log_event("farm_selected", farm_id=farm.id if farm is not None else None)
        return state

    def initialize_farm_selection(self) -> FarmSelectionState:
        """Run auto-selection against the current farms if nothing is selected."""
        farms = self._state.farms
        if farms and self._state.selected_farm is None:
            return self._auto_select(farms, is_initialized=True)
        return self._commit(is_initialized=True)

    def clear_farm_state(self) -> FarmSelectionState:
        # outstanding loads must not repopulate a cleared store
        self._request_seq += 1
        state = self._commit(
            farms=(),
            selected_farm=None,
            loading=False,
            error=None,
            is_initialized=False,
        )
        self._save_selected_id(None)
        log_event("farm_state_cleared")
        return state
