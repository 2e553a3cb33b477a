# farmhub/deps.py
from functools import lru_cache

from farmhub.db import SessionLocal
from farmhub.directory import FarmDirectory, build_farm_directory
from farmhub.preferences import build_key_value_store
from farmhub.selection import FarmSelectionStore


@lru_cache(maxsize=1)
def _default_directory() -> FarmDirectory:
    return build_farm_directory(SessionLocal)


@lru_cache(maxsize=1)
def _default_selection_store() -> FarmSelectionStore:
    return FarmSelectionStore(_default_directory(), build_key_value_store())


def get_directory() -> FarmDirectory:
    return _default_directory()


def get_selection_store() -> FarmSelectionStore:
    return _default_selection_store()
