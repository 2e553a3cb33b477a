"""Durable key-value storage for user preferences such as the active farm."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from farmhub import models
from farmhub.config import AppConfig, get_config
from farmhub.errors import PersistenceError

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = str(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    """Preferences kept as rows of the ``preferences`` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_path(cls, path: Path) -> "SqlKeyValueStore":
        """Open (and create if needed) a standalone SQLite preference database."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{path.as_posix()}",
                connect_args={"check_same_thread": False},
            )
            models.Preference.__table__.create(bind=engine, checkfirst=True)
        except (OSError, SQLAlchemyError) as e:
            raise PersistenceError(f"Could not open preference store {path}: {e}") from e
        return cls(sessionmaker(autocommit=False, autoflush=False, bind=engine))

    def _run(self, action: str, key: str, fn: Callable[[Session], Any]) -> Any:
        try:
            with self._session_factory() as db:
                return fn(db)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not {action} preference {key!r}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        def read(db: Session):
            obj = db.get(models.Preference, key)
            return obj.value if obj else None

        return self._run("read", key, read)

    def set(self, key: str, value: str) -> None:
        def write(db: Session):
            db.merge(models.Preference(key=key, value=str(value)))
            db.commit()

        self._run("write", key, write)

    def remove(self, key: str) -> None:
        def delete(db: Session):
            obj = db.get(models.Preference, key)
            if obj:
                db.delete(obj)
                db.commit()

        self._run("remove", key, delete)


def build_key_value_store(cfg: AppConfig | None = None) -> KeyValueStore:
    cfg = cfg or get_config()
    store = (cfg.preference_store or "sqlite").lower()
    if store != "sqlite":
        return MemoryKeyValueStore()
    if cfg.preference_store_path:
        path = Path(cfg.preference_store_path)
    else:
        root = Path(__file__).resolve().parents[1]
        path = root / ".cache" / "preferences.sqlite3"
    try:
        return SqlKeyValueStore.from_path(path)
    except PersistenceError as e:
        # the remembered farm is lost for this process, nothing else
        logger.warning("Falling back to in-memory preferences: %s", e)
        return MemoryKeyValueStore()
