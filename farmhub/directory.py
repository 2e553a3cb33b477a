# farmhub/directory.py
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from farmhub import crud, schemas
from farmhub.config import AppConfig, get_config
from farmhub.errors import DirectoryError, FarmNotFound
from farmhub.logging_utils import log_event
from farmhub.utils import parse_record_id, to_aware_utc, to_aware_utc_or_none

Clock = Callable[[], datetime]
SessionFactory = Callable[[], Session]


class FarmDirectory(Protocol):
    async def list(self) -> list[schemas.FarmOut]:
        ...

    async def get_by_id(self, farm_id: schemas.FarmId) -> schemas.FarmOut:
        ...

    async def create(self, payload: schemas.FarmCreate) -> schemas.FarmOut:
        ...

    async def update(self, farm_id: schemas.FarmId, payload: schemas.FarmUpdate) -> schemas.FarmOut:
        ...

    async def delete(self, farm_id: schemas.FarmId) -> bool:
        ...


class SqlFarmDirectory(FarmDirectory):
    """Farm records in the local SQL database.

    Sessions are short-lived and opened on a worker thread so the event
    loop never blocks on the database.
    """

    def __init__(self, session_factory: SessionFactory, *, clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _run(self, fn: Callable[[Session], Any]) -> Any:
        def work():
            with self._session_factory() as db:
                return fn(db)

        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as e:
            raise DirectoryError(f"Database error: {e}") from e

    async def list(self) -> list[schemas.FarmOut]:
        return await self._run(
            lambda db: [schemas.FarmOut.model_validate(f) for f in crud.list_farms(db)]
        )

    async def get_by_id(self, farm_id: schemas.FarmId) -> schemas.FarmOut:
        def fetch(db: Session):
            obj = crud.get_farm(db, farm_id)
            return schemas.FarmOut.model_validate(obj) if obj else None

        farm = await self._run(fetch)
        if farm is None:
            raise FarmNotFound(farm_id)
        return farm

    async def create(self, payload: schemas.FarmCreate) -> schemas.FarmOut:
        created_at = self._clock()
        return await self._run(
            lambda db: schemas.FarmOut.model_validate(
                crud.create_farm(db, payload, created_at=created_at)
            )
        )

    async def update(self, farm_id: schemas.FarmId, payload: schemas.FarmUpdate) -> schemas.FarmOut:
        def apply(db: Session):
            obj = crud.update_farm(db, farm_id, payload)
            return schemas.FarmOut.model_validate(obj) if obj else None

        farm = await self._run(apply)
        if farm is None:
            raise FarmNotFound(farm_id)
        return farm

    async def delete(self, farm_id: schemas.FarmId) -> bool:
        return await self._run(lambda db: crud.delete_farm(db, farm_id))


class FixtureFarmDirectory(FarmDirectory):
    """In-memory farm records, optionally seeded from a JSON fixture."""

    def __init__(self, records: Iterable[Dict[str, Any]] = (), *, clock: Clock | None = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = Lock()
        self._farms: list[schemas.FarmOut] = []
        for r in records:
            self._farms.append(
                schemas.FarmOut.model_validate(
                    {**r, "created_at": to_aware_utc(r.get("created_at"))}
                )
            )

    @classmethod
    def from_file(cls, path: Path, *, clock: Clock | None = None) -> "FixtureFarmDirectory":
        try:
            records = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DirectoryError(f"Could not read farm fixture {path}: {e}") from e
        if not isinstance(records, list):
            raise DirectoryError(f"Farm fixture {path} must hold a JSON array")
        return cls(records, clock=clock)

    def _index_of(self, farm_id: schemas.FarmId) -> Optional[int]:
        for i, farm in enumerate(self._farms):
            if str(farm.id) == str(farm_id):
                return i
        return None

    def _next_id(self) -> int:
        ids = [pk for pk in (parse_record_id(f.id) for f in self._farms) if pk is not None]
        return max(ids, default=0) + 1

    async def list(self) -> list[schemas.FarmOut]:
        with self._lock:
            return list(self._farms)

    async def get_by_id(self, farm_id: schemas.FarmId) -> schemas.FarmOut:
        with self._lock:
            i = self._index_of(farm_id)
            if i is None:
                raise FarmNotFound(farm_id)
            return self._farms[i]

    async def create(self, payload: schemas.FarmCreate) -> schemas.FarmOut:
        with self._lock:
            farm = schemas.FarmOut(
                id=self._next_id(),
                created_at=self._clock(),
                **payload.model_dump(),
            )
            self._farms.append(farm)
            return farm

    async def update(self, farm_id: schemas.FarmId, payload: schemas.FarmUpdate) -> schemas.FarmOut:
        with self._lock:
            i = self._index_of(farm_id)
            if i is None:
                raise FarmNotFound(farm_id)
            farm = self._farms[i].model_copy(update=payload.model_dump())
            self._farms[i] = farm
            return farm

    async def delete(self, farm_id: schemas.FarmId) -> bool:
        with self._lock:
            i = self._index_of(farm_id)
            if i is None:
                return False
            del self._farms[i]
            return True


class RecordApiFarmDirectory(FarmDirectory):
    """Farm records held by a remote record-store API.

    Every response is an envelope ``{"success": bool, "message": str, ...}``;
    reads carry ``data`` and bulk writes carry per-record ``results``.
    """

    TABLE = "farm"
    FIELDS = [
        "Name", "Tags", "Owner", "CreatedOn", "CreatedBy",
        "ModifiedOn", "ModifiedBy", "size", "size_unit", "location",
    ]

    def __init__(
        self,
        base_url: str,
        *,
        project_id: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = {}
        if project_id:
            self._headers["X-Project-Id"] = project_id
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = timeout
        self._transport = transport

    @staticmethod
    def _to_farm(record: Any) -> schemas.FarmOut:
        if not isinstance(record, dict):
            raise DirectoryError("Malformed farm record")
        try:
            return schemas.FarmOut(
                id=record.get("Id"),
                name=record.get("Name"),
                size=record.get("size"),
                size_unit=record.get("size_unit"),
                location=record.get("location"),
                created_at=to_aware_utc_or_none(record.get("CreatedOn")),
            )
        except ValidationError as e:
            raise DirectoryError(f"Malformed farm record: {e}") from e

    @staticmethod
    def _to_record(payload: schemas.FarmBase) -> Dict[str, Any]:
        return {
            "Name": payload.name,
            "size": payload.size,
            "size_unit": payload.size_unit.value,
            "location": payload.location,
        }

    @staticmethod
    def _record_id(farm_id: schemas.FarmId) -> int:
        pk = parse_record_id(farm_id)
        if pk is None:
            raise FarmNotFound(farm_id)
        return pk

    async def _call(self, method: str, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/tables/{self.TABLE}/{path}"
        try:
            async with httpx.AsyncClient(
                headers=self._headers, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            log_event("record_api_error", method=method, path=path, error=str(e))
            raise DirectoryError(f"Record API request failed: {e}") from e
        except ValueError as e:
            raise DirectoryError("Record API returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise DirectoryError("Record API returned a malformed response")
        if not payload.get("success"):
            message = payload.get("message") or "Record API request was rejected"
            log_event("record_api_rejected", method=method, path=path, message=message)
            raise DirectoryError(message)
        return payload

    @staticmethod
    def _single_result(payload: Dict[str, Any], action: str) -> Optional[Dict[str, Any]]:
        results = payload.get("results")
        if not isinstance(results, list):
            return None
        failed = [r for r in results if not (isinstance(r, dict) and r.get("success"))]
        if failed:
            log_event("record_api_partial_failure", action=action, failed=len(failed))
            raise DirectoryError(f"Failed to {action} farm")
        return results[0] if results else None

    async def list(self) -> list[schemas.FarmOut]:
        payload = await self._call("POST", "records/fetch", {"fields": self.FIELDS})
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise DirectoryError("Record API returned a malformed farm list")
        return [self._to_farm(r) for r in data]

    async def get_by_id(self, farm_id: schemas.FarmId) -> schemas.FarmOut:
        pk = self._record_id(farm_id)
        payload = await self._call("POST", f"records/{pk}", {"fields": self.FIELDS})
        if not payload.get("data"):
            raise FarmNotFound(farm_id)
        return self._to_farm(payload["data"])

    async def create(self, payload: schemas.FarmCreate) -> schemas.FarmOut:
        body = {"records": [self._to_record(payload)]}
        result = self._single_result(await self._call("POST", "records", body), "create")
        if not result:
            raise DirectoryError("No records created")
        return self._to_farm(result.get("data"))

    async def update(self, farm_id: schemas.FarmId, payload: schemas.FarmUpdate) -> schemas.FarmOut:
        body = {"records": [{"Id": self._record_id(farm_id), **self._to_record(payload)}]}
        result = self._single_result(await self._call("PATCH", "records", body), "update")
        if not result:
            raise DirectoryError("No records updated")
        return self._to_farm(result.get("data"))

    async def delete(self, farm_id: schemas.FarmId) -> bool:
        pk = parse_record_id(farm_id)
        if pk is None:
            return False
        result = self._single_result(
            await self._call("DELETE", "records", {"RecordIds": [pk]}), "delete"
        )
        return result is not None


def build_farm_directory(
    session_factory: SessionFactory, cfg: AppConfig | None = None
) -> FarmDirectory:
    cfg = cfg or get_config()
    kind = cfg.farm_directory or "sql"
    if kind == "fixture":
        if cfg.farm_fixture_path:
            return FixtureFarmDirectory.from_file(Path(cfg.farm_fixture_path))
        return FixtureFarmDirectory.from_file(
            Path(__file__).resolve().parent / "fixtures" / "farms.json"
        )
    if kind == "record_api":
        if not cfg.record_api_url:
            raise ValueError("RECORD_API_URL must be set when FARM_DIRECTORY=record_api")
        return RecordApiFarmDirectory(
            cfg.record_api_url,
            project_id=cfg.record_api_project_id,
            api_key=cfg.record_api_key,
            timeout=cfg.record_api_timeout,
        )
    return SqlFarmDirectory(session_factory)
