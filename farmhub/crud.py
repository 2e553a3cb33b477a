from typing import Optional
from sqlalchemy.orm import Session
from farmhub import models, schemas
from farmhub.utils import to_aware_utc, parse_record_id

# ---------- tiny, single-purpose helpers ----------

def _lookup(db: Session, farm_id) -> Optional[models.Farm]:
    pk = parse_record_id(farm_id)
    if pk is None:
        return None
    return db.get(models.Farm, pk)

def _apply_attributes(obj: models.Farm, payload: schemas.FarmBase) -> None:
    obj.name = payload.name
    obj.size = payload.size
    obj.size_unit = payload.size_unit.value
    obj.location = payload.location

# ---------- CRUD ----------

def list_farms(db: Session) -> list[models.Farm]:
    return db.query(models.Farm).order_by(models.Farm.id).all()

def get_farm(db: Session, farm_id) -> Optional[models.Farm]:
    return _lookup(db, farm_id)

def create_farm(db: Session, payload: schemas.FarmCreate, *, created_at=None) -> models.Farm:
    obj = models.Farm(created_at=to_aware_utc(created_at))
    _apply_attributes(obj, payload)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def update_farm(db: Session, farm_id, payload: schemas.FarmUpdate) -> Optional[models.Farm]:
    """Overwrite the editable attributes; created_at is left alone."""
    obj = _lookup(db, farm_id)
    if not obj:
        return None
    _apply_attributes(obj, payload)
    db.commit()
    db.refresh(obj)
    return obj

def delete_farm(db: Session, farm_id) -> bool:
    obj = _lookup(db, farm_id)
    if not obj:
        return False
    db.delete(obj)
    db.commit()
    return True
