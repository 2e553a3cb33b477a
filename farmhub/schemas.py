# farmhub/schemas.py
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Union
from datetime import datetime

from farmhub.utils import to_aware_utc_or_none

FarmId = Union[int, str]


class SizeUnit(str, Enum):
    acres = "acres"
    hectares = "hectares"
    square_feet = "square feet"
    square_meters = "square meters"


def _coerce_size(v) -> float:
    # unparseable sizes fall back to 0, like the record-store forms do
    if v in (None, ""):
        return 0.0
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


class FarmBase(BaseModel):
    name: str = Field(..., min_length=1)
    size: float = Field(default=0.0, ge=0)
    size_unit: SizeUnit = SizeUnit.acres
    location: str = ""

    @field_validator("size", mode="before")
    @classmethod
    def _parse_size(cls, v):
        return _coerce_size(v)

    @field_validator("size_unit", mode="before")
    @classmethod
    def _default_unit(cls, v):
        return v or SizeUnit.acres

    @field_validator("location", mode="before")
    @classmethod
    def _default_location(cls, v):
        return v or ""


class FarmCreate(FarmBase):
    pass


class FarmUpdate(FarmBase):
    pass


class FarmOut(FarmBase):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: FarmId
    created_at: Optional[datetime] = None

    @field_validator("created_at", mode="after")
    @classmethod
    def _aware(cls, v):
        # SQLite hands back naive timestamps
        return to_aware_utc_or_none(v)


class SelectFarmIn(BaseModel):
    farm_id: Optional[FarmId] = None


class SelectionOut(BaseModel):
    farms: list[FarmOut]
    selected_farm: Optional[FarmOut] = None
    loading: bool
    error: Optional[str] = None
    is_initialized: bool
