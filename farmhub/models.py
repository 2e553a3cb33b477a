# farmhub/models.py
from sqlalchemy import Column, Integer, String, Float, DateTime
from sqlalchemy.orm import validates
from datetime import datetime, timezone
from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Farm(Base):
    __tablename__ = "farms"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    size = Column(Float, nullable=False, default=0.0)
    size_unit = Column(String, nullable=False, default="acres")
    location = Column(String, nullable=False, default="")

    # set once on insert; updates never touch it
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @validates("created_at")
    def _tz(self, _, v):
        # ensure aware timestamps
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @validates("size")
    def _non_negative(self, _, v):
        if v is not None and v < 0:
            raise ValueError("size must be >= 0")
        return v


class Preference(Base):
    __tablename__ = "preferences"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
