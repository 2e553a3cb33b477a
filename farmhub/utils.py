from __future__ import annotations

from typing import Optional, Union
from datetime import datetime, timezone

import pandas as pd


def parse_record_id(v) -> Optional[int]:
    """Record ids arrive as ints or numeric strings; return None otherwise."""
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return None


def to_aware_utc(v: Optional[Union[str, datetime]]) -> datetime:
    """Convert input to an aware UTC datetime."""
    if v is None:
        return datetime.now(timezone.utc)
    if isinstance(v, datetime):
        return v.astimezone(timezone.utc) if v.tzinfo else v.replace(tzinfo=timezone.utc)
    ts = pd.to_datetime(v, errors="coerce", utc=True)
    if pd.isna(ts):
        return datetime.now(timezone.utc)
    return ts.to_pydatetime()


def to_aware_utc_or_none(v: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """Like to_aware_utc, but missing or unparseable input stays None."""
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return to_aware_utc(v)
    ts = pd.to_datetime(v, errors="coerce", utc=True)
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()
