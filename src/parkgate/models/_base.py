"""Base model and timestamp helpers shared by parkgate models.

Every parkgate model inherits from :class:`ParkGateBaseModel`, which is
frozen and forbids unknown fields.  Timestamps go through
:data:`UtcDatetime` so naive datetimes, ISO-8601 strings and epoch
seconds/milliseconds all end up as timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce *value* to an aware UTC datetime.

    Accepts ``None``, datetimes (naive ones are taken as UTC), ISO-8601
    strings and epoch numbers in seconds **or** milliseconds.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            ts = float(value)
        except OverflowError as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    return value


UtcDatetime = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces timestamps to aware UTC datetimes."""

OptionalUtcDatetime = Annotated[datetime | None, BeforeValidator(parse_timestamp)]


class ParkGateBaseModel(BaseModel):
    """Base for parkgate value objects."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )
