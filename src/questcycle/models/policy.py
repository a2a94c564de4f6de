"""Category and expiration policy models.

Expiration policies form a tagged union on ``kind``; each variant carries only
the fields it needs. Configuration may also use a shorthand string for a
policy: ``"daily"``, ``"weekly"``, ``"monthly"``, ``"fixed"``, ``"permanent"``
or a duration such as ``"7d"`` (meaning a relative policy).
"""

import re
from datetime import datetime, time, timedelta, timezone
from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from questcycle.models.enums import PolicyKind


class Weekday(IntEnum):
    """Day of week numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        for day in cls:
            if day.name == name or day.name[:3] == name:
                return day
        raise ValueError(f"Unknown day of week: {value}")


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw])\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}


def parse_duration(value: Any) -> Any:
    """Accept ``"7d"``/``"12h"``/``"30m"`` shorthands on top of pydantic's formats."""
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if match:
            amount, unit = match.groups()
            return timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
    return value


class _PolicyBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class DailyPolicy(_PolicyBase):
    kind: Literal["daily"] = "daily"
    reset_time: time = time(4, 0)


class WeeklyPolicy(_PolicyBase):
    kind: Literal["weekly"] = "weekly"
    reset_day_of_week: Weekday = Weekday.MONDAY
    reset_time: time = time(4, 0)

    @field_validator("reset_day_of_week", mode="before")
    @classmethod
    def parse_day(cls, v: Any) -> Weekday:
        return Weekday.parse(v)


class MonthlyPolicy(_PolicyBase):
    kind: Literal["monthly"] = "monthly"
    reset_day_of_month: int = Field(default=1, ge=1, le=31)
    reset_time: time = time(4, 0)


class RelativePolicy(_PolicyBase):
    kind: Literal["relative"] = "relative"
    duration: Annotated[timedelta, BeforeValidator(parse_duration)] = timedelta(days=7)

    @field_validator("duration")
    @classmethod
    def non_negative(cls, v: timedelta) -> timedelta:
        if v < timedelta(0):
            raise ValueError("duration must not be negative")
        return v


class FixedPolicy(_PolicyBase):
    kind: Literal["fixed"] = "fixed"
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def ordered(self) -> "FixedPolicy":
        if self.start and self.end and self.end < self.start:
            raise ValueError("fixed window end precedes start")
        return self


class PermanentPolicy(_PolicyBase):
    kind: Literal["permanent"] = "permanent"


def _coerce_policy(value: Any) -> Any:
    if isinstance(value, str):
        shorthand = value.strip().lower()
        if shorthand in {kind.value for kind in PolicyKind}:
            return {"kind": shorthand}
        return {"kind": PolicyKind.RELATIVE.value, "duration": value}
    if isinstance(value, dict) and "kind" not in value and "type" in value:
        value = dict(value)
        value["kind"] = str(value.pop("type")).lower()
    return value


ExpirePolicy = Annotated[
    Union[DailyPolicy, WeeklyPolicy, MonthlyPolicy, RelativePolicy, FixedPolicy, PermanentPolicy],
    Field(discriminator="kind"),
]
PolicyField = Annotated[ExpirePolicy, BeforeValidator(_coerce_policy)]


class RerollPolicy(_PolicyBase):
    """Reroll rules, with a reset policy independent of task expiration."""

    enabled: bool = True
    cost: float = Field(default=0.0, ge=0)
    max_count: int = Field(default=3, ge=0)
    keep_completed: bool = True
    reset: PolicyField = Field(default_factory=DailyPolicy)


class CategoryPolicy(_PolicyBase):
    """Immutable per-category configuration."""

    id: str = Field(..., min_length=1)
    display_name: str = ""
    enabled: bool = True
    max_concurrent: int = Field(default=3, ge=0)
    auto_claim: bool = False
    expire_policy: PolicyField = Field(default_factory=DailyPolicy)
    reroll: RerollPolicy = Field(default_factory=RerollPolicy)

    @model_validator(mode="after")
    def default_display_name(self) -> "CategoryPolicy":
        if not self.display_name:
            object.__setattr__(self, "display_name", self.id)
        return self
