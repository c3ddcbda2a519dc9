"""
FinLedger - Reporting Period
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Union

from finledger.utils.error_handling import InvalidDateRangeException, ValidationFailure


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


def _as_date(value: Union[date, datetime, str], field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationFailure(f"{field_name} is not a valid date: {value!r}", field=field_name)


@dataclass(frozen=True)
class Period:
    """
    Inclusive reporting window [start_date, end_date].

    Supplied by the caller and never persisted by the engine itself.
    """
    start_date: date
    end_date: date
    type: PeriodType = PeriodType.MONTHLY

    def __post_init__(self):
        start = _as_date(self.start_date, "start_date")
        end = _as_date(self.end_date, "end_date")
        object.__setattr__(self, "start_date", start)
        object.__setattr__(self, "end_date", end)
        if not isinstance(self.type, PeriodType):
            try:
                object.__setattr__(self, "type", PeriodType(self.type))
            except ValueError:
                raise ValidationFailure(f"Unknown period type: {self.type!r}", field="type")
        if end < start:
            raise InvalidDateRangeException(start.isoformat(), end.isoformat())

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.start_date, time.min)

    @property
    def end_datetime(self) -> datetime:
        """Last instant of the end date, so the window includes the whole day."""
        return datetime.combine(self.end_date, time.max)

    def contains(self, moment: Union[date, datetime]) -> bool:
        day = moment.date() if isinstance(moment, datetime) else moment
        return self.start_date <= day <= self.end_date

    @property
    def label(self) -> str:
        return f"{self.start_date.isoformat()} to {self.end_date.isoformat()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "type": self.type.value,
        }
