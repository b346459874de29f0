from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any


class Period(Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class AggregatedSession:
    """Total coding time for one bucket of a period, split by repository."""
    period: Period
    date: int  # start of the bucket, in milliseconds
    date_string: str
    total_time_ms: int
    repositories: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "date": self.date,
            "dateString": self.date_string,
            "totalTimeMs": self.total_time_ms,
            "repositories": dict(self.repositories),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedSession":
        return cls(
            period=Period(data["period"]),
            date=data["date"],
            date_string=data["dateString"],
            total_time_ms=data["totalTimeMs"],
            repositories=dict(data.get("repositories", {})),
        )
