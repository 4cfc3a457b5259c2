from __future__ import annotations

from dataclasses import dataclass

PERIOD_MONTHLY = "monthly"
PERIOD_QUARTERLY = "quarterly"
PERIOD_TYPES = (PERIOD_MONTHLY, PERIOD_QUARTERLY)


@dataclass(frozen=True)
class PeriodKey:
    """Reporting period a status belongs to.

    Exactly one of `month` (monthly) or `quarter` (quarterly) is set. `key` is the
    canonical string stored next to the client id, e.g. ``2024-M01`` or ``2024-Q3``.
    """

    period_type: str
    year: int
    month: int | None = None
    quarter: int | None = None

    def __post_init__(self):
        if self.period_type not in PERIOD_TYPES:
            raise ValueError(f"period_type must be one of {', '.join(PERIOD_TYPES)}")
        if self.period_type == PERIOD_MONTHLY:
            if self.month is None or not 1 <= self.month <= 12:
                raise ValueError("period_month must be between 1 and 12 for monthly periods")
            if self.quarter is not None:
                raise ValueError("period_quarter is not allowed for monthly periods")
        else:
            if self.quarter is None or not 1 <= self.quarter <= 4:
                raise ValueError("period_quarter must be between 1 and 4 for quarterly periods")
            if self.month is not None:
                raise ValueError("period_month is not allowed for quarterly periods")

    @property
    def key(self) -> str:
        if self.period_type == PERIOD_MONTHLY:
            return f"{self.year}-M{self.month:02d}"
        return f"{self.year}-Q{self.quarter}"

    @classmethod
    def monthly(cls, year: int, month: int) -> "PeriodKey":
        return cls(PERIOD_MONTHLY, year, month=month)

    @classmethod
    def quarterly(cls, year: int, quarter: int) -> "PeriodKey":
        return cls(PERIOD_QUARTERLY, year, quarter=quarter)

    def as_dict(self) -> dict:
        return {
            "period_type": self.period_type,
            "period_year": self.year,
            "period_month": self.month,
            "period_quarter": self.quarter,
            "period_key": self.key,
        }
