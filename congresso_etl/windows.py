from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class IncrementalWindow:
    """Closed date interval used by incremental runs; computed once per run."""

    start: date
    end: date

    @classmethod
    def trailing_days(cls, now: datetime, days: int) -> "IncrementalWindow":
        today = now.date()
        return cls(start=today - timedelta(days=days), end=today)

    @classmethod
    def trailing_months(cls, now: datetime, months: int) -> "IncrementalWindow":
        """From the first day of the month ``months`` back up to today."""
        year, month = now.year, now.month - months
        while month < 1:
            month += 12
            year -= 1
        return cls(start=date(year, month, 1), end=now.date())

    def months(self) -> list[tuple[int, int]]:
        out: list[tuple[int, int]] = []
        year, month = self.start.year, self.start.month
        while (year, month) <= (self.end.year, self.end.month):
            if (year, month) not in out:
                out.append((year, month))
            month += 1
            if month > 12:
                month = 1
                year += 1
        return out

    def contains(self, day: Optional[date]) -> bool:
        if day is None:
            return False
        return self.start <= day <= self.end

    def as_params(self) -> dict[str, str]:
        return {"dataInicio": self.start.isoformat(), "dataFim": self.end.isoformat()}
