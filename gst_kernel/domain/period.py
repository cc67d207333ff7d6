"""
Period -- year+month filing interval.

Canonical code is ``YYYY-MM``. The ``MMYYYY`` form used by return filings
is accepted on parse. Periods are totally ordered and hashable so they can
key ledger maps and drive gap-free iteration.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date

from gst_kernel.exceptions import InvalidPeriodError

_ISO_FORM = re.compile(r"^(\d{4})-(\d{2})$")
_FILING_FORM = re.compile(r"^(\d{2})(\d{4})$")


@dataclass(frozen=True, order=True, slots=True)
class Period:
    """A filing period identified by year and month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidPeriodError(f"{self.year}-{self.month}")
        if not 1 <= self.year <= 9999:
            raise InvalidPeriodError(f"{self.year}-{self.month}")

    @classmethod
    def parse(cls, value: str | Period) -> Period:
        """Parse ``YYYY-MM`` or ``MMYYYY``; Period instances pass through."""
        if isinstance(value, Period):
            return value
        text = (value or "").strip()
        match = _ISO_FORM.match(text)
        if match:
            year, month = int(match.group(1)), int(match.group(2))
        else:
            match = _FILING_FORM.match(text)
            if not match:
                raise InvalidPeriodError(value)
            month, year = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise InvalidPeriodError(value)
        return cls(year=year, month=month)

    @classmethod
    def of_date(cls, value: date) -> Period:
        return cls(year=value.year, month=value.month)

    @classmethod
    def range(cls, start: Period, end: Period) -> list[Period]:
        """Every period from ``start`` to ``end`` inclusive, in order."""
        periods: list[Period] = []
        current = start
        while current <= end:
            periods.append(current)
            current = current.next()
        return periods

    @property
    def code(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def filing_code(self) -> str:
        """``MMYYYY`` form used on return filings."""
        return f"{self.month:02d}{self.year:04d}"

    @property
    def start_date(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end_date(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def next(self) -> Period:
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def previous(self) -> Period:
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def __str__(self) -> str:
        return self.code
