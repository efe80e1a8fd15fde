from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "SEPT": 9, "OCT": 10, "NOV": 11, "DEC": 12,
    "JANUARY": 1, "FEBRUARY": 2, "MARCH": 3, "APRIL": 4, "JUNE": 6, "JULY": 7,
    "AUGUST": 8, "SEPTEMBER": 9, "OCTOBER": 10, "NOVEMBER": 11, "DECEMBER": 12,
}

# "Jan25", "JAN 25", "January 2025", "Jan-2025", "Aug'25"
_MONTH_FIRST = re.compile(r"^([A-Za-z]+)[\s\-'/]*(\d{2}|\d{4})$")
# "25JAN", "2025 January"
_YEAR_FIRST = re.compile(r"^(\d{2}|\d{4})[\s\-'/]*([A-Za-z]+)$")


class ContractMonthService:
    """
    Calendar ordering of contract-month labels.

    Labels are parsed into (month 1-12, 2-digit year) and ordered by
    `year * 100 + month`. Unparseable labels get key 0 and therefore sort first.
    """

    @staticmethod
    def parse_label(label: str) -> Optional[Tuple[int, int]]:
        """
        Return (month, two_digit_year) or None when the label is not a contract month.
        """
        s = (label or "").strip()
        m = _MONTH_FIRST.match(s)
        if m:
            month_token, year_token = m.group(1), m.group(2)
        else:
            m = _YEAR_FIRST.match(s)
            if not m:
                return None
            year_token, month_token = m.group(1), m.group(2)

        month = _MONTHS.get(month_token.upper())
        if month is None:
            return None
        return month, int(year_token) % 100

    @classmethod
    def sort_key(cls, label: str) -> int:
        parsed = cls.parse_label(label)
        if parsed is None:
            return 0
        month, year = parsed
        return year * 100 + month

    @classmethod
    def sort_labels(cls, labels: Sequence[str]) -> List[str]:
        return sorted(labels, key=cls.sort_key)

    @classmethod
    def sort_by_label(cls, items: Sequence[T], label_of: Callable[[T], str]) -> List[T]:
        """
        Stable ascending sort of arbitrary items by their contract label.
        """
        return sorted(items, key=lambda item: cls.sort_key(label_of(item)))
