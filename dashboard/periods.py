from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

MONTH_LABELS: Tuple[str, ...] = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MONTH_NAMES: Tuple[str, ...] = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

QUARTER_ID = re.compile(r"^(20\d{2})Q([1-4])$")


@dataclass(frozen=True)
class Quarter:
    """Period descriptor for one calendar quarter, e.g. Quarter.parse('2026Q2')."""

    year: int
    number: int

    @classmethod
    def parse(cls, value: str) -> "Quarter":
        match = QUARTER_ID.match(str(value or "").strip().upper())
        if not match:
            raise ValueError(f"Invalid quarter id {value!r}; expected e.g. 2026Q1.")
        return cls(year=int(match.group(1)), number=int(match.group(2)))

    @property
    def id(self) -> str:
        return f"{self.year}Q{self.number}"

    @property
    def months(self) -> Tuple[int, int, int]:
        first = (self.number - 1) * 3 + 1
        return (first, first + 1, first + 2)

    @property
    def month_labels(self) -> Tuple[str, str, str]:
        a, b, c = self.months
        return (MONTH_LABELS[a - 1], MONTH_LABELS[b - 1], MONTH_LABELS[c - 1])

    @property
    def label(self) -> str:
        labels = self.month_labels
        return f"{self.year} Q{self.number} ({labels[0]}-{labels[2]})"

    @property
    def target_label(self) -> str:
        return f"Q{self.number} Target" if self.number == 1 else f"{self.id} Target"

    @property
    def previous(self) -> Tuple["Quarter", ...]:
        """Earlier quarters of the same year (carry-over sources)."""
        return tuple(Quarter(self.year, n) for n in range(1, self.number))

    def month_index(self, d: Optional[date]) -> Optional[int]:
        if d is None or d.year != self.year:
            return None
        if d.month not in self.months:
            return None
        return self.months.index(d.month)

    def contains(self, d: Optional[date]) -> bool:
        return self.month_index(d) is not None


def quarter_of(d: date) -> Quarter:
    return Quarter(year=d.year, number=(d.month - 1) // 3 + 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_number(label: str) -> Optional[int]:
    """'Feb', 'february', '2' -> 2."""
    text = str(label or "").strip().lower()
    if text.isdigit():
        n = int(text)
        return n if 1 <= n <= 12 else None
    for idx, name in enumerate(MONTH_NAMES):
        if text and name.lower().startswith(text[:3]) and len(text) >= 3:
            return idx + 1
    return None
