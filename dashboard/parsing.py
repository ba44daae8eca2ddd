"""
dashboard/parsing.py

CSV text -> raw records. Handles the published-sheet export format: comma
delimiter, double-quote quoting with doubled-quote escaping, inconsistent
header spelling and ragged rows.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

BOM = "\ufeff"
DELIMITER = ","
QUOTE = '"'

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_HEADER_SEPARATORS = re.compile(r"[\s_]+")

Record = Dict[str, str]


@dataclass(frozen=True)
class RawTable:
    """Parsed sheet: normalized column keys in header order, their raw labels, and rows."""

    columns: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    rows: List[Record] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.rows


def _strip_wrapping_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith(QUOTE) and value.endswith(QUOTE):
        return value[1:-1]
    return value


def normalize_header(raw: str) -> str:
    """Canonical lookup key: 'Deal Owner', 'deal_owner' and 'DEALOWNER' all map to 'dealowner'."""
    trimmed = str(raw).replace(BOM, "").strip()
    key = _HEADER_SEPARATORS.sub("", _strip_wrapping_quotes(trimmed).lower())
    return key or trimmed


def parse_csv_line(line: str) -> List[str]:
    """Split one line into trimmed field values; a trailing delimiter yields a final ''."""
    try:
        values = next(csv.reader([line], delimiter=DELIMITER, quotechar=QUOTE, skipinitialspace=True), [])
    except csv.Error:
        return [_strip_wrapping_quotes(v.strip()).strip() for v in line.split(DELIMITER)]
    # csv.reader has already removed the wrapping quote pair.
    return [v.strip() for v in values]


def format_csv_line(values: Iterable[object]) -> str:
    """Serialize one row with the quoting rules understood by parse_csv_line."""
    out: List[str] = []
    for value in values:
        text = "" if value is None else str(value)
        needs_quotes = (
            DELIMITER in text
            or QUOTE in text
            or text != text.strip()
            or "\n" in text
            or "\r" in text
        )
        if needs_quotes:
            text = QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
        out.append(text)
    return DELIMITER.join(out)


def split_lines(text: str) -> List[str]:
    """Drop a leading BOM, split on CR/LF and discard blank lines."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    return [line for line in _LINE_BREAK.split(text) if line.strip()]


def fit_to_width(values: List[str], width: int) -> List[str]:
    """Pad short rows with '' and drop fields beyond the header width."""
    if len(values) >= width:
        return values[:width]
    return values + [""] * (width - len(values))


def parse_table(text: str) -> RawTable:
    lines = split_lines(text or "")
    if len(lines) < 2:
        return RawTable()

    raw_headers = parse_csv_line(lines[0])
    keys = [normalize_header(h) for h in raw_headers]

    columns: List[str] = []
    labels: Dict[str, str] = {}
    for key, raw in zip(keys, raw_headers):
        if key not in labels:
            columns.append(key)
        labels[key] = raw.replace(BOM, "").strip()

    rows: List[Record] = []
    for line in lines[1:]:
        values = fit_to_width(parse_csv_line(line), len(keys))
        row: Record = {}
        for key, value in zip(keys, values):
            row[key] = value
        rows.append(row)
    return RawTable(columns=columns, labels=labels, rows=rows)


def parse_csv(text: str) -> List[Record]:
    return parse_table(text).rows
