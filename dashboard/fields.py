"""
dashboard/fields.py

Field resolution over raw records and tolerant value coercion.

Upstream sheets are hand-maintained, so a logical field can show up under
several header spellings. Every known spelling lives in FIELD_ALIASES; a new
naming quirk is a data change there, not new lookup code at the call site.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

from dashboard.parsing import normalize_header

# Normalized logical name -> alternative header spellings.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "dealowner": ("deal owner", "deal_owner", "owner", "sales person", "sales rep"),
    "dealname": ("deal", "opportunity", "opportunity name"),
    "clientname": ("client", "customer", "account", "account name"),
    "closedate": ("close", "expected close date", "closing date"),
    "quartertarget": ("quarter_target", "quartertar", "q target"),
    "carryover": ("carry_over", "carry forward"),
    "arrforecast": ("arr forecast", "fy26 arr forecast", "fy26 arr"),
    "confidencequarterclose": ("confidence", "confidence close", "confidence %"),
    "latestnextsteps": ("latest / next steps", "next steps"),
    "estimatedtransactionspermonth": ("transactions per month", "est transactions per month"),
    "annualizedtransactionforecast": ("annualized transactions", "transaction forecast"),
    "targetaccount": ("target account y/n", "is target account"),
    "volumedriven": ("volume driven", "volume"),
    "pricepoint": ("price point", "price"),
}

# Last-resort key scan for fields whose headers drift beyond any alias list.
# Patterns run against keys lowercased with every non-alphanumeric removed.
RELAXED_FIELD_PATTERNS: Dict[str, Pattern[str]] = {
    "dealowner": re.compile(r"deal.*owner"),
    "quartertarget": re.compile(r"quarter.*tar"),
    "latestnextsteps": re.compile(r"latest.*nextsteps?|^nextsteps?$"),
}

TRUTHY_TOKENS = frozenset({"true", "1", "yes", "x"})

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_NUMBER_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_COMPACT_NUMBER = re.compile(r"(\d[\d,]*(?:\.\d+)?|\.\d+)\s*([kmb])$")
_COMPACT_MULTIPLIERS = {"k": 1_000.0, "m": 1_000_000.0, "b": 1_000_000_000.0}
_ALNUM_ONLY = re.compile(r"[^a-z0-9]")
_DATE_PREFIX = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")


def _candidates(name: str) -> List[str]:
    key = normalize_header(name)
    out = [key, name]
    for alias in FIELD_ALIASES.get(key, ()):
        out.extend([normalize_header(alias), alias])
    return list(dict.fromkeys(out))


def _relaxed_match(keys: Iterable[str], name: str) -> Optional[str]:
    pattern = RELAXED_FIELD_PATTERNS.get(normalize_header(name))
    if pattern is None:
        return None
    for key in keys:
        if pattern.search(_ALNUM_ONLY.sub("", str(key).lower())):
            return key
    return None


def cell(record: Mapping[str, object], name: str) -> str:
    """
    Read a logical field from a raw record, never raising.

    Order: normalized name, literal name, aliases, then the relaxed key scan
    for the ambiguous fields. The first present key wins, even when empty;
    only the ambiguous fields let an empty value fall through.
    """

    relaxed = normalize_header(name) in RELAXED_FIELD_PATTERNS
    for candidate in _candidates(name):
        value = record.get(candidate)
        if value is None:
            continue
        text = to_text(value)
        if text or not relaxed:
            return text
    key = _relaxed_match(record.keys(), name)
    if key is not None:
        return to_text(record.get(key))
    return ""


def find_column(columns: Iterable[str], name: str) -> Optional[str]:
    """Resolve a logical field to one of the given column keys, or None."""
    cols = list(columns)
    present = set(cols)
    for candidate in _candidates(name):
        if candidate in present:
            return candidate
    return _relaxed_match(cols, name)


def to_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def to_number(value: object) -> float:
    """
    Coerce to a finite float: '$1,200' -> 1200, '45%' -> 45, '55k' -> 55000,
    '1.2m' -> 1200000. Anything unparseable is 0.0.
    """

    if value is None or isinstance(value, bool):
        return float(bool(value))
    if isinstance(value, (int, float)):
        out = float(value)
        return out if math.isfinite(out) else 0.0

    text = str(value).strip().lower()
    multiplier = 1.0
    compact = _COMPACT_NUMBER.search(text)
    if compact:
        multiplier = _COMPACT_MULTIPLIERS[compact.group(2)]
        text = text[: compact.end(1)]

    match = _NUMBER_PREFIX.match(_NON_NUMERIC.sub("", text))
    if not match:
        return 0.0
    try:
        out = float(match.group(0)) * multiplier
    except ValueError:
        return 0.0
    return out if math.isfinite(out) else 0.0


def to_bool(value: object) -> bool:
    return to_text(value).lower() in TRUTHY_TOKENS


def to_confidence(value: object) -> float:
    """Percent on a 0-100 scale; fractions (<= 1) are scaled up."""
    text = to_text(value).replace("%", "")
    if not text:
        return 0.0
    n = to_number(text)
    return n * 100 if n <= 1 else n


def parse_date(value: object) -> Optional[date]:
    """ISO-ish date prefix (YYYY-MM-DD or YYYY/MM/DD) -> date; anything else None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    match = _DATE_PREFIX.match(to_text(value))
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None
