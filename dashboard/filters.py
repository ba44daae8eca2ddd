from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Optional

METRIC_KEYS = ("clientWins", "acv", "inYearRevenue", "arrTarget")
QUARTER_METRIC_KEYS = ("clientWins", "acv", "inYearRevenue")

VOLUME_DIMENSIONS: Dict[str, str] = {
    "clients": "client",
    "regulatory_types": "regulatory_type",
    "transaction_types": "transaction_type",
    "merchants": "merchant",
    "merchant_jurisdictions": "merchant_jurisdiction",
    "merchant_industries": "merchant_industry",
    "use_cases": "use_case",
    "tpps": "tpp",
    "currencies": "currency",
    "source_bank_jurisdictions": "source_bank_jurisdiction",
    "transaction_categories": "transaction_category",
    "transaction_sub_types": "transaction_sub_type",
}


@dataclass(frozen=True)
class SalesFilters:
    selected_segments: List[str] = field(default_factory=list)
    selected_owners: List[str] = field(default_factory=list)
    metric: str = "acv"
    top_n: int = 10

    @property
    def active(self) -> bool:
        return bool(self.selected_segments or self.selected_owners)


@dataclass(frozen=True)
class VolumeFilters:
    clients: List[str] = field(default_factory=list)
    regulatory_types: List[str] = field(default_factory=list)
    transaction_types: List[str] = field(default_factory=list)
    merchants: List[str] = field(default_factory=list)
    merchant_jurisdictions: List[str] = field(default_factory=list)
    merchant_industries: List[str] = field(default_factory=list)
    use_cases: List[str] = field(default_factory=list)
    tpps: List[str] = field(default_factory=list)
    currencies: List[str] = field(default_factory=list)
    source_bank_jurisdictions: List[str] = field(default_factory=list)
    transaction_categories: List[str] = field(default_factory=list)
    transaction_sub_types: List[str] = field(default_factory=list)
    top_n: int = 10

    def selections(self) -> Dict[str, List[str]]:
        """Row column -> selected values, for the non-empty selections only."""
        out: Dict[str, List[str]] = {}
        for f in fields(self):
            if f.name in VOLUME_DIMENSIONS and getattr(self, f.name):
                out[VOLUME_DIMENSIONS[f.name]] = getattr(self, f.name)
        return out


def _as_str_list(values: Optional[Iterable[object]]) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    out: List[str] = []
    for v in values:
        if v is None:
            continue
        text = str(v).strip()
        if text and text not in out:
            out.append(text)
    return out


def _as_top_n(raw: object, default: int) -> int:
    try:
        top_n = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        top_n = default
    return max(1, min(200, top_n))


def normalize_sales_filters(raw: dict) -> SalesFilters:
    metric = str(raw.get("metric") or "acv").strip()
    if metric not in METRIC_KEYS:
        metric = "acv"
    return SalesFilters(
        selected_segments=_as_str_list(raw.get("selected_segments")),
        selected_owners=_as_str_list(raw.get("selected_owners")),
        metric=metric,
        top_n=_as_top_n(raw.get("top_n", 10), 10),
    )


def normalize_volume_filters(raw: dict) -> VolumeFilters:
    values = {name: _as_str_list(raw.get(name)) for name in VOLUME_DIMENSIONS}
    return VolumeFilters(top_n=_as_top_n(raw.get("top_n", 10), 10), **values)
