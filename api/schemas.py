from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SalesFiltersModel(BaseModel):
    selected_segments: List[str] = Field(default_factory=list)
    selected_owners: List[str] = Field(default_factory=list)
    metric: Literal["clientWins", "acv", "inYearRevenue", "arrTarget"] = "acv"
    top_n: int = 10


class VolumeFiltersModel(BaseModel):
    clients: List[str] = Field(default_factory=list)
    regulatory_types: List[str] = Field(default_factory=list)
    transaction_types: List[str] = Field(default_factory=list)
    merchants: List[str] = Field(default_factory=list)
    merchant_jurisdictions: List[str] = Field(default_factory=list)
    merchant_industries: List[str] = Field(default_factory=list)
    use_cases: List[str] = Field(default_factory=list)
    tpps: List[str] = Field(default_factory=list)
    currencies: List[str] = Field(default_factory=list)
    source_bank_jurisdictions: List[str] = Field(default_factory=list)
    transaction_categories: List[str] = Field(default_factory=list)
    transaction_sub_types: List[str] = Field(default_factory=list)
    top_n: int = 10


class LoadStatusResponse(BaseModel):
    status: str
    token: int
    source: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    loaded_at: Optional[str] = None
    table_counts: Dict[str, int] = Field(default_factory=dict)


class SegmentOptionsResponse(BaseModel):
    quarter: str
    segments: List[str]
    owners: List[str]
