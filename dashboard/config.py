"""
dashboard/config.py

Data source configuration read from environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple

PACKAGE_DIR = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_DIR.parent

DEFAULT_SPREADSHEET_ID = "1rXYAc7vlTTaaJmnRVhSDEjGmWRBzyLaYJtDibbv94yA"

REQUIRED_SHEETS: Tuple[str, ...] = (
    "SalesKPIs",
    "ForecastPoint",
    "ForecastPointBySegment",
    "PipelineStage",
    "DealSegment",
    "ARRByMonthPoint",
    "ARR_LicenseDetail",
    "ARR_MinimumDetail",
    "ARR_VolumeDetail",
    "PipelineDeal",
    "ACVByMonth",
    "ClientWinsPoint",
    "ClientDeal",
    "QuarterDeal",
)

OPTIONAL_SHEETS: Tuple[str, ...] = (
    "QuarterTargets",
    "CumulativeChartData",
    "QuarterMetricInput",
    "Q1Details",
    "Q2Details",
    "Q3Details",
    "Q4Details",
)

# Sheet tab name -> GID (from the tab URL). An empty GID disables an optional sheet.
DEFAULT_SHEET_GIDS: Dict[str, str] = {
    "SalesKPIs": "2109596373",
    "ForecastPoint": "2061591889",
    "ForecastPointBySegment": "524556140",
    "PipelineStage": "114361560",
    "DealSegment": "1425347438",
    "ARRByMonthPoint": "261112563",
    "ARR_LicenseDetail": "1269584713",
    "ARR_MinimumDetail": "714933824",
    "ARR_VolumeDetail": "275905580",
    "PipelineDeal": "878347444",
    "ACVByMonth": "365794913",
    "ClientWinsPoint": "503746360",
    "ClientDeal": "740156013",
    "QuarterDeal": "399575525",
    "QuarterTargets": "",
    "CumulativeChartData": "1352982034",
    "QuarterMetricInput": "1253132527",
    "Q1Details": "",
    "Q2Details": "",
    "Q3Details": "",
    "Q4Details": "",
}


def _get_float_env(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _get_optional_str_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_date_env(name: str) -> Optional[date]:
    value = _get_optional_str_env(name)
    if value is None:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


@dataclass(frozen=True)
class SheetsSettings:
    """
    Published Google Sheet (CSV export) source.
    """

    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    sheet_gids: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SHEET_GIDS))

    def gid(self, sheet: str) -> str:
        return (self.sheet_gids.get(sheet) or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.spreadsheet_id) and any(self.gid(name) for name in self.sheet_gids)


@dataclass(frozen=True)
class DashboardSettings:
    """
    Runtime settings for the dashboards.
    """

    sheets: SheetsSettings = field(default_factory=SheetsSettings)
    api_base_url: Optional[str] = None
    http_timeout_seconds: float = 15.0
    max_workers: int = 8
    volume_json_path: Path = DATA_DIR / "volume_data.json"
    as_of: Optional[date] = None

    @property
    def api_configured(self) -> bool:
        return bool(self.api_base_url)

    def today(self) -> date:
        """As-of date for the signed vs forecasted split."""
        return self.as_of or date.today()


def _sheet_gids_from_env() -> Dict[str, str]:
    gids = dict(DEFAULT_SHEET_GIDS)
    for name in gids:
        override = os.getenv(f"DASHBOARD_SHEET_GID_{name.upper()}")
        if override is not None:
            gids[name] = override.strip()
    return gids


def settings_from_env() -> DashboardSettings:
    """
    Build settings from environment variables (uncached).
    """

    return DashboardSettings(
        sheets=SheetsSettings(
            spreadsheet_id=_get_str_env("DASHBOARD_SHEETS_ID", DEFAULT_SPREADSHEET_ID),
            sheet_gids=_sheet_gids_from_env(),
        ),
        api_base_url=_get_optional_str_env("DASHBOARD_API_BASE_URL"),
        http_timeout_seconds=max(1.0, _get_float_env("DASHBOARD_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_workers=max(1, _get_int_env("DASHBOARD_MAX_WORKERS", 8)),
        volume_json_path=Path(_get_str_env("DASHBOARD_VOLUME_JSON", str(DATA_DIR / "volume_data.json"))),
        as_of=_get_date_env("DASHBOARD_AS_OF"),
    )


@lru_cache(maxsize=1)
def get_settings() -> DashboardSettings:
    """
    Return cached dashboard settings from environment variables.
    """

    return settings_from_env()
