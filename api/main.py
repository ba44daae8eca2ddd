from __future__ import annotations

from dataclasses import asdict
from functools import lru_cache
import logging
import math
from typing import List

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from fastapi.encoders import jsonable_encoder

from api.schemas import LoadStatusResponse, SalesFiltersModel, SegmentOptionsResponse, VolumeFiltersModel
from dashboard.config import DashboardSettings, get_settings
from dashboard.data import load_sales_data, load_volume_rows
from dashboard.filters import SalesFilters, VolumeFilters, normalize_sales_filters, normalize_volume_filters
from dashboard.metrics_cumulative import compute_cumulative
from dashboard.metrics_details import compute_details, compute_lost_deals
from dashboard.metrics_quarter import compute_quarter, month_details, quarter_deal_rows
from dashboard.metrics_sales import compute_sales_overview, owner_options, segment_options
from dashboard.metrics_volume import compute_month_top_clients, compute_volume_overview, volume_frame
from dashboard.models import SalesData, VolumeRow
from dashboard.periods import Quarter, month_number
from dashboard.store import LoadSnapshot, SalesDataStore


app = FastAPI(title="Commercial Dashboards API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class DataUnavailable(Exception):
    def __init__(self, snapshot: LoadSnapshot) -> None:
        self.snapshot = snapshot
        super().__init__(snapshot.error or "Sales data not loaded.")


@lru_cache(maxsize=1)
def get_store() -> SalesDataStore:
    return SalesDataStore(loader=lambda: load_sales_data(get_settings()))


@lru_cache(maxsize=1)
def _cached_volume_rows() -> List[VolumeRow]:
    return load_volume_rows(get_settings().volume_json_path)


def get_volume_rows() -> List[VolumeRow]:
    return _cached_volume_rows()


def _sales_filters(model: SalesFiltersModel) -> SalesFilters:
    return normalize_sales_filters(model.model_dump())


def _volume_filters(model: VolumeFiltersModel) -> VolumeFilters:
    return normalize_volume_filters(model.model_dump())


def _sales_data(store: SalesDataStore) -> SalesData:
    snapshot = store.ensure_loaded()
    if not snapshot.ready:
        raise DataUnavailable(snapshot)
    return snapshot.data  # type: ignore[return-value]


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


def _unavailable(exc: DataUnavailable) -> JSONResponse:
    snap = exc.snapshot
    return JSONResponse(
        status_code=503,
        content={"error": str(exc), "type": snap.error_type or "DataUnavailable", "status": snap.status.value},
    )


def _error(exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


def _bad_request(exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc), "type": type(exc).__name__})


def _status(snapshot: LoadSnapshot) -> LoadStatusResponse:
    data = snapshot.data
    return LoadStatusResponse(
        status=snapshot.status.value,
        token=snapshot.token,
        source=data.source if data is not None else None,
        error=snapshot.error,
        error_type=snapshot.error_type,
        loaded_at=snapshot.loaded_at.isoformat() if snapshot.loaded_at else None,
        table_counts=data.table_counts() if data is not None else {},
    )


@app.get("/meta/status")
def meta_status(store: SalesDataStore = Depends(get_store)):
    try:
        return _json(_status(store.snapshot).model_dump())
    except Exception as exc:
        logger.exception("meta_status failed")
        return _error(exc)


@app.post("/reload")
def reload(store: SalesDataStore = Depends(get_store)):
    try:
        snapshot = store.reload()
        status_code = 200 if snapshot.ready else 503
        return JSONResponse(status_code=status_code, content=jsonable_encoder(_status(snapshot).model_dump()))
    except Exception as exc:
        logger.exception("reload failed")
        return _error(exc)


@app.get("/meta/segments")
def meta_segments(quarter: str, store: SalesDataStore = Depends(get_store)):
    try:
        q = Quarter.parse(quarter)
    except ValueError as exc:
        return _bad_request(exc)
    try:
        data = _sales_data(store)
        body = SegmentOptionsResponse(quarter=q.id, segments=segment_options(data, q), owners=owner_options(data, q))
        return _json(body.model_dump())
    except DataUnavailable as exc:
        return _unavailable(exc)
    except Exception as exc:
        logger.exception("meta_segments failed")
        return _error(exc)


@app.post("/sales/overview")
def sales_overview(filters: SalesFiltersModel, store: SalesDataStore = Depends(get_store)):
    try:
        return _json(compute_sales_overview(_sales_filters(filters), _sales_data(store)))
    except DataUnavailable as exc:
        return _unavailable(exc)
    except Exception as exc:
        logger.exception("sales_overview failed")
        return _error(exc)


@app.post("/sales/quarter/{quarter}")
def sales_quarter(
    quarter: str,
    filters: SalesFiltersModel,
    store: SalesDataStore = Depends(get_store),
    settings: DashboardSettings = Depends(get_settings),
):
    try:
        q = Quarter.parse(quarter)
    except ValueError as exc:
        return _bad_request(exc)
    try:
        return _json(compute_quarter(_sales_filters(filters), _sales_data(store), q, as_of=settings.today()))
    except DataUnavailable as exc:
        return _unavailable(exc)
    except Exception as exc:
        logger.exception("sales_quarter failed")
        return _error(exc)


@app.post("/sales/cumulative/{metric}")
def sales_cumulative(
    metric: str,
    filters: SalesFiltersModel,
    store: SalesDataStore = Depends(get_store),
    settings: DashboardSettings = Depends(get_settings),
):
    try:
        return _json(compute_cumulative(_sales_filters(filters), _sales_data(store), metric, as_of=settings.today()))
    except DataUnavailable as exc:
        return _unavailable(exc)
    except ValueError as exc:
        return _bad_request(exc)
    except Exception as exc:
        logger.exception("sales_cumulative failed")
        return _error(exc)


@app.post("/sales/month-details/{quarter}/{month}")
def sales_month_details(
    quarter: str,
    month: str,
    filters: SalesFiltersModel,
    store: SalesDataStore = Depends(get_store),
    settings: DashboardSettings = Depends(get_settings),
):
    try:
        q = Quarter.parse(quarter)
        m = month_number(month)
        if m is None:
            raise ValueError(f"Invalid month {month!r}.")
        f = _sales_filters(filters)
        data = _sales_data(store)
        return _json({"filters": asdict(f), **month_details(data, q, m, f, settings.today())})
    except DataUnavailable as exc:
        return _unavailable(exc)
    except ValueError as exc:
        return _bad_request(exc)
    except Exception as exc:
        logger.exception("sales_month_details failed")
        return _error(exc)


@app.get("/sales/details/{quarter_key}")
def sales_details(quarter_key: str, store: SalesDataStore = Depends(get_store)):
    try:
        return _json(compute_details(_sales_data(store), quarter_key))
    except DataUnavailable as exc:
        return _unavailable(exc)
    except Exception as exc:
        logger.exception("sales_details failed")
        return _error(exc)


@app.get("/sales/lost-deals")
def sales_lost_deals(store: SalesDataStore = Depends(get_store)):
    try:
        return _json(compute_lost_deals(_sales_data(store)))
    except DataUnavailable as exc:
        return _unavailable(exc)
    except Exception as exc:
        logger.exception("sales_lost_deals failed")
        return _error(exc)


@app.post("/volume/overview")
def volume_overview(filters: VolumeFiltersModel, rows: List[VolumeRow] = Depends(get_volume_rows)):
    try:
        return _json(compute_volume_overview(_volume_filters(filters), rows))
    except Exception as exc:
        logger.exception("volume_overview failed")
        return _error(exc)


@app.post("/volume/top-clients/{month}")
def volume_top_clients(month: str, filters: VolumeFiltersModel, rows: List[VolumeRow] = Depends(get_volume_rows)):
    try:
        return _json(compute_month_top_clients(_volume_filters(filters), rows, month))
    except Exception as exc:
        logger.exception("volume_top_clients failed")
        return _error(exc)


@app.post("/export/{page}")
def export_page(
    page: str,
    quarter: str = "",
    store: SalesDataStore = Depends(get_store),
    settings: DashboardSettings = Depends(get_settings),
):
    export_df = pd.DataFrame()
    filename = f"{page}.csv"
    try:
        if page == "volume":
            export_df = volume_frame(get_volume_rows())
        elif page == "lost-deals":
            export_df = pd.DataFrame(compute_lost_deals(_sales_data(store))["rows"])
        elif page == "pipeline-deals":
            export_df = pd.DataFrame([asdict(d) for d in _sales_data(store).pipeline_deal])
        elif page == "quarter-deals":
            q = Quarter.parse(quarter)
            export_df = pd.DataFrame(quarter_deal_rows(_sales_data(store), q, SalesFilters(), settings.today()))
            filename = f"{q.id}-deals.csv"
    except DataUnavailable as exc:
        return _unavailable(exc)
    except ValueError as exc:
        return _bad_request(exc)
    except Exception as exc:
        logger.exception("export_page failed")
        return _error(exc)

    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
