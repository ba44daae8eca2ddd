from __future__ import annotations

import unittest
from unittest.mock import patch

import requests

from dashboard.api_source import load_api_data, sales_data_from_payload
from dashboard.config import DashboardSettings, SheetsSettings
from dashboard.data import load_sales_data
from dashboard.errors import DataSourceError

PAYLOAD = {
    "salesKPIs": {"forecastARR": "1.2m", "winRate": 40, "annualACVTarget": 0},
    "dealSegment": [{"name": "Fintechs", "value": 3}, "garbage"],
    "detailsByMonth": {"Jan": {"license": [{"clientName": "Acme", "amount": "100"}]}},
    "quarterDeal": [
        {"clientName": "Acme", "closeDate": "2026-02-01", "acv": "1,000", "targetAccount": "yes", "confidenceQuarterClose": 0.7}
    ],
    "quarterMetricInput": {"2026Q1": {"acv": {"monthSigned": [1, 2], "quarterTarget": 900}}},
    "quarterTargetBySegment": {"2026Q1": {"acv": {"Fintechs": "500"}}},
    "quarterDealOwners": {"2026Q1": ["Bo", "", "Ana"]},
    "cumulativeChartData": {"acv": {"actual": [1, 2, 3]}},
}


class FakeResponse:
    def __init__(self, status_code: int, payload: object = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.urls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def get(self, url, params=None, headers=None, timeout=None):
        self.urls.append(url)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def api_settings() -> DashboardSettings:
    return DashboardSettings(
        sheets=SheetsSettings(spreadsheet_id="", sheet_gids={}),
        api_base_url="http://sales.local/api/",
    )


class TestPayloadMapping(unittest.TestCase):
    def test_entities(self) -> None:
        data = sales_data_from_payload(PAYLOAD)

        self.assertEqual(data.source, "api")
        self.assertEqual(data.sales_kpis.forecast_arr, 1_200_000)
        self.assertIsNone(data.sales_kpis.annual_acv_target)
        self.assertEqual(len(data.deal_segment), 1)
        self.assertEqual(data.details_by_month["Jan"].license[0].amount, 100)

        deal = data.quarter_deal[0]
        self.assertEqual(deal.acv, 1000)
        self.assertTrue(deal.target_account)
        self.assertAlmostEqual(deal.confidence_quarter_close, 70)

        acv = data.quarter_metric_input["2026Q1"]["acv"]
        self.assertEqual(acv.month_signed, (1.0, 2.0, 0.0))
        self.assertEqual(acv.quarter_target, 900)
        self.assertEqual(data.quarter_target_by_segment["2026Q1"]["acv"]["Fintechs"], 500)
        self.assertEqual(data.quarter_deal_owners["2026Q1"], ("Ana", "Bo"))
        self.assertEqual(len(data.cumulative_chart_data["acv"].actual), 12)

    def test_empty_payload(self) -> None:
        data = sales_data_from_payload({})
        self.assertIsNone(data.sales_kpis)
        self.assertEqual(data.quarter_deal, ())


class TestLoadApiData(unittest.TestCase):
    def test_used_when_sheets_not_configured(self) -> None:
        session = FakeSession(FakeResponse(200, PAYLOAD))

        data = load_sales_data(api_settings(), session=session)

        self.assertEqual(data.source, "api")
        self.assertEqual(session.urls, ["http://sales.local/api/sales-data"])

    def test_own_session_is_closed(self) -> None:
        owned = FakeSession(FakeResponse(200, PAYLOAD))
        with patch("dashboard.data.requests.Session", return_value=owned):
            data = load_api_data(api_settings())

        self.assertEqual(data.source, "api")
        self.assertTrue(owned.closed)

    def test_http_error(self) -> None:
        with self.assertLogs("dashboard.api_source", level="ERROR"):
            with self.assertRaises(DataSourceError):
                load_api_data(api_settings(), session=FakeSession(FakeResponse(502)))

    def test_transport_error(self) -> None:
        with self.assertLogs("dashboard.api_source", level="ERROR"):
            with self.assertRaises(DataSourceError):
                load_api_data(api_settings(), session=FakeSession(requests.Timeout("slow")))

    def test_invalid_json(self) -> None:
        with self.assertRaises(DataSourceError):
            load_api_data(api_settings(), session=FakeSession(FakeResponse(200, ValueError("bad json"))))
        with self.assertRaises(DataSourceError):
            load_api_data(api_settings(), session=FakeSession(FakeResponse(200, ["not", "a", "dict"])))


if __name__ == "__main__":
    unittest.main()
