"""
test_api.py - HTTP layer checks against mocked WooCommerce and Sheets.

Usage:
    python test_api.py
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import httpx
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import api
from config import Settings, load_settings
from errors import ConfigError
from logging_config import level_from_env
from office_store import OfficeStore
from sheets_client import SheetsClient
from woo_client import WooClient


def _symbols() -> tuple[str, str, str]:
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except Exception:
        pass

    try:
        "✓✗═".encode(sys.stdout.encoding or "utf-8")
        return "✓", "✗", "═"
    except Exception:
        return "[OK]", "[FAIL]", "="


PASS, FAIL, LINE = _symbols()

BASE_URL = "https://shop.example.org"

BOOKED_ORDER = {
    "id": 4821,
    "number": "4821",
    "status": "processing",
    "total": "179.00",
    "date_created": "2025-02-20T09:15:00",
    "billing": {"first_name": "Ana", "last_name": "Popescu", "country": "RO"},
    "payment_method_title": "Überweisung",
    "line_items": [
        {
            "name": "telc Deutsch B1",
            "meta_data": [
                {"key": "Prüfungstermin wählen:", "value": "2025-03-15"},
                {"key": "Zertifikat", "value": "Versand per Post"},
            ],
        }
    ],
}


def _woo_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/orders/4821"):
        return httpx.Response(200, json=BOOKED_ORDER)
    if path.endswith("/orders/5000"):
        return httpx.Response(500, json={"code": "internal_error"})
    if path.endswith("/orders"):
        if request.url.params.get("search"):
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[BOOKED_ORDER], headers={"X-WP-TotalPages": "1"})
    return httpx.Response(404, json={"code": "woocommerce_rest_shop_order_invalid_id"})


def _sheets_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "sheets": [
                {"properties": {"title": "Jan 2025", "sheetId": 1, "index": 0}},
                {"properties": {"title": "Feb 2025", "sheetId": 2, "index": 1}},
                {"properties": {"title": "03-2025", "sheetId": 3, "index": 2}},
            ]
        },
    )


class _Credentials:
    valid = True
    token = "test-token"

    def refresh(self, request) -> None:
        return None


@contextmanager
def _configured_api(tmp_dir: str, settings: Settings | None = None) -> Iterator[TestClient]:
    originals = (api.settings, api.office_store, api.scan_registry, api._woo_client, api._sheets_client)
    api.settings = settings or Settings(
        wc_base_url=BASE_URL,
        wc_consumer_key="ck_test",
        wc_consumer_secret="cs_test",
        state_file=str(Path(tmp_dir) / "state.json"),
    )
    api.office_store = OfficeStore(str(Path(tmp_dir) / "state.json"))
    api.scan_registry = api.ScanRegistry()
    if settings is None:
        api._woo_client = lambda: WooClient(
            BASE_URL, "ck_test", "cs_test", transport=httpx.MockTransport(_woo_handler)
        )
        api._sheets_client = lambda: SheetsClient(_Credentials(), transport=httpx.MockTransport(_sheets_handler))
    try:
        yield TestClient(api.app)
    finally:
        api.settings, api.office_store, api.scan_registry, api._woo_client, api._sheets_client = originals


def test_load_settings_from_environment() -> None:
    settings = load_settings(
        {
            "WC_BASE_URL": "https://shop.example.org/",
            "WC_CONSUMER_KEY": "ck",
            "WC_CONSUMER_SECRET": "cs",
            "SCAN_EARLY_STOP": "40",
            "GOOGLE_SA_PRIVATE_KEY": "-----BEGIN-----\\nabc",
            "NAME_MATCH_THRESHOLD": " ",
        }
    )
    assert settings.wc_base_url == "https://shop.example.org"
    assert settings.woo_configured
    assert settings.scan_early_stop == 40
    assert settings.scan_concurrency == 6
    assert settings.name_match_threshold == 0.85
    assert settings.google_sa_private_key == "-----BEGIN-----\nabc"
    assert not settings.sheets_configured

    try:
        load_settings({"SCAN_CONCURRENCY": "six"})
        raised = False
    except ConfigError:
        raised = True
    assert raised


def test_log_level_from_environment() -> None:
    previous = os.environ.get("LOG_LEVEL")
    try:
        os.environ["LOG_LEVEL"] = "debug"
        assert level_from_env() == logging.DEBUG
        os.environ["LOG_LEVEL"] = "30"
        assert level_from_env() == logging.WARNING
        os.environ["LOG_LEVEL"] = "chatty"
        assert level_from_env() == logging.INFO
    finally:
        if previous is None:
            os.environ.pop("LOG_LEVEL", None)
        else:
            os.environ["LOG_LEVEL"] = previous


def test_health_reports_configuration() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            body = client.get("/health").json()
            assert body == {"status": "ok", "woo_configured": True, "sheets_configured": False}


def test_exam_crud() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            created = client.post("/exams", json={"kind": "B1", "dates": ["15.03.2025", "12.04.2025"]})
            assert created.status_code == 200
            assert [exam["id"] for exam in created.json()] == [1, 2]

            assert len(client.get("/exams", params={"kind": "b1"}).json()) == 2
            assert client.get("/exams", params={"kind": "C1"}).json() == []

            removed = client.request("DELETE", "/exams", json={"ids": [1]})
            assert removed.json() == {"removed": 1}
            assert [exam["id"] for exam in client.get("/exams").json()] == [2]

            assert client.post("/exams", json={"kind": "B1", "dates": []}).status_code == 422


def test_participant_and_error_mapping() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            response = client.get("/orders/4821/participant")
            assert response.status_code == 200
            body = response.json()
            assert body["last_name"] == "Popescu"
            assert body["exam_date"] == "15.03.2025"
            assert body["nationality"] == "ROU"

            assert client.get("/orders/9999/participant").status_code == 404
            assert client.get("/orders/5000/participant").status_code == 502


def test_missing_credentials_are_client_errors() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        settings = Settings(state_file=str(Path(tmp_dir) / "state.json"))
        with _configured_api(tmp_dir, settings=settings) as client:
            response = client.get("/orders/4821/participant")
            assert response.status_code == 400
            assert "WooCommerce not configured" in response.json()["detail"]

            response = client.post("/sheets/month-tab", json={"sheet": "abc", "month": 3, "year": 2025})
            assert response.status_code == 400


def test_bank_statement_flow() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            synced = client.post("/orders/sync")
            assert synced.status_code == 200
            assert synced.json() == {"synced": 1, "stored": 1}

            text = "01.03.2025\nAna Popescu\nBestellung 4821\n179,00\n02.03.2025\nUnbekannt\n10,00\n"
            summary = client.post("/bank/statements", json={"filename": "auszug.pdf", "text": text}).json()
            assert summary["transactions"] == 2
            assert summary["transactions_with_candidates"] == 1

            assert len(client.get("/bank/statements").json()) == 1

            matches = client.get("/bank/matches").json()
            assert len(matches) == 1
            assert matches[0]["candidate"]["confidence"] == 1
            assert matches[0]["order"]["link"].endswith("post=4821&action=edit")

            unmatched = client.get("/bank/unmatched").json()
            assert len(unmatched) == 1
            tx_id = unmatched[0]["id"]

            assert client.post(f"/bank/transactions/{tx_id}/status", json={"status": "bogus"}).status_code == 422
            assert client.post("/bank/transactions/999/status", json={"status": "ignored"}).status_code == 404

            updated = client.post(f"/bank/transactions/{tx_id}/status", json={"status": "ignored"})
            assert updated.status_code == 200
            assert updated.json()["status"] == "ignored"
            assert client.get("/bank/unmatched").json() == []


def test_orders_by_exam_and_scan() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            rows = client.post("/orders/by-exam", json={"kind": "B1", "date": "15.03.2025"}).json()
            assert [row["order_id"] for row in rows] == [4821]

            scan = client.post(
                "/orders/scan",
                json={"kind": "B1", "date": "2025-03-15", "surface": "roster", "ids": [4821, 4820]},
            )
            assert scan.status_code == 200
            body = scan.json()
            assert body["status"] == "completed"
            assert [row["order_id"] for row in body["matches"]] == [4821]
            assert body["examined"] == 2
            assert not api.scan_registry.active("roster")

            cancelled = client.delete("/orders/scan/roster").json()
            assert cancelled == {"surface": "roster", "cancelled": False}


def test_sheet_routes() -> None:
    with tempfile.TemporaryDirectory(prefix="office-api-") as tmp_dir:
        with _configured_api(tmp_dir) as client:
            tab = client.post(
                "/sheets/month-tab",
                json={"sheet": "https://docs.google.com/spreadsheets/d/abc123/edit", "month": 3, "year": 2025},
            ).json()
            assert tab == {"title": "03-2025", "method": "numeric", "resolved": True}

            response = client.post("/sheets/duplicate-check", json={"sheet": "abc123", "code": "12"})
            assert response.status_code == 400

            assert client.post("/sheets/month-tab", json={"sheet": "abc", "month": 13, "year": 2025}).status_code == 422


def main() -> None:
    tests = [(name, func) for name, func in globals().items() if name.startswith("test_") and callable(func)]
    passed = 0
    failed = 0

    print(LINE * 62)
    print("  HTTP API Tests")
    print(LINE * 62)

    for name, func in tests:
        try:
            func()
        except AssertionError as exc:
            failed += 1
            print(f"    {FAIL} {name} {exc}")
        else:
            passed += 1
            print(f"    {PASS} {name}")

    print(f"\n{LINE * 62}")
    print(f"  Results: {passed}/{passed + failed} passed")
    print(f"{LINE * 62}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
