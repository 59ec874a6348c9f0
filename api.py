"""
api.py - FastAPI HTTP layer for the exam office reconciliation engine.

Routes only translate HTTP to engine calls and engine failures to status
codes; matching and extraction logic lives in the engine modules.

    ValueError / ConfigError  -> 400
    missing order/transaction -> 404
    upstream (WooCommerce/Sheets) failure -> 502
    anything else             -> 500
"""

from __future__ import annotations

import os
from typing import Any, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from bank_match import ingest_statement, matches_joined, set_transaction_status, unmatched_transactions
from config import load_settings
from duplicates import check_duplicate
from errors import ConfigError, OrderNotFoundError, UpstreamError
from fields import build_participant
from logging_config import get_logger, setup_logging
from models import TransactionStatus
from office_store import OfficeStore
from reconcile import ScanRegistry, filter_orders_by_exam, scan_orders_for_exam
from sheet_tabs import append_participants, resolve_month_tab
from sheets_client import SheetsClient, parse_sheet_id
from woo_client import WooClient

logger = get_logger("office-api")

app = FastAPI(
    title="Exam Office Reconciliation API",
    version="1.0.0",
)

# Allows the local office UI on another host/port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings = load_settings()
office_store = OfficeStore(settings.state_file)
scan_registry = ScanRegistry()


def _woo_client() -> WooClient:
    return WooClient.from_settings(settings)


def _sheets_client() -> SheetsClient:
    return SheetsClient.from_settings(settings)


def _http_error(exc: Exception, event: str) -> HTTPException:
    """Map an engine failure onto an HTTPException."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, (ConfigError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (OrderNotFoundError, KeyError)):
        return HTTPException(status_code=404, detail=str(exc).strip("'\""))
    if isinstance(exc, UpstreamError):
        logger.error("%s | upstream_status=%s | error=%s", event, exc.status_code, exc)
        return HTTPException(status_code=502, detail=str(exc))

    logger.error(
        "%s | error_type=%s | error=%s",
        event,
        type(exc).__name__,
        exc,
        exc_info=True,
    )
    return HTTPException(status_code=500, detail="Unexpected server error.")


# -- Request bodies --


class ExamCreate(BaseModel):
    kind: str = Field(..., min_length=1)
    dates: list[str] = Field(..., min_length=1)


class ExamDelete(BaseModel):
    ids: list[int] = Field(..., min_length=1)


class ExamQuery(BaseModel):
    kind: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1)
    require_postal: bool = True


class ScanRequest(ExamQuery):
    surface: str = Field(default="default", min_length=1)
    ids: Optional[list[int]] = None
    cutoff: Optional[int] = None
    include_older: bool = False


class StatementUpload(BaseModel):
    filename: str = Field(default="statement.pdf")
    text: str


class StatusUpdate(BaseModel):
    status: TransactionStatus


class DuplicateCheckRequest(BaseModel):
    sheet: str = Field(..., min_length=1, description="Spreadsheet URL or id.")
    code: str


class MonthTabRequest(BaseModel):
    sheet: str = Field(..., min_length=1)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=2999)


class AppendParticipantsRequest(BaseModel):
    sheet: str = Field(..., min_length=1)
    order_numbers: list[str] = Field(..., min_length=1)
    staff: Optional[str] = None


# -- Routes --


@app.get("/health")
def health() -> dict[str, Any]:
    """Service health check."""
    return {
        "status": "ok",
        "woo_configured": settings.woo_configured,
        "sheets_configured": settings.sheets_configured,
    }


@app.get("/exams")
def list_exams(kind: Optional[str] = None) -> list[dict[str, Any]]:
    state = office_store.load()
    return [exam.model_dump() for exam in state.list_exams(kind)]


@app.post("/exams")
def add_exams(payload: ExamCreate = Body(...)) -> list[dict[str, Any]]:
    try:
        with office_store.update() as state:
            added = state.add_exams(payload.kind, payload.dates)
        return [exam.model_dump() for exam in added]
    except Exception as exc:
        raise _http_error(exc, "api_exam_add_error") from exc


@app.delete("/exams")
def remove_exams(payload: ExamDelete = Body(...)) -> dict[str, int]:
    with office_store.update() as state:
        removed = state.remove_exams(payload.ids)
    return {"removed": removed}


@app.post("/orders/sync")
async def sync_orders() -> dict[str, int]:
    """Refresh the local order window used by the bank matcher."""
    try:
        async with _woo_client() as woo:
            orders = await woo.list_recent_orders(settings.bank_order_window)
            summaries = [woo.order_summary(order) for order in orders]
        with office_store.update() as state:
            synced = state.upsert_orders(summaries)
        logger.info("orders_synced | fetched=%s | stored=%s", synced, len(state.orders))
        return {"synced": synced, "stored": len(state.orders)}
    except Exception as exc:
        raise _http_error(exc, "api_orders_sync_error") from exc


@app.get("/orders/{number}/participant")
async def order_participant(number: str) -> dict[str, Any]:
    try:
        async with _woo_client() as woo:
            order = await woo.find_order(number)
        return build_participant(order).model_dump()
    except Exception as exc:
        raise _http_error(exc, "api_participant_error") from exc


@app.post("/orders/by-exam")
async def orders_by_exam(payload: ExamQuery = Body(...)) -> list[dict[str, Any]]:
    try:
        async with _woo_client() as woo:
            rows = await filter_orders_by_exam(
                woo,
                payload.kind,
                payload.date,
                concurrency=settings.scan_concurrency,
                require_postal=payload.require_postal,
            )
        return [row.model_dump() for row in rows]
    except Exception as exc:
        raise _http_error(exc, "api_orders_by_exam_error") from exc


@app.post("/orders/scan")
async def scan_orders(payload: ScanRequest = Body(...)) -> dict[str, Any]:
    """Incremental exam search. A new scan on the same surface stops the previous one."""
    token = scan_registry.start(payload.surface)
    try:
        async with _woo_client() as woo:
            result = await scan_orders_for_exam(
                woo,
                payload.kind,
                payload.date,
                ids=payload.ids,
                cutoff=payload.cutoff,
                include_older=payload.include_older,
                concurrency=settings.scan_concurrency,
                early_stop=settings.scan_early_stop,
                token=token,
                require_postal=payload.require_postal,
            )
        return result.model_dump(mode="json")
    except Exception as exc:
        raise _http_error(exc, "api_scan_error") from exc
    finally:
        scan_registry.finish(payload.surface, token)


@app.delete("/orders/scan/{surface}")
def cancel_scan(surface: str) -> dict[str, Any]:
    return {"surface": surface, "cancelled": scan_registry.cancel(surface)}


@app.post("/bank/statements")
def upload_statement(payload: StatementUpload = Body(...)) -> dict[str, int]:
    """Ingest extracted statement text and match it against the stored order window."""
    try:
        return ingest_statement(
            office_store,
            payload.text,
            payload.filename,
            window=settings.bank_order_window,
            name_threshold=settings.name_match_threshold,
        )
    except Exception as exc:
        raise _http_error(exc, "api_statement_error") from exc


@app.get("/bank/statements")
def list_statements() -> list[dict[str, Any]]:
    state = office_store.load()
    return [statement.model_dump() for statement in state.statements]


@app.get("/bank/matches")
def list_matches() -> list[dict[str, Any]]:
    return matches_joined(office_store.load())


@app.get("/bank/unmatched")
def list_unmatched() -> list[dict[str, Any]]:
    return [tx.model_dump(mode="json") for tx in unmatched_transactions(office_store.load())]


@app.post("/bank/transactions/{transaction_id}/status")
def update_transaction_status(transaction_id: int, payload: StatusUpdate = Body(...)) -> dict[str, Any]:
    try:
        return set_transaction_status(office_store, transaction_id, payload.status).model_dump(mode="json")
    except Exception as exc:
        raise _http_error(exc, "api_transaction_status_error") from exc


@app.post("/sheets/duplicate-check")
async def duplicate_check(payload: DuplicateCheckRequest = Body(...)) -> dict[str, Any]:
    try:
        async with _sheets_client() as sheets:
            verdict = await check_duplicate(sheets, parse_sheet_id(payload.sheet), payload.code)
        return verdict.model_dump()
    except Exception as exc:
        raise _http_error(exc, "api_duplicate_check_error") from exc


@app.post("/sheets/month-tab")
async def month_tab(payload: MonthTabRequest = Body(...)) -> dict[str, Any]:
    try:
        async with _sheets_client() as sheets:
            tabs = await sheets.list_tabs(parse_sheet_id(payload.sheet))
        resolution = resolve_month_tab(tabs, payload.month, payload.year)
        return {"title": resolution.title, "method": resolution.method, "resolved": resolution.resolved}
    except Exception as exc:
        raise _http_error(exc, "api_month_tab_error") from exc


@app.post("/sheets/append-participants")
async def append_to_roster(payload: AppendParticipantsRequest = Body(...)) -> dict[str, Any]:
    """Fetch each order, project it to a participant and file it under its exam month."""
    sheet_id = parse_sheet_id(payload.sheet)
    try:
        async with _woo_client() as woo:
            participants = [build_participant(await woo.find_order(number)) for number in payload.order_numbers]
        async with _sheets_client() as sheets:
            tabs = await sheets.list_tabs(sheet_id)
            return await append_participants(
                sheets,
                sheet_id,
                tabs,
                participants,
                staff=payload.staff if payload.staff is not None else settings.staff_name,
            )
    except Exception as exc:
        raise _http_error(exc, "api_append_participants_error") from exc


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
