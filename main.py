"""
main.py - Command-line entry point for the exam office engine.

Subcommands:
    participant     canonical participant record for one order
    by-exam         orders booked for one exam (bulk or incremental scan)
    bank-match      match statement text against orders
    duplicate-check look for a 4-digit order code in the roster spreadsheet
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import pandas as pd

from bank_match import ORDER_COLUMNS, ingest_statement, match_transaction, split_transactions
from config import load_settings
from duplicates import check_duplicate
from errors import ConfigError, UpstreamError
from fields import build_participant
from logging_config import get_logger, setup_logging
from office_store import OfficeStore
from reconcile import filter_orders_by_exam, scan_orders_for_exam
from sheets_client import SheetsClient, parse_sheet_id
from woo_client import WooClient

logger = get_logger("office-cli")

REQUIRED_ORDER_COLUMNS = ["id", "number", "total", "customer_name"]


def _configure_output_symbols() -> tuple[str, str]:
    """Configure stdout encoding and return safe line/fail symbols."""
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError, OSError):
        pass

    try:
        "═✗".encode(sys.stdout.encoding or "utf-8")
        return "═", "✗"
    except (LookupError, UnicodeEncodeError):
        return "=", "X"


BOX_CHAR, FAIL_CHAR = _configure_output_symbols()


def load_orders(csv_path: str) -> pd.DataFrame:
    """Load an order export CSV as the bank matcher's order window."""
    csv_path = str(csv_path or "").strip()
    if not csv_path:
        raise ValueError("csv_path cannot be empty")

    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Orders CSV not found: {csv_path}\nProvide a valid CSV path with --orders")

    try:
        df = pd.read_csv(csv_path, encoding="utf-8-sig", dtype=str)
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            csv_path,
        )
        df = pd.read_csv(csv_path, encoding="latin-1", dtype=str)

    df.columns = [str(col).strip().lower() for col in df.columns]
    df = df.dropna(how="all").copy()
    if df.empty:
        raise ValueError(f"Orders CSV is empty: {csv_path}")

    missing = [column for column in REQUIRED_ORDER_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(
            f"Orders CSV missing required columns: {missing}\n"
            f"Required: {REQUIRED_ORDER_COLUMNS}\n"
            f"Found: {list(df.columns)}"
        )
    if "created_at" not in df.columns:
        df["created_at"] = ""

    ids = pd.to_numeric(df["id"], errors="coerce")
    invalid_ids = int(ids.isna().sum())
    if invalid_ids:
        logger.warning("csv_id_warning | invalid_id_rows=%s | fallback='drop rows'", invalid_ids)
    df = df[ids.notna()].copy()
    df["id"] = ids[ids.notna()].astype(int)

    # "179,00 €" and "179.00" both become 179.0.
    total = df["total"].fillna("").astype(str).str.replace("€", "", regex=False).str.strip()
    european = total.str.contains(",", regex=False)
    total = total.where(~european, total.str.replace(".", "", regex=False).str.replace(",", ".", regex=False))
    df["total"] = pd.to_numeric(total, errors="coerce")

    df["number"] = df["number"].fillna("").astype(str).str.strip()
    df["number"] = df["number"].where(df["number"] != "", df["id"].astype(str))
    df["customer_name"] = df["customer_name"].fillna("").astype(str).str.strip()
    df["created_at"] = df["created_at"].fillna("").astype(str)

    logger.info("csv_loaded | path=%s | rows=%s", csv_path, len(df))
    return df[ORDER_COLUMNS]


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _participant(number: str) -> dict:
    settings = load_settings()
    async with WooClient.from_settings(settings) as woo:
        order = await woo.find_order(number)
    return build_participant(order).model_dump()


async def _by_exam(args: argparse.Namespace) -> list[dict]:
    settings = load_settings()
    async with WooClient.from_settings(settings) as woo:
        if not args.scan:
            rows = await filter_orders_by_exam(woo, args.kind, args.date, concurrency=settings.scan_concurrency)
            return [row.model_dump() for row in rows]

        result = await scan_orders_for_exam(
            woo,
            args.kind,
            args.date,
            cutoff=args.cutoff,
            include_older=args.include_older,
            concurrency=settings.scan_concurrency,
            early_stop=settings.scan_early_stop,
        )
        print(f"Scan {result.status.value}: examined {result.examined} order(s), {result.errors} error(s)")
        return [row.model_dump() for row in result.matches]


async def _duplicate_check(sheet: str, code: str) -> dict:
    settings = load_settings()
    async with SheetsClient.from_settings(settings) as sheets:
        verdict = await check_duplicate(sheets, parse_sheet_id(sheet), code)
    return verdict.model_dump()


def _bank_match(statement_path: str, orders_csv: str | None) -> None:
    text = Path(statement_path).read_text(encoding="utf-8")
    settings = load_settings()

    if not orders_csv:
        store = OfficeStore(settings.state_file)
        summary = ingest_statement(
            store,
            text,
            Path(statement_path).name,
            window=settings.bank_order_window,
            name_threshold=settings.name_match_threshold,
        )
        _print_json(summary)
        return

    orders_df = load_orders(orders_csv)
    transactions = split_transactions(text)
    print(f"\n{BOX_CHAR * 60}")
    print(f"  {len(transactions)} transaction(s) against {len(orders_df)} order(s)")
    print(f"{BOX_CHAR * 60}")
    for index, tx in enumerate(transactions, start=1):
        candidates = match_transaction(tx, orders_df, settings.name_match_threshold, transaction_id=index)
        amount = f"{tx.amount:.2f}" if tx.amount is not None else "?"
        print(f"\n  #{index} {tx.date or '?'}  {amount:>10}  {tx.sender_name or '-'}")
        if not candidates:
            print(f"     {FAIL_CHAR} no candidate")
        for candidate in sorted(candidates, key=lambda item: item.confidence):
            print(f"     [{candidate.confidence}] order {candidate.order_id}  {candidate.reason}")
    print()


def main() -> None:
    """CLI entry point for the exam office engine."""
    parser = argparse.ArgumentParser(
        prog="exam-office",
        description="Exam office reconciliation: orders, exams, bank statements and rosters.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s participant 4821\n"
            "  %(prog)s by-exam --kind B1 --date 15.03.2025 --scan\n"
            "  %(prog)s bank-match --statement kontoauszug.txt --orders orders.csv\n"
            "  %(prog)s duplicate-check --sheet <url> --code 4821\n"
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (DEBUG-level) logging")
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON lines (for production/log aggregation)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    participant = commands.add_parser("participant", help="Show the participant record of an order")
    participant.add_argument("number", help="Order number as shown to the customer")

    by_exam = commands.add_parser("by-exam", help="List orders booked for one exam")
    by_exam.add_argument("--kind", required=True, help="Exam kind, e.g. B1")
    by_exam.add_argument("--date", required=True, help="Exam date (DD.MM.YYYY or YYYY-MM-DD)")
    by_exam.add_argument("--scan", action="store_true", help="Incremental scan with early stop instead of bulk")
    by_exam.add_argument("--cutoff", type=int, help="Order IDs below this belong to the older batch")
    by_exam.add_argument("--include-older", action="store_true", help="Also scan the older batch")

    bank = commands.add_parser("bank-match", help="Match statement text against orders")
    bank.add_argument("--statement", "-s", required=True, help="Extracted statement text file")
    bank.add_argument(
        "--orders",
        "-o",
        help="Orders CSV (id, number, total, customer_name). Without it the statement is stored and matched "
        "against the synced order window.",
    )

    duplicate = commands.add_parser("duplicate-check", help="Search the roster for a 4-digit order code")
    duplicate.add_argument("--sheet", required=True, help="Spreadsheet URL or id")
    duplicate.add_argument("--code", required=True, help="4-digit order code")

    args = parser.parse_args()
    setup_logging(
        level=logging.DEBUG if args.verbose else None,
        json_format=args.log_json,
    )
    logger.info("cli_mode | command=%s", args.command)

    try:
        if args.command == "participant":
            _print_json(asyncio.run(_participant(args.number)))
        elif args.command == "by-exam":
            _print_json(asyncio.run(_by_exam(args)))
        elif args.command == "bank-match":
            _bank_match(args.statement, args.orders)
        elif args.command == "duplicate-check":
            _print_json(asyncio.run(_duplicate_check(args.sheet, args.code)))
    except (FileNotFoundError, ValueError, ConfigError) as exc:
        logger.error("cli_error | type=%s | error=%s", type(exc).__name__, exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except UpstreamError as exc:
        logger.error("cli_error | type=%s | status=%s | error=%s", type(exc).__name__, exc.status_code, exc)
        print(f"\n{FAIL_CHAR} Upstream failure: {exc}")
        raise SystemExit(2) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
    except Exception as exc:
        logger.error(
            "cli_error | type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        print(f"\nUnexpected error: {exc}")
        print("Run with --verbose for full traceback.")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
