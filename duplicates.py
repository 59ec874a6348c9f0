"""
duplicates.py - Is a 4-digit order code already filed in the roster spreadsheet?

Historical roster tabs do not share headers, so order-number columns are
found two ways: by a header that looks like an order number, or by content
(every filled sample cell is exactly four digits). Only those columns are
then read in full.
"""

from __future__ import annotations

import re
from typing import Any

import pandas as pd

from errors import SheetsError
from logging_config import get_logger
from models import DuplicateVerdict
from normalize import normalize_text

logger = get_logger(__name__)

ORDER_NUMBER_HEADER_MARKERS = ("bestell", "order", "b nr", "bnr")
CODE_PATTERN = re.compile(r"^\d{4}$")

SAMPLE_RANGE = "A1:ZZ200"
MAX_COLUMN_ROWS = 100000


def column_letter(index: int) -> str:
    """0 -> 'A', 25 -> 'Z', 26 -> 'AA'."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def _is_header_alias(cell: str) -> bool:
    header = normalize_text(cell)
    return bool(header) and any(marker in header for marker in ORDER_NUMBER_HEADER_MARKERS)


def candidate_columns(values: list[list[str]]) -> list[int]:
    """Column indexes that plausibly hold order numbers, left to right.

    Row 0 is read as a header unless its cell is itself a four-digit code,
    in which case it counts as data. A column qualifies when its header
    looks like an order number, or when it has at least one filled data
    cell and every filled one is exactly four digits.
    """
    if not values:
        return []

    width = max(len(row) for row in values)
    if width == 0:
        return []
    frame = pd.DataFrame([list(row) + [""] * (width - len(row)) for row in values]).fillna("")
    frame = frame.astype(str).apply(lambda column: column.str.strip())

    header = frame.iloc[0]
    body = frame.iloc[1:]

    columns: list[int] = []
    for index in range(width):
        if _is_header_alias(header[index]):
            columns.append(index)
            continue
        cells = body[index]
        if CODE_PATTERN.match(header[index]):
            cells = frame[index]
        filled = cells[cells != ""]
        if not filled.empty and filled.str.fullmatch(r"\d{4}").all():
            columns.append(index)
    return columns


async def check_duplicate(sheets: Any, sheet_id: str, code: str) -> DuplicateVerdict:
    """Search every tab (in tab order) for `code`; the first hit wins.

    Raises ValueError when `code` is not exactly four digits. Upstream
    failures come back as an "error" verdict.
    """
    wanted = (code or "").strip()
    if not CODE_PATTERN.match(wanted):
        raise ValueError(f"Order code must be exactly 4 digits, got {code!r}")

    try:
        tabs = await sheets.list_tabs(sheet_id)
        any_column = False
        for tab in tabs:
            sample = await sheets.get_values(sheet_id, tab.title, SAMPLE_RANGE)
            columns = candidate_columns(sample)
            if not columns:
                logger.debug("duplicate_check_tab_skipped | tab=%r | reason='no order column'", tab.title)
                continue
            any_column = True

            for index in columns:
                letter = column_letter(index)
                cells = await sheets.get_values(sheet_id, tab.title, f"{letter}1:{letter}{MAX_COLUMN_ROWS}")
                for row_number, row in enumerate(cells, start=1):
                    if row and row[0].strip() == wanted:
                        logger.info(
                            "duplicate_found | code=%s | tab=%r | column=%s | row=%s",
                            wanted,
                            tab.title,
                            letter,
                            row_number,
                        )
                        return DuplicateVerdict(
                            status="duplicate",
                            code=wanted,
                            tab=tab.title,
                            column=letter,
                            row=row_number,
                        )
    except SheetsError as exc:
        logger.error("duplicate_check_error | code=%s | error=%s", wanted, exc)
        return DuplicateVerdict(status="error", code=wanted, message=str(exc))

    if not any_column:
        return DuplicateVerdict(
            status="no-col",
            code=wanted,
            message="No order-number column found in any tab",
        )
    return DuplicateVerdict(status="unique", code=wanted)
