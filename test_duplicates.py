"""
test_duplicates.py - Duplicate order code checker tests

Checks for:
- column_letter
- candidate_columns (header alias / content detection)
- check_duplicate verdicts: duplicate, unique, no-col, error

Usage: python test_duplicates.py
"""

from __future__ import annotations

import asyncio
import os
import sys

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from duplicates import SAMPLE_RANGE, candidate_columns, check_duplicate, column_letter
from errors import SheetsError
from models import SheetTab


def _configure_output_symbols() -> tuple[str, str, str]:
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


PASS, FAIL, LINE = _configure_output_symbols()


class FakeSheets:
    """Serves tab grids; column ranges like 'A1:A100000' return one-cell rows."""

    def __init__(self, grids: dict[str, list[list[str]]], fail: bool = False) -> None:
        self.grids = grids
        self.fail = fail
        self.requests: list[tuple[str, str]] = []

    async def list_tabs(self, sheet_id: str) -> list[SheetTab]:
        if self.fail:
            raise SheetsError("Sheets API returned 403", status_code=403)
        return [SheetTab(title=title, index=index) for index, title in enumerate(self.grids)]

    async def get_values(self, sheet_id: str, tab: str, cells: str) -> list[list[str]]:
        self.requests.append((tab, cells))
        grid = self.grids[tab]
        if cells == SAMPLE_RANGE:
            return [list(row) for row in grid]
        letter = cells.split("1:", 1)[0]
        index = [column_letter(i) for i in range(60)].index(letter)
        return [[row[index]] if index < len(row) else [] for row in grid]


ROSTER = {
    "Vorlage": [["Notizen"], ["bitte nicht löschen"]],
    "01.2025": [
        ["B.Nr", "Nachname", "Vorname"],
        ["4711", "Meier", "Hans"],
        ["4821", "Popescu", "Ana"],
    ],
    "02.2025": [
        ["", "Kunde"],
        ["4821", "Popescu"],
        ["", "Roth"],
    ],
}


def test_column_letter() -> None:
    assert column_letter(0) == "A"
    assert column_letter(25) == "Z"
    assert column_letter(26) == "AA"
    assert column_letter(27) == "AB"
    assert column_letter(701) == "ZZ"


def test_candidate_columns_header_and_content() -> None:
    assert candidate_columns([["Bestellnummer", "Betrag"], ["12", "179"]]) == [0]
    assert candidate_columns([["Order No", "Name"]]) == [0]
    assert candidate_columns([["", "Kunde"], ["1234"], ["", "Roth"]]) == [0]
    assert candidate_columns([["Name", "Code"], ["Meier", "123"], ["Roth", "4821"]]) == []
    assert candidate_columns([["Name", "Code"], ["Meier", ""]]) == []
    assert candidate_columns([]) == []


def test_headerless_tab_counts_first_row_as_data() -> None:
    assert candidate_columns([["4821"]]) == [0]
    assert candidate_columns([["4821", "Popescu"], ["4711", "Meier"]]) == [0]
    assert candidate_columns([["4821", "Popescu"], ["47", "Meier"]]) == []

    verdict = asyncio.run(check_duplicate(FakeSheets({"03.2025": [["4821"]]}), "sheet-1", "4821"))
    assert verdict.status == "duplicate"
    assert verdict.tab == "03.2025"
    assert verdict.column == "A"
    assert verdict.row == 1


def test_duplicate_reports_first_location() -> None:
    sheets = FakeSheets(ROSTER)
    verdict = asyncio.run(check_duplicate(sheets, "sheet-1", "4821"))
    assert verdict.status == "duplicate"
    assert verdict.tab == "01.2025"
    assert verdict.column == "A"
    assert verdict.row == 3

    again = asyncio.run(check_duplicate(FakeSheets(ROSTER), "sheet-1", " 4821 "))
    assert again.model_dump() == verdict.model_dump()


def test_content_detected_column_is_searched() -> None:
    verdict = asyncio.run(check_duplicate(FakeSheets({"02.2025": ROSTER["02.2025"]}), "sheet-1", "4821"))
    assert verdict.status == "duplicate"
    assert verdict.row == 2


def test_unique_and_no_column() -> None:
    sheets = FakeSheets(ROSTER)
    verdict = asyncio.run(check_duplicate(sheets, "sheet-1", "9999"))
    assert verdict.status == "unique"
    assert verdict.tab is None
    assert ("Vorlage", SAMPLE_RANGE) in sheets.requests
    assert not any(tab == "Vorlage" and cells != SAMPLE_RANGE for tab, cells in sheets.requests)

    verdict = asyncio.run(check_duplicate(FakeSheets({"Vorlage": ROSTER["Vorlage"]}), "sheet-1", "4821"))
    assert verdict.status == "no-col"


def test_upstream_failure_is_error_verdict() -> None:
    verdict = asyncio.run(check_duplicate(FakeSheets(ROSTER, fail=True), "sheet-1", "4821"))
    assert verdict.status == "error"
    assert "403" in verdict.message


def test_invalid_code_raises() -> None:
    for code in ("482", "48210", "abcd", ""):
        try:
            asyncio.run(check_duplicate(FakeSheets(ROSTER), "sheet-1", code))
            raised = False
        except ValueError:
            raised = True
        assert raised, code


def main() -> None:
    tests = [(name, func) for name, func in globals().items() if name.startswith("test_") and callable(func)]
    passed = 0
    failed = 0

    print(LINE * 62)
    print("  Duplicate Checker Tests")
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
