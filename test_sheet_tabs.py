"""
test_sheet_tabs.py - Month tab resolution and roster append tests

Checks for:
- normalize_digits_title
- resolve_month_tab (numeric, year position, position, text, unresolved)
- participant_sheet_row layout
- append_participants grouping, ordering and trailer rows

Usage: python test_sheet_tabs.py
"""

from __future__ import annotations

import asyncio
import os
import sys

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import CanonicalParticipant, SheetTab
from sheet_tabs import (
    OPEN_STATUS,
    SHEET_HEADER,
    append_participants,
    normalize_digits_title,
    participant_sheet_row,
    resolve_month_key,
    resolve_month_tab,
)


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


def _tabs(*titles: str) -> list[SheetTab]:
    return [SheetTab(title=title, gid=str(100 + index), index=index) for index, title in enumerate(titles)]


class FakeSheets:
    """Records append_row calls in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, list[str]]] = []

    async def append_row(self, sheet_id: str, tab: str, row: list[str]) -> None:
        self.calls.append((sheet_id, tab, row))


def test_normalize_digits_title() -> None:
    assert normalize_digits_title("02-2025") == "02.2025"
    assert normalize_digits_title(" 2025 / 3 ") == "2025.3"
    assert normalize_digits_title("Feb 2025") == "2025"
    assert normalize_digits_title("Vorlage") == ""


def test_numeric_titles_win() -> None:
    tabs = _tabs("Vorlage", "02-2025", "2025.3", "April 2025")
    assert resolve_month_tab(tabs, 2, 2025).title == "02-2025"
    resolution = resolve_month_tab(tabs, 3, 2025)
    assert resolution.title == "2025.3"
    assert resolution.method == "numeric"


def test_position_among_year_tabs() -> None:
    tabs = _tabs("Übersicht", "Jan 2025", "Feb 2025", "Mär 2025")
    resolution = resolve_month_tab(tabs, 2, 2025)
    assert resolution.title == "Feb 2025"
    assert resolution.method == "year_position"


def test_position_among_all_tabs() -> None:
    tabs = list(reversed(_tabs("Januar", "Februar", "März")))
    resolution = resolve_month_tab(tabs, 3, 2025)
    assert resolution.title == "März"
    assert resolution.method == "position"


def test_text_scoring_fallback() -> None:
    resolution = resolve_month_tab(_tabs("Vorlage", "März 2026"), 3, 2026)
    assert resolution.title == "März 2026"
    assert resolution.method == "text"


def test_unresolved_months() -> None:
    resolution = resolve_month_tab(_tabs("Vorlage"), 5, 2025)
    assert resolution.title is None
    assert not resolution.resolved
    assert not resolve_month_tab(_tabs("Vorlage"), 13, 2025).resolved
    assert not resolve_month_key(_tabs("05.2025"), "Mai").resolved
    assert resolve_month_key(_tabs("05.2025"), "05.2025").title == "05.2025"


def test_participant_sheet_row_layout() -> None:
    participant = CanonicalParticipant(
        order_number="4821",
        last_name="Popescu",
        first_name="Ana",
        nationality="ROU",
        exam_kind="B1",
        exam_part="nur mündlich",
        exam_date="15.03.2025",
        price_eur="179,00 €",
    )
    row = participant_sheet_row(participant, staff="Büro")
    assert len(row) == len(SHEET_HEADER)
    record = dict(zip(SHEET_HEADER, row))
    assert record["B.Nr"] == "4821"
    assert record["Geburtsland"] == "ROU"
    assert record["Prüfungsteil"] == "nur mündlich"
    assert record["Preis"] == "179,00 €"
    assert record["Status"] == OPEN_STATUS
    assert record["Mitarbeiter"] == "Büro"

    full = participant_sheet_row(CanonicalParticipant(order_number="1"))
    assert dict(zip(SHEET_HEADER, full))["Prüfungsteil"] == ""


def test_append_participants_groups_by_month() -> None:
    sheets = FakeSheets()
    participants = [
        CanonicalParticipant(order_number="A", exam_date="20.03.2025"),
        CanonicalParticipant(order_number="B", exam_date="01.03.2025"),
        CanonicalParticipant(order_number="C", exam_date="10.04.2025"),
        CanonicalParticipant(order_number="D", exam_date=""),
        CanonicalParticipant(order_number="E", exam_date="05.05.2025"),
    ]
    summary = asyncio.run(
        append_participants(sheets, "sheet-1", _tabs("03.2025", "04.2025"), participants, staff="Büro")
    )

    assert summary["appended"] == {"03.2025": 2, "04.2025": 1}
    assert summary["unresolved_months"] == ["05.2025"]
    assert summary["undated_orders"] == ["D"]

    march = [row for _, tab, row in sheets.calls if tab == "03.2025"]
    assert [row[0] for row in march[:2]] == ["B", "A"]
    assert march[2] == [""]
    assert march[3] == [""]
    assert march[4] == SHEET_HEADER
    assert len(march) == 5

    april = [row for _, tab, row in sheets.calls if tab == "04.2025"]
    assert april[0][0] == "C"
    assert april[0][-1] == "Büro"
    assert all(sheet_id == "sheet-1" for sheet_id, _, _ in sheets.calls)


def main() -> None:
    tests = [(name, func) for name, func in globals().items() if name.startswith("test_") and callable(func)]
    passed = 0
    failed = 0

    print(LINE * 62)
    print("  Month Tab Resolution Tests")
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
