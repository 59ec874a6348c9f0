"""
sheet_tabs.py - Monthly roster tabs of the participant spreadsheet.

The office keeps one tab per exam month, but tab titles were never
standardized ("03.2025", "2025.3", "März 2025", "Tabellenblatt3"). The
resolver tries increasingly loose rules and reports an unresolved month
instead of guessing when nothing fits.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Optional

from fields import FULL_EXAM
from logging_config import get_logger
from models import CanonicalParticipant, SheetTab, TabResolution
from normalize import german_date_sort_key, month_key_from_date, normalize_text

logger = get_logger(__name__)

SHEET_HEADER: list[str] = [
    "B.Nr",
    "Nachname",
    "Vorname",
    "Geb.Datum",
    "Geburtsort",
    "Geburtsland",
    "Email",
    "Tel.Nr.",
    "Prüfung",
    "Prüfungsteil",
    "Zertifikat",
    "P.Datum",
    "B.Datum",
    "Zahlung",
    "Preis",
    "Status",
    "Mitarbeiter",
]

OPEN_STATUS = "Offen"

# Tokens after normalize_text ("März" -> "maerz").
MONTH_TOKENS: dict[int, set[str]] = {
    1: {"januar", "jan", "january", "jaenner"},
    2: {"februar", "feb", "february"},
    3: {"maerz", "mrz", "mar", "march", "marz"},
    4: {"april", "apr"},
    5: {"mai", "may"},
    6: {"juni", "jun", "june"},
    7: {"juli", "jul", "july"},
    8: {"august", "aug"},
    9: {"september", "sep", "sept"},
    10: {"oktober", "okt", "oct", "october"},
    11: {"november", "nov"},
    12: {"dezember", "dez", "dec", "december"},
}


def normalize_digits_title(title: str) -> str:
    """Digits of a tab title joined by single dots: 'Feb/2025 ' -> '2025', '02-2025' -> '02.2025'."""
    only = re.sub(r"[^0-9]+", ".", title or "")
    return only.strip(".")


def _by_index(tabs: Sequence[SheetTab]) -> list[SheetTab]:
    return sorted(tabs, key=lambda tab: tab.index)


def _numeric_match(tabs: Sequence[SheetTab], month: int, year: int) -> Optional[str]:
    mm = f"{month:02d}"
    patterns = {f"{mm}.{year}", f"{month}.{year}", f"{year}.{mm}", f"{year}.{month}"}
    for tab in tabs:
        if normalize_digits_title(tab.title) in patterns:
            return tab.title
    return None


def _text_match(tabs: Sequence[SheetTab], month: int, year: int) -> Optional[str]:
    month_tokens = MONTH_TOKENS.get(month, set()) | {str(month), f"{month:02d}"}
    best_title: Optional[str] = None
    best_score = 0
    for tab in tabs:
        tokens = set(normalize_text(tab.title).split())
        score = 0
        if tokens & month_tokens:
            score = 2
            if str(year) in tokens:
                score += 1
        if score > best_score:
            best_score = score
            best_title = tab.title
    return best_title


def resolve_month_tab(tabs: Sequence[SheetTab], month: int, year: int) -> TabResolution:
    """Find the tab holding `month`/`year`. First rule that yields a tab wins:

    1. numeric title: MM.YYYY, M.YYYY, YYYY.MM or YYYY.M after digit folding
    2. position among the tabs whose title contains the year
    3. position among all tabs (tab 0 = January)
    4. text scoring: 2 for a month name or number token, +1 with the year
    """
    if not 1 <= month <= 12:
        return TabResolution()

    title = _numeric_match(tabs, month, year)
    if title is not None:
        return TabResolution(title=title, method="numeric")

    ordered = _by_index(tabs)
    year_tabs = [tab for tab in ordered if str(year) in tab.title]
    if len(year_tabs) >= month:
        return TabResolution(title=year_tabs[month - 1].title, method="year_position")

    if len(ordered) >= month:
        return TabResolution(title=ordered[month - 1].title, method="position")

    title = _text_match(ordered, month, year)
    if title is not None:
        return TabResolution(title=title, method="text")

    logger.info("month_tab_unresolved | month=%s | year=%s | tabs=%s", month, year, len(tabs))
    return TabResolution()


def resolve_month_key(tabs: Sequence[SheetTab], month_key: str) -> TabResolution:
    """Same as `resolve_month_tab` for a 'MM.YYYY' key."""
    match = re.fullmatch(r"(\d{1,2})\.(\d{4})", (month_key or "").strip())
    if not match:
        return TabResolution()
    return resolve_month_tab(tabs, int(match.group(1)), int(match.group(2)))


def participant_sheet_row(participant: CanonicalParticipant, staff: str = "") -> list[str]:
    """One roster row, aligned with SHEET_HEADER."""
    exam_part = participant.exam_part if participant.exam_part != FULL_EXAM else ""
    return [
        participant.order_number,
        participant.last_name,
        participant.first_name,
        participant.dob,
        participant.birth_place,
        participant.birth_country or participant.nationality,
        participant.email,
        participant.phone,
        participant.exam_kind,
        exam_part,
        participant.certificate_delivery,
        participant.exam_date,
        participant.booking_date,
        participant.payment_method,
        participant.price_eur,
        OPEN_STATUS,
        staff,
    ]


async def append_participants(
    sheets: Any,
    sheet_id: str,
    tabs: Sequence[SheetTab],
    participants: Sequence[CanonicalParticipant],
    staff: str = "",
) -> dict[str, Any]:
    """File participants into their exam month's tab.

    Each month group is sorted by exam date, appended row by row and closed
    with two blank rows and a fresh header. Participants without a usable
    exam date and months without a tab are reported, not appended.
    """
    groups: dict[str, list[CanonicalParticipant]] = defaultdict(list)
    undated: list[str] = []
    for participant in participants:
        key = month_key_from_date(participant.exam_date)
        if key is None:
            undated.append(participant.order_number)
            continue
        groups[key].append(participant)

    appended: dict[str, int] = {}
    unresolved: list[str] = []
    for key, group in groups.items():
        resolution = resolve_month_key(tabs, key)
        if not resolution.resolved:
            unresolved.append(key)
            continue

        ordered = sorted(group, key=lambda item: german_date_sort_key(item.exam_date))
        for participant in ordered:
            await sheets.append_row(sheet_id, resolution.title, participant_sheet_row(participant, staff))
        await sheets.append_row(sheet_id, resolution.title, [""])
        await sheets.append_row(sheet_id, resolution.title, [""])
        await sheets.append_row(sheet_id, resolution.title, list(SHEET_HEADER))

        appended[resolution.title] = len(ordered)
        logger.info(
            "roster_appended | month=%s | tab=%r | method=%s | rows=%s",
            key,
            resolution.title,
            resolution.method,
            len(ordered),
        )

    if undated or unresolved:
        logger.warning(
            "roster_append_incomplete | undated_orders=%s | unresolved_months=%s",
            undated,
            unresolved,
        )
    return {"appended": appended, "unresolved_months": unresolved, "undated_orders": undated}
