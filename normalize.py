"""
normalize.py - Data normalization module.

Core normalizers:
    normalize_key(raw)          -> lookup key for free-text metadata names
    coerce_value(value)         -> display string for any metadata value
    build_metadata_map(...)     -> flat normalized key -> value map per order
    normalize_text(text)        -> comparable form of a person name
    parse_amount(text)          -> float from European or plain decimals
    to_german_date(text)        -> DD.MM.YYYY

Design principles:
    - SAME normalization on BOTH sides (alias tables and order metadata)
    - Pure transformations, no external API calls
    - Invalid input degrades to neutral defaults, never raises
"""

from __future__ import annotations

import json
import math
import re
import unicodedata
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from dateutil import parser as dateparser

from logging_config import get_logger

logger = get_logger(__name__)

NON_WORD_RUN = re.compile(r"[\W_]+", re.UNICODE)

GERMAN_TRANSLITERATION: dict[str, str] = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "ß": "ss",
}

DATE_DE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
DATE_ISO = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")

# European "1.234,56" / "179,00" or plain "179.00". The lookarounds keep the
# pattern from biting into dates such as 12.03.2025.
AMOUNT_PATTERN = re.compile(
    r"(?<![\d.,])-?(?:\d{1,3}(?:\.\d{3})+|\d+),\d{2}(?![\d,])"
    r"|(?<![\d.,])-?\d+\.\d{2}(?![\d.])"
)


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(char for char in decomposed if unicodedata.category(char) != "Mn")


def normalize_key(raw: Any) -> str:
    """Fold a metadata field name into its lookup form.

    "Prüfungstermin wählen:" -> "prufungstermin wahlen"
    "_order_geburtsland"     -> "order geburtsland"
    """
    if raw is None:
        return ""
    text = _strip_marks(str(raw).lower())
    return NON_WORD_RUN.sub(" ", text).strip()


def _number_text(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


def coerce_value(value: Any) -> str:
    """Turn any metadata value into display text.

    Strings pass through, numbers print without a spurious ".0", lists join
    with ", ", `{label, value}` objects prefer the label. Everything else
    is serialized so no value is ever lost silently.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _number_text(value)
    if isinstance(value, (list, tuple)):
        parts = [coerce_value(item) for item in value]
        return ", ".join(part for part in parts if part)
    if isinstance(value, Mapping):
        if value.get("label"):
            return str(value["label"])
        if value.get("value"):
            return coerce_value(value["value"])
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def _first_present(entry: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        candidate = entry.get(name)
        if candidate is not None:
            return candidate
    return None


def _add_entries(meta: dict[str, str], entries: Any) -> None:
    if not isinstance(entries, (list, tuple)):
        return

    for entry in entries:
        if not isinstance(entry, Mapping):
            logger.debug("metadata_entry_skipped | type=%s", type(entry).__name__)
            continue

        raw_key = _first_present(entry, ("key", "name", "display_key"))
        raw_value = _first_present(entry, ("value", "display_value", "option"))
        value = coerce_value(raw_value)

        if value.strip():
            key = normalize_key(raw_key)
            if key:
                meta[key] = value
            display_key = normalize_key(entry.get("display_key"))
            if display_key:
                meta[display_key] = value

        if isinstance(raw_value, Mapping) and raw_value.get("label"):
            label_key = normalize_key(raw_value["label"])
            nested = raw_value.get("value")
            if nested is None:
                nested = raw_value.get("display_value")
            label_value = coerce_value(nested)
            if label_key and label_value.strip():
                meta[label_key] = label_value


def build_metadata_map(
    order_meta: Any,
    line_item_metas: Iterable[Any] = (),
) -> dict[str, str]:
    """Merge order-level and line-item metadata into one normalized map.

    Order entries go in first, then each line item's entries in order, so
    line-item values win when two entries fold to the same key. Empty
    values are never stored and therefore never shadow a real value.
    """
    meta: dict[str, str] = {}
    _add_entries(meta, order_meta)
    for item_meta in line_item_metas:
        _add_entries(meta, item_meta)
    return meta


def normalize_text(text: Any) -> str:
    """Comparable form of a person name: "Hans Müller" -> "hans mueller"."""
    if text is None:
        return ""
    lowered = unicodedata.normalize("NFC", str(text).lower())
    for umlaut, replacement in GERMAN_TRANSLITERATION.items():
        lowered = lowered.replace(umlaut, replacement)
    folded = _strip_marks(lowered)
    folded = re.sub(r"[^a-z0-9\s]", " ", folded)
    return re.sub(r"\s+", " ", folded).strip()


def name_case(text: Any) -> str:
    """'ANA-MARIA popescu' -> 'Ana-Maria Popescu'."""
    parts = re.split(r"([\s-]+)", str(text or "").lower())
    return "".join(
        part if re.fullmatch(r"[\s-]+", part) else part[:1].upper() + part[1:]
        for part in parts
    )


def parse_amount(text: Any) -> Optional[float]:
    """Return the first decimal amount in `text`, or None.

    "1.234,56" -> 1234.56, "179,00" -> 179.0, "179.00" -> 179.0
    """
    if text is None:
        return None
    match = AMOUNT_PATTERN.search(str(text))
    if not match:
        return None

    raw = match.group(0)
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    try:
        value = float(raw)
    except ValueError:
        logger.warning("parse_amount | parse_failed | raw=%r | fallback=None", raw)
        return None
    return value if math.isfinite(value) else None


def to_german_date(text: Any) -> str:
    """Normalize date text to DD.MM.YYYY.

    Accepts D.M.YYYY, YYYY-M-D (optionally with a time part) and anything
    dateutil understands with day-first reading. Unparseable input is
    returned stripped but otherwise unchanged.
    """
    raw = str(text or "").strip()
    if not raw:
        return ""

    match = DATE_DE.match(raw)
    if match:
        day, month, year = match.groups()
        return f"{int(day):02d}.{int(month):02d}.{year}"

    match = DATE_ISO.match(raw)
    if match:
        year, month, day = match.groups()
        return f"{int(day):02d}.{int(month):02d}.{year}"

    # A lone number would be read as "day N of the current month".
    if not re.search(r"\d+\D+\d+", raw):
        return raw

    try:
        parsed = dateparser.parse(raw, dayfirst=True)
    except (ValueError, OverflowError, TypeError) as exc:
        logger.debug(
            "to_german_date | parse_error=%s | raw=%r | fallback=raw",
            type(exc).__name__,
            raw,
        )
        return raw
    if parsed is None:
        return raw
    return parsed.strftime("%d.%m.%Y")


def month_key_from_date(text: Any) -> Optional[str]:
    """'15.03.2025' or '2025-03-15' -> '03.2025'; None when no date is recognizable."""
    german = to_german_date(text)
    match = DATE_DE.match(german)
    if not match:
        return None
    _, month, year = match.groups()
    return f"{month}.{year}"


def german_date_sort_key(text: Any) -> str:
    """Sort key that orders DD.MM.YYYY dates chronologically; other text sorts as is."""
    raw = str(text or "")
    match = DATE_DE.match(raw)
    if not match:
        return raw
    day, month, year = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"
