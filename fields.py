"""
fields.py - Field extraction from normalized order metadata.

Booking form plugins name the same field in many ways ("Geburtsdatum",
"birth_date", "dob", "_billing_birthdate"). Every logical field owns ONE
alias table below, listed in priority order, and every component reads
fields through `extract` with that table. Nothing else in the engine
should hard-code metadata key names.

Public API:
    extract(meta, aliases, suffix_fallback=False) -> str | None
    classify_exam_part(text) -> str
    resolve_exam_part(meta) -> str
    detect_level(meta, order) -> str
    certificate_label(raw) -> str
    build_participant(order) -> CanonicalParticipant
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from typing import Optional

from countries import resolve_country
from logging_config import get_logger
from models import CanonicalParticipant, OrderDetail
from normalize import build_metadata_map, normalize_key, to_german_date

logger = get_logger(__name__)

# -- Alias tables (priority order) --

EXAM_DATE_KEYS: list[str] = [
    "exam_date",
    "pruefungsdatum",
    "prüfungsdatum",
    "prüfungstermin",
    "termin",
    "prüfungstermin wählen",
    "prüfungs termin wählen",
    "choose exam date",
]

EXAM_KIND_KEYS: list[str] = [
    "pruefungstyp",
    "prüfungstyp",
    "exam_type",
    "exam_kind",
    "type",
    "typ",
    "teilnahmeart",
    "pruefung_art",
    "prüfungsart",
    "pruefungsart",
    "art_der_pruefung",
    "prüfung_typ",
    "exam_variant",
    "variant",
    "variante",
    "level",
    "language_level",
    "exam_level",
    "niveau",
]

EXAM_PART_KEYS: list[str] = [
    "prüfungsteil",
    "pruefungsteil",
    "exam_part",
    "exam part",
    "teilnahmeart",
    "teilnahme",
]

DOB_KEYS: list[str] = [
    "dob",
    "date_of_birth",
    "geburtsdatum",
    "geburtstag",
    "birth_date",
    "billing_dob",
    "billing_birthdate",
    "_billing_birthdate",
    "birthday",
]

NATIONALITY_KEYS: list[str] = [
    "nationality",
    "billing_nationality",
    "staatsangehoerigkeit",
    "staatsangehörigkeit",
    "nationalitaet",
    "nationalität",
]

BIRTH_PLACE_KEYS: list[str] = [
    "geburtsort",
    "ort der geburt",
    "geburts stadt",
    "birthplace",
    "birth place",
    "place_of_birth",
    "birth_place",
    "birth city",
    "city of birth",
]

BIRTH_COUNTRY_KEYS: list[str] = [
    "geburtsland",
    "geburts land",
    "birth country",
    "birth_country",
    "birthcountry",
    "country of birth",
    "country_of_birth",
    "land des geburts",
    "land des geburt",
    "land des geburtsortes",
    "birth land",
]

CERTIFICATE_KEYS: list[str] = [
    "zertifikat",
    "certificate",
    "certificate_delivery",
    "zertifikat_versand",
    "zertifikat versand",
    "lieferung_zertifikat",
    "zertifikat_abholung",
]

LEVEL_KEYS: list[str] = [
    "pruefungsniveau",
    "prüfungsniveau",
    "exam_level",
    "level",
    "niveau",
    "language_level",
    "pruefung_level",
    "prüfung_level",
]

ORAL_ONLY = "nur mündlich"
WRITTEN_ONLY = "nur schriftlich"
FULL_EXAM = "Gesamt"

LEVEL_PATTERN = re.compile(r"\b(B1|B2|C1)\b", re.IGNORECASE)


def extract(
    meta: Mapping[str, str],
    aliases: list[str],
    suffix_fallback: bool = False,
) -> Optional[str]:
    """Return the first non-blank metadata value for `aliases`, or None.

    Pass 1 looks up each alias's normalized form exactly, in priority order.
    Pass 2 (only with `suffix_fallback`) accepts prefixed keys such as
    "_order_geburtsland" for alias "geburtsland"; for each alias the map is
    scanned in insertion order and the first hit wins.
    """
    normalized_aliases = [normalize_key(alias) for alias in aliases]

    for alias in normalized_aliases:
        value = meta.get(alias)
        if value is not None and str(value).strip():
            return str(value)

    if not suffix_fallback:
        return None

    for alias in normalized_aliases:
        if not alias:
            continue
        suffixes = (" " + alias, "-" + alias, "_" + alias)
        for key, value in meta.items():
            if key == alias or key.endswith(suffixes):
                text = str(value).strip()
                if text:
                    return text
    return None


def _part_marker(text: str) -> str:
    lowered = unicodedata.normalize("NFC", text or "").lower()
    if "mündlich" in lowered or "muendlich" in lowered:
        return ORAL_ONLY
    if "schriftlich" in lowered:
        return WRITTEN_ONLY
    return ""


def classify_exam_part(text: Optional[str]) -> str:
    """'Nur Mündlich' -> 'nur mündlich', 'Schriftlich' -> 'nur schriftlich', else 'Gesamt'."""
    return _part_marker(text or "") or FULL_EXAM


def resolve_exam_part(meta: Mapping[str, str]) -> str:
    """Exam part from the part field, then the kind field, then any value."""
    for aliases in (EXAM_PART_KEYS, EXAM_KIND_KEYS):
        marker = _part_marker(extract(meta, aliases) or "")
        if marker:
            return marker

    for value in meta.values():
        lowered = unicodedata.normalize("NFC", str(value)).lower()
        if "nur mündlich" in lowered or "nur muendlich" in lowered:
            return ORAL_ONLY
        if "nur schriftlich" in lowered:
            return WRITTEN_ONLY
    return FULL_EXAM


def normalize_level(text: Optional[str]) -> str:
    match = LEVEL_PATTERN.search(text or "")
    return match.group(1).upper() if match else ""


def detect_level(meta: Mapping[str, str], order: OrderDetail) -> str:
    """Exam level (B1/B2/C1) from metadata, else from the first line item naming one."""
    level = normalize_level(extract(meta, LEVEL_KEYS))
    if level:
        return level

    for item in order.line_items:
        text = " ".join(part for part in (item.name, item.sku, item.description) if part)
        level = normalize_level(text)
        if level:
            return level
    return ""


def certificate_label(raw: Optional[str]) -> str:
    text = (raw or "").strip()
    if not text:
        return ""
    if re.search(r"post", text, re.IGNORECASE):
        return "Per Post"
    if re.search(r"abhol", text, re.IGNORECASE):
        return "Abholen im Büro"
    return text


def format_price_eur(total: str) -> str:
    """'179.00' -> '179,00 €'; unparseable totals come back unchanged."""
    raw = (total or "").strip()
    try:
        value = float(raw.replace(",", "."))
    except ValueError:
        return raw
    grouped = f"{value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"{grouped} €"


def order_metadata(order: OrderDetail) -> dict[str, str]:
    """Normalized metadata map of an order (order entries, then line items)."""
    return build_metadata_map(order.meta_data, [item.meta_data for item in order.line_items])


def build_participant(order: OrderDetail, suffix_fallback: bool = True) -> CanonicalParticipant:
    """Project an order onto the canonical participant record.

    Metadata found through an alias table wins; billing fields fill the
    gaps. Country fields resolve to ISO3 when possible and keep the raw
    text otherwise.
    """
    meta = order_metadata(order)
    billing = order.billing

    def pick(aliases: list[str]) -> str:
        return extract(meta, aliases, suffix_fallback=suffix_fallback) or ""

    dob = to_german_date(pick(DOB_KEYS) or billing.any_dob)
    birth_country_raw = pick(BIRTH_COUNTRY_KEYS)
    nationality_raw = pick(NATIONALITY_KEYS) or birth_country_raw or billing.country

    participant = CanonicalParticipant(
        order_number=order.number,
        last_name=billing.last_name.strip(),
        first_name=billing.first_name.strip(),
        dob=dob,
        birth_place=pick(BIRTH_PLACE_KEYS),
        birth_country=resolve_country(birth_country_raw),
        nationality=resolve_country(nationality_raw),
        email=billing.email.strip(),
        phone=billing.phone.strip(),
        exam_kind=pick(EXAM_KIND_KEYS),
        exam_part=resolve_exam_part(meta),
        exam_date=to_german_date(pick(EXAM_DATE_KEYS)),
        certificate_delivery=certificate_label(pick(CERTIFICATE_KEYS)),
        price=order.total,
        price_eur=format_price_eur(order.total),
        address_1=billing.address_1.strip(),
        address_2=billing.address_2.strip(),
        postcode=billing.postcode.strip(),
        city=billing.city.strip(),
        country=billing.country.strip(),
        booking_date=to_german_date(order.date_created),
        payment_method=order.payment_label,
    )
    logger.debug(
        "participant_built | order=%s | exam_kind=%r | exam_part=%r | exam_date=%r",
        participant.order_number,
        participant.exam_kind,
        participant.exam_part,
        participant.exam_date,
    )
    return participant
