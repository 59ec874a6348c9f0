"""
countries.py - Country text to ISO 3166-1 alpha-3 resolution.

Booking forms collect nationality and birth country as free text ("Rumänien",
"Romania", "RO", "ROU"). Resolution tries ISO3, ISO2, the German name and the
English name, in that order. Text that resolves to nothing is passed through
unchanged by `resolve_country`; an unknown country is never an error.
"""

from __future__ import annotations

import functools
import gettext
from typing import Optional

import pycountry

from logging_config import get_logger
from normalize import normalize_key

logger = get_logger(__name__)


def _country_names(country) -> list[str]:
    names = [getattr(country, "name", "")]
    names.append(getattr(country, "official_name", ""))
    names.append(getattr(country, "common_name", ""))
    return [name for name in names if name]


@functools.lru_cache(maxsize=1)
def _english_index() -> dict[str, str]:
    index: dict[str, str] = {}
    for country in pycountry.countries:
        for name in _country_names(country):
            index.setdefault(normalize_key(name), country.alpha_3)
    return index


@functools.lru_cache(maxsize=1)
def _german_index() -> dict[str, str]:
    try:
        translation = gettext.translation("iso3166-1", pycountry.LOCALES_DIR, languages=["de"])
    except OSError as exc:
        logger.warning(
            "country_locale_missing | language=de | error=%s | fallback='english names only'",
            exc,
        )
        return {}

    index: dict[str, str] = {}
    for country in pycountry.countries:
        for name in _country_names(country):
            german = translation.gettext(name)
            if german and german != name:
                index.setdefault(normalize_key(german), country.alpha_3)
    return index


def to_alpha3(text: Optional[str]) -> Optional[str]:
    """Return the ISO3 code for `text`, or None when it is not recognizable."""
    value = (text or "").strip()
    if not value:
        return None

    upper = value.upper()
    if len(upper) == 3 and upper.isalpha():
        country = pycountry.countries.get(alpha_3=upper)
        if country is not None:
            return country.alpha_3
    if len(upper) == 2 and upper.isalpha():
        country = pycountry.countries.get(alpha_2=upper)
        if country is not None:
            return country.alpha_3

    key = normalize_key(value)
    code = _german_index().get(key) or _english_index().get(key)
    if code is None:
        logger.debug("country_unresolved | raw=%r", value)
    return code


def resolve_country(text: Optional[str]) -> str:
    """ISO3 code when recognizable, otherwise the raw text unchanged."""
    raw = (text or "").strip()
    return to_alpha3(raw) or raw
