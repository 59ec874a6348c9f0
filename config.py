"""
config.py - Runtime settings loaded from the environment.

Values come from process environment variables, optionally seeded from a
local `.env` file. Nothing here talks to the network; clients validate the
settings they need when they are constructed.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import ConfigError
from logging_config import get_logger

logger = get_logger(__name__)

try:
    load_dotenv()
except UnicodeDecodeError:
    # Fallback for legacy Windows-encoded .env files.
    load_dotenv(encoding="cp1252")

# -- Defaults --

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_SCAN_CONCURRENCY = 6
DEFAULT_SCAN_EARLY_STOP = 150
DEFAULT_NAME_MATCH_THRESHOLD = 0.85
DEFAULT_BANK_ORDER_WINDOW = 150
DEFAULT_STATE_FILE = "data/office_state.json"


class Settings(BaseModel):
    """Snapshot of every tunable the office engine reads."""

    model_config = ConfigDict(extra="ignore")

    wc_base_url: str = ""
    wc_consumer_key: str = ""
    wc_consumer_secret: str = ""
    google_sa_email: str = ""
    google_sa_private_key: str = ""
    state_file: str = DEFAULT_STATE_FILE
    http_timeout_seconds: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)
    scan_concurrency: int = Field(default=DEFAULT_SCAN_CONCURRENCY, ge=1)
    scan_early_stop: int = Field(default=DEFAULT_SCAN_EARLY_STOP, ge=1)
    name_match_threshold: float = Field(default=DEFAULT_NAME_MATCH_THRESHOLD, gt=0, le=1)
    bank_order_window: int = Field(default=DEFAULT_BANK_ORDER_WINDOW, ge=1)
    staff_name: str = ""

    @field_validator("wc_base_url", mode="before")
    @classmethod
    def _strip_base_url(cls, value: Any) -> str:
        return str(value or "").strip().rstrip("/")

    @field_validator("google_sa_private_key", mode="before")
    @classmethod
    def _unescape_private_key(cls, value: Any) -> str:
        # Keys pasted into .env files usually carry literal "\n" sequences.
        return str(value or "").replace("\\n", "\n")

    @property
    def woo_configured(self) -> bool:
        return bool(self.wc_base_url and self.wc_consumer_key and self.wc_consumer_secret)

    @property
    def sheets_configured(self) -> bool:
        return bool(self.google_sa_email and self.google_sa_private_key)

    def require_woo(self) -> None:
        if not self.woo_configured:
            raise ConfigError(
                "WooCommerce not configured. Set WC_BASE_URL, WC_CONSUMER_KEY "
                "and WC_CONSUMER_SECRET."
            )

    def require_sheets(self) -> None:
        if not self.sheets_configured:
            raise ConfigError(
                "Google service account not configured. Set GOOGLE_SA_EMAIL "
                "and GOOGLE_SA_PRIVATE_KEY."
            )


_ENV_FIELDS: dict[str, str] = {
    "wc_base_url": "WC_BASE_URL",
    "wc_consumer_key": "WC_CONSUMER_KEY",
    "wc_consumer_secret": "WC_CONSUMER_SECRET",
    "google_sa_email": "GOOGLE_SA_EMAIL",
    "google_sa_private_key": "GOOGLE_SA_PRIVATE_KEY",
    "state_file": "OFFICE_STATE_FILE",
    "http_timeout_seconds": "HTTP_TIMEOUT_SECONDS",
    "scan_concurrency": "SCAN_CONCURRENCY",
    "scan_early_stop": "SCAN_EARLY_STOP",
    "name_match_threshold": "NAME_MATCH_THRESHOLD",
    "bank_order_window": "BANK_ORDER_WINDOW",
    "staff_name": "OFFICE_STAFF_NAME",
}


def load_settings(environ: Optional[dict[str, str]] = None) -> Settings:
    """Build `Settings` from environment variables.

    Unset or blank variables keep their defaults. Invalid numeric values
    raise `ConfigError` so a typo in `.env` fails loudly at startup.
    """
    source = os.environ if environ is None else environ
    raw: dict[str, Any] = {}
    for field_name, env_name in _ENV_FIELDS.items():
        value = source.get(env_name)
        if value is not None and str(value).strip():
            raw[field_name] = value

    try:
        settings = Settings.model_validate(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc

    logger.debug(
        "settings_loaded | woo_configured=%s | sheets_configured=%s | state_file=%s",
        settings.woo_configured,
        settings.sheets_configured,
        settings.state_file,
    )
    return settings
