"""
errors.py - Typed failures raised at the collaborator boundaries.

Only upstream I/O and configuration problems are errors. Ambiguous or
missing order data never raises; the extractors fall back to empty or raw
values instead.
"""

from __future__ import annotations

from typing import Optional


class ConfigError(RuntimeError):
    """Required settings (credentials, base URLs) are missing or invalid."""


class UpstreamError(RuntimeError):
    """An external system was unreachable or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OrderSourceError(UpstreamError):
    """The WooCommerce order source failed."""


class OrderNotFoundError(OrderSourceError):
    """The order source answered 404 for one order."""


class SheetsError(UpstreamError):
    """The Google Sheets API failed."""
