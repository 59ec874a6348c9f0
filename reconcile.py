"""
reconcile.py - Matching WooCommerce orders against a scheduled exam.

Two modes:
- bulk: list every order ID, fetch every order, keep the ones booked for
  the exam (kind + date + postal certificate delivery). An upstream failure
  aborts the whole run; a partial result would look complete.
- incremental: walk a descending ID list with a small pool of workers and
  stop early once matches have dried up. Used when the store is too large
  for a bulk fetch. A failed probe counts as a miss and the scan goes on.

Scans are cancellable per UI surface through `ScanRegistry`.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Optional, Protocol

from errors import OrderNotFoundError
from fields import CERTIFICATE_KEYS, EXAM_DATE_KEYS, detect_level, extract, order_metadata
from logging_config import get_logger
from models import OrderDetail, ReconciledOrderRow, ScanResult, ScanStatus
from normalize import name_case, to_german_date

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 6
DEFAULT_EARLY_STOP = 150

POSTAL_PATTERN = re.compile(r"post", re.IGNORECASE)


class OrderSource(Protocol):
    async def list_order_ids(self) -> list[int]: ...

    async def get_order(self, order_id: int | str) -> OrderDetail: ...


def order_row(order: OrderDetail) -> ReconciledOrderRow:
    """Project an order onto the fields compared against an exam."""
    meta = order_metadata(order)
    return ReconciledOrderRow(
        order_id=order.id,
        order_number=order.number,
        last_name=name_case(order.billing.last_name.strip()),
        first_name=name_case(order.billing.first_name.strip()),
        exam_type=detect_level(meta, order),
        exam_date=to_german_date(extract(meta, EXAM_DATE_KEYS) or ""),
        certificate=(extract(meta, CERTIFICATE_KEYS) or "").strip(),
    )


def order_matches_exam(
    row: ReconciledOrderRow,
    kind: str,
    date: str,
    require_postal: bool = True,
) -> bool:
    if not row.exam_type or row.exam_type.upper() != (kind or "").strip().upper():
        return False
    target = to_german_date(date)
    if not target or row.exam_date != target:
        return False
    if require_postal and not POSTAL_PATTERN.search(row.certificate):
        return False
    return True


async def filter_orders_by_exam(
    source: OrderSource,
    kind: str,
    date: str,
    concurrency: int = DEFAULT_CONCURRENCY,
    require_postal: bool = True,
) -> list[ReconciledOrderRow]:
    """Bulk mode: every order in the store, filtered to one exam.

    Orders deleted between listing and fetching (404) are skipped. Any other
    upstream failure propagates as `OrderSourceError`.
    """
    ids = await source.list_order_ids()
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def fetch(order_id: int) -> Optional[OrderDetail]:
        async with semaphore:
            try:
                return await source.get_order(order_id)
            except OrderNotFoundError:
                logger.warning("bulk_order_missing | id=%s | fallback='skip'", order_id)
                return None

    orders = await asyncio.gather(*(fetch(order_id) for order_id in ids))

    rows: list[ReconciledOrderRow] = []
    for order in orders:
        if order is None:
            continue
        row = order_row(order)
        if order_matches_exam(row, kind, date, require_postal=require_postal):
            rows.append(row)

    logger.info(
        "bulk_filter | kind=%s | date=%s | orders=%s | matches=%s",
        kind,
        date,
        len(ids),
        len(rows),
    )
    return rows


def split_at_cutoff(ids: Sequence[int], cutoff: Optional[int]) -> tuple[list[int], list[int]]:
    """(recent, older): IDs >= cutoff and IDs below it, each newest first.

    Without a cutoff everything is recent.
    """
    ordered = sorted(set(ids), reverse=True)
    if cutoff is None:
        return ordered, []
    recent = [order_id for order_id in ordered if order_id >= cutoff]
    older = [order_id for order_id in ordered if order_id < cutoff]
    return recent, older


class CancelToken:
    """Shared abort signal for all workers of one scan."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ScanRegistry:
    """At most one live scan per UI surface.

    Starting a scan on a surface cancels whatever was running there.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancelToken] = {}

    def start(self, surface: str) -> CancelToken:
        previous = self._tokens.get(surface)
        if previous is not None and not previous.cancelled:
            logger.info("scan_superseded | surface=%s", surface)
            previous.cancel()
        token = CancelToken()
        self._tokens[surface] = token
        return token

    def cancel(self, surface: str) -> bool:
        token = self._tokens.pop(surface, None)
        if token is None or token.cancelled:
            return False
        token.cancel()
        logger.info("scan_cancelled | surface=%s", surface)
        return True

    def finish(self, surface: str, token: CancelToken) -> None:
        if self._tokens.get(surface) is token:
            del self._tokens[surface]

    def active(self, surface: str) -> bool:
        token = self._tokens.get(surface)
        return token is not None and not token.cancelled


async def incremental_scan(
    ids: Sequence[int],
    check: Callable[[int], Awaitable[Optional[ReconciledOrderRow]]],
    concurrency: int = DEFAULT_CONCURRENCY,
    early_stop: int = DEFAULT_EARLY_STOP,
    token: Optional[CancelToken] = None,
) -> ScanResult:
    """Probe `ids` in order with `concurrency` workers sharing one cursor.

    Once a match exists, `early_stop` consecutive misses end the scan.
    Probes already in flight still finish, so up to `concurrency - 1`
    extra IDs may be examined. A cancelled scan returns STOPPED with no
    matches.
    """
    token = token or CancelToken()
    matches: list[ReconciledOrderRow] = []
    cursor = 0
    misses = 0
    examined = 0
    errors = 0
    exhausted = False

    async def worker() -> None:
        nonlocal cursor, misses, examined, errors, exhausted
        while not exhausted and not token.cancelled and cursor < len(ids):
            order_id = ids[cursor]
            cursor += 1
            examined += 1
            try:
                row = await check(order_id)
            except Exception as exc:
                errors += 1
                row = None
                logger.warning(
                    "scan_probe_error | id=%s | error_type=%s | error=%s | fallback='miss'",
                    order_id,
                    type(exc).__name__,
                    exc,
                )

            if token.cancelled:
                return
            if row is not None:
                matches.append(row)
                misses = 0
            elif matches:
                misses += 1
                if misses >= early_stop:
                    exhausted = True

    await asyncio.gather(*(worker() for _ in range(max(1, concurrency))))

    if token.cancelled:
        status = ScanStatus.STOPPED
        matches = []
    elif exhausted:
        status = ScanStatus.EARLY_STOP
    else:
        status = ScanStatus.COMPLETED

    logger.info(
        "scan_done | status=%s | ids=%s | examined=%s | matches=%s | errors=%s",
        status.value,
        len(ids),
        examined,
        len(matches),
        errors,
    )
    return ScanResult(status=status, matches=matches, examined=examined, errors=errors)


async def scan_orders_for_exam(
    source: OrderSource,
    kind: str,
    date: str,
    ids: Optional[Sequence[int]] = None,
    cutoff: Optional[int] = None,
    include_older: bool = False,
    concurrency: int = DEFAULT_CONCURRENCY,
    early_stop: int = DEFAULT_EARLY_STOP,
    token: Optional[CancelToken] = None,
    require_postal: bool = True,
) -> ScanResult:
    """Incremental search for one exam's orders.

    The recent batch (IDs >= cutoff) is always scanned; the older batch only
    with `include_older`. Both share the cancel token.
    """
    token = token or CancelToken()
    if ids is None:
        ids = await source.list_order_ids()
    recent, older = split_at_cutoff(ids, cutoff)

    async def check(order_id: int) -> Optional[ReconciledOrderRow]:
        try:
            order = await source.get_order(order_id)
        except OrderNotFoundError:
            return None
        row = order_row(order)
        return row if order_matches_exam(row, kind, date, require_postal=require_postal) else None

    result = await incremental_scan(recent, check, concurrency, early_stop, token)
    if not include_older or not older or result.status == ScanStatus.STOPPED:
        return result

    logger.info("scan_older_batch | kind=%s | date=%s | ids=%s", kind, date, len(older))
    older_result = await incremental_scan(older, check, concurrency, early_stop, token)
    if older_result.status == ScanStatus.STOPPED:
        return older_result
    return ScanResult(
        status=older_result.status,
        matches=result.matches + older_result.matches,
        examined=result.examined + older_result.examined,
        errors=result.errors + older_result.errors,
    )
