"""
woo_client.py - Async client for the WooCommerce REST API (wc/v3).

Only the calls the office engine needs: order IDs (all pages, newest
first), a single order, lookup by customer-facing number, and the most
recent orders for the bank matcher's window.

Every non-2xx answer raises `OrderSourceError`; a 404 on a single order
raises `OrderNotFoundError` so callers can skip orders deleted mid-scan.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from config import Settings
from errors import OrderNotFoundError, OrderSourceError
from logging_config import get_logger
from models import OrderDetail, OrderSummary

logger = get_logger(__name__)

API_PREFIX = "/wp-json/wc/v3"
PAGE_SIZE = 100
SEARCH_PAGE_SIZE = 20


class WooClient:
    """Thin async wrapper around `httpx.AsyncClient` with key/secret auth."""

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth_params = {"consumer_key": consumer_key, "consumer_secret": consumer_secret}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "WooClient":
        settings.require_woo()
        return cls(
            settings.wc_base_url,
            settings.wc_consumer_key,
            settings.wc_consumer_secret,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "WooClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        query = dict(self._auth_params)
        query.update(params or {})
        try:
            response = await self._client.get(f"{API_PREFIX}{path}", params=query)
        except httpx.HTTPError as exc:
            logger.error(
                "woo_request_error | path=%s | error_type=%s | error=%s",
                path,
                type(exc).__name__,
                exc,
            )
            raise OrderSourceError(f"WooCommerce request failed: {exc}") from exc

        if response.status_code == 404:
            raise OrderNotFoundError(f"WooCommerce 404 for {path}", status_code=404)
        if response.is_error:
            logger.error("woo_http_error | path=%s | status=%s", path, response.status_code)
            raise OrderSourceError(
                f"WooCommerce API error: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json_list(response: httpx.Response) -> list[Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise OrderSourceError(f"WooCommerce returned invalid JSON: {exc}") from exc
        return payload if isinstance(payload, list) else []

    async def list_order_ids(self) -> list[int]:
        """Every order ID, newest first, across all pages.

        Any failing page aborts the listing: a partial ID list would make a
        bulk reconciliation silently incomplete.
        """
        params = {"per_page": PAGE_SIZE, "orderby": "date", "order": "desc", "page": 1}
        first = await self._get("/orders", params)
        ids = [int(item["id"]) for item in self._json_list(first) if isinstance(item, dict) and item.get("id")]

        try:
            total_pages = max(1, int(first.headers.get("X-WP-TotalPages", "1") or 1))
        except ValueError:
            total_pages = 1

        for page in range(2, total_pages + 1):
            response = await self._get("/orders", dict(params, page=page))
            ids.extend(
                int(item["id"]) for item in self._json_list(response) if isinstance(item, dict) and item.get("id")
            )

        unique = list(dict.fromkeys(ids))
        logger.info("woo_order_ids | pages=%s | ids=%s", total_pages, len(unique))
        return unique

    async def get_order(self, order_id: int | str) -> OrderDetail:
        response = await self._get(f"/orders/{order_id}")
        try:
            return OrderDetail.model_validate(response.json())
        except ValueError as exc:
            raise OrderSourceError(f"Unreadable order {order_id}: {exc}") from exc

    async def find_order(self, number: int | str) -> OrderDetail:
        """Order by customer-facing number: direct id lookup first, then search.

        Sequential-number plugins make `number` differ from the post id, so
        a 404 on the id falls back to `?search=` and prefers an exact
        number hit over the first result.
        """
        wanted = str(number).strip()
        try:
            return await self.get_order(wanted)
        except OrderNotFoundError:
            logger.debug("woo_find_order | number=%s | by_id=404 | fallback='search'", wanted)

        response = await self._get("/orders", {"per_page": SEARCH_PAGE_SIZE, "search": wanted})
        results = [item for item in self._json_list(response) if isinstance(item, dict)]
        match = next(
            (item for item in results if str(item.get("number") or item.get("id") or "") == wanted),
            results[0] if results else None,
        )
        if match is None or not match.get("id"):
            raise OrderNotFoundError(f"Order {wanted} not found", status_code=404)
        return await self.get_order(match["id"])

    async def list_recent_orders(self, limit: int = 150) -> list[OrderDetail]:
        orders: list[OrderDetail] = []
        page = 1
        while len(orders) < limit:
            per_page = min(PAGE_SIZE, limit - len(orders))
            response = await self._get(
                "/orders",
                {"per_page": per_page, "orderby": "date", "order": "desc", "page": page},
            )
            batch = [item for item in self._json_list(response) if isinstance(item, dict)]
            for item in batch:
                try:
                    orders.append(OrderDetail.model_validate(item))
                except ValueError as exc:
                    logger.warning(
                        "woo_order_skipped | id=%r | error=%s | fallback='skip'",
                        item.get("id"),
                        exc,
                    )
            if len(batch) < per_page:
                break
            page += 1
        return orders[:limit]

    def order_summary(self, order: OrderDetail) -> OrderSummary:
        return OrderSummary(
            id=order.id,
            number=order.number,
            status=order.status,
            total=order.total,
            currency=order.currency,
            created_at=order.date_created,
            customer_name=order.billing.full_name,
            email=order.billing.email,
            phone=order.billing.phone,
            payment_method=order.payment_label,
            link=f"{self.base_url}/wp-admin/post.php?post={order.id}&action=edit",
        )
