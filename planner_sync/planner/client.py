"""Async client for the Inventory Planner REST API."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar, Union
from urllib.parse import quote

import requests
from pydantic import ValidationError

from planner_sync import config
from planner_sync.config import PlannerCredentials
from planner_sync.utils.http import HttpStatusError, RetryingFetcher

from .models import PurchaseOrder, PurchaseOrderPage, VariantFilter, VariantPage

ALL_STATUSES = "all"

LOGGER = logging.getLogger(__name__)

PageT = TypeVar("PageT", PurchaseOrderPage, VariantPage)
ModelT = TypeVar("ModelT")


class PlannerError(RuntimeError):
    """Base class for Inventory Planner client failures."""


class PlannerResponseError(PlannerError):
    """Raised when the API answers successfully but the payload is unusable."""

    def __init__(self, message: str, *, url: Optional[str] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url
        self.body = body


@dataclass(slots=True)
class ConnectionReport:
    """Outcome of a single unretried request to the variants endpoint."""

    url: str
    ok: bool
    status_code: Optional[int] = None
    elapsed_ms: int = 0
    error: Optional[str] = None
    api_response: Optional[str] = None
    possible_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def likely_causes(status_code: Optional[int]) -> List[str]:
    """Map a failed connection check to human hints about what is misconfigured."""

    if status_code is None:
        return ["Inventory Planner host is unreachable (DNS, network or timeout)"]
    causes = []
    if status_code == 401:
        causes.append("Invalid API Key")
    if status_code == 403:
        causes.append("Invalid Account ID or insufficient permissions")
    if status_code == 404:
        causes.append("Wrong API URL or endpoint doesn't exist")
    if status_code >= 500:
        causes.append("Inventory Planner API is down or having issues")
    return causes


def _isoformat(value: Union[datetime, str]) -> str:
    return value.isoformat() if isinstance(value, datetime) else value


class InventoryPlannerClient:
    """Typed wrapper over the purchase-order and variant endpoints."""

    def __init__(
        self,
        credentials: PlannerCredentials,
        *,
        fetcher: Optional[RetryingFetcher] = None,
        retries: int = config.MAX_RETRIES,
        backoff_ms: float = config.RETRY_BACKOFF_MS,
        page_limit: int = config.PAGE_LIMIT,
    ) -> None:
        if page_limit < 1:
            raise ValueError("page_limit must be at least 1")
        self.credentials = credentials
        self.fetcher = fetcher or RetryingFetcher(credentials=credentials)
        self.retries = retries
        self.backoff_ms = backoff_ms
        self.page_limit = page_limit

    @property
    def base_url(self) -> str:
        return self.credentials.api_url.rstrip("/")

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_json(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = self.build_url(path)
        response = await self.fetcher.fetch(
            url,
            {"params": params or {}},
            retries=self.retries,
            backoff_ms=self.backoff_ms,
        )
        text = response.text
        if not text or not text.strip():
            raise PlannerResponseError("Empty response from API", url=url)
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise PlannerResponseError(f"Invalid JSON from {url}: {exc}", url=url, body=text[:200]) from exc
        if not isinstance(payload, dict):
            raise PlannerResponseError(f"Expected a JSON object from {url}", url=url, body=text[:200])
        return payload

    def _page_params(self, page: int, limit: Optional[int]) -> Dict[str, str]:
        return {"limit": str(limit or self.page_limit), "page": str(page)}

    def _parse(self, build: Callable[[Any], ModelT], payload: Any, path: str) -> ModelT:
        try:
            return build(payload)
        except ValidationError as exc:
            raise PlannerResponseError(
                f"Unexpected {path} payload: {str(exc).splitlines()[0]}",
                url=self.build_url(path),
                body=json.dumps(payload)[:200],
            ) from exc

    async def list_purchase_orders(
        self,
        page: int = 0,
        limit: Optional[int] = None,
        *,
        status: Optional[str] = None,
        updated_since: Optional[Union[datetime, str]] = None,
        sort_desc: bool = True,
    ) -> PurchaseOrderPage:
        """Fetch one page of purchase orders, newest first unless *sort_desc* is off.

        *status* filters on the upstream status (``open``, ``closed``...); ``None``
        or ``"all"`` sends no filter.
        """

        params = self._page_params(page, limit)
        if status and status != ALL_STATUSES:
            params["status"] = status
        if updated_since:
            params["updated_at_gte"] = _isoformat(updated_since)
        if sort_desc:
            params["created_at_sort"] = "desc"
        payload = await self._get_json("purchase-orders", params)
        return self._parse(PurchaseOrderPage.from_payload, payload, "purchase-orders")

    async def list_variants(
        self,
        page: int = 0,
        limit: Optional[int] = None,
        *,
        filter: Union[VariantFilter, str] = VariantFilter.ALL,
        search: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
        updated_since: Optional[Union[datetime, str]] = None,
    ) -> VariantPage:
        params = self._page_params(page, limit)
        params.update(VariantFilter(filter).query_params())
        if search:
            params["sku_match"] = search
        if fields:
            params["fields"] = ",".join(fields)
        if updated_since:
            params["updated_at_gte"] = _isoformat(updated_since)
        payload = await self._get_json("variants", params)
        return self._parse(VariantPage.from_payload, payload, "variants")

    async def _paginate(
        self,
        fetch_page: Callable[[int, int], Awaitable[PageT]],
        *,
        limit: Optional[int],
        max_pages: Optional[int],
    ) -> AsyncIterator[PageT]:
        page_size = limit or self.page_limit
        page = 0
        while max_pages is None or page < max_pages:
            LOGGER.info("Fetching page %s", page)
            result = await fetch_page(page, page_size)
            if not result.records:
                break
            yield result
            end = (page + 1) * page_size
            if end >= result.meta.total:
                LOGGER.info("Reached end: %s / %s", min(end, result.meta.total), result.meta.total)
                break
            page += 1

    def iter_purchase_orders(
        self,
        *,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        status: Optional[str] = None,
        updated_since: Optional[Union[datetime, str]] = None,
    ) -> AsyncIterator[PurchaseOrderPage]:
        async def fetch_page(page: int, page_size: int) -> PurchaseOrderPage:
            return await self.list_purchase_orders(page, page_size, status=status, updated_since=updated_since)

        return self._paginate(fetch_page, limit=limit, max_pages=max_pages)

    def iter_variants(
        self,
        *,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        filter: Union[VariantFilter, str] = VariantFilter.ALL,
        search: Optional[str] = None,
        fields: Optional[Iterable[str]] = None,
        updated_since: Optional[Union[datetime, str]] = None,
    ) -> AsyncIterator[VariantPage]:
        async def fetch_page(page: int, page_size: int) -> VariantPage:
            return await self.list_variants(
                page,
                page_size,
                filter=filter,
                search=search,
                fields=fields,
                updated_since=updated_since,
            )

        return self._paginate(fetch_page, limit=limit, max_pages=max_pages)

    async def get_purchase_order(self, po_id: Union[str, int]) -> PurchaseOrder:
        payload = await self._get_json(f"purchase-orders/{quote(str(po_id), safe='')}")
        # Single-record responses are wrapped, e.g. {"purchase-order": {...}}.
        record = payload.get("purchase-order") or payload.get("purchase_order") or payload
        return self._parse(PurchaseOrder.model_validate, record, f"purchase-orders/{po_id}")

    async def check_connection(self) -> ConnectionReport:
        """Call the API once without retries and explain any failure."""

        url = self.build_url("variants")
        started = time.perf_counter()
        try:
            response = await self.fetcher.fetch(url, {"params": {"limit": "1", "page": "0"}}, retries=1)
        except HttpStatusError as exc:
            return ConnectionReport(
                url=url,
                ok=False,
                status_code=exc.status_code,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                error=f"API returned {exc.status_code}",
                api_response=exc.body[:500],
                possible_issues=likely_causes(exc.status_code),
            )
        except requests.RequestException as exc:
            return ConnectionReport(
                url=url,
                ok=False,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                error=str(exc),
                possible_issues=likely_causes(None),
            )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.info("Connection ok: %s in %sms", response.status_code, elapsed_ms)
        return ConnectionReport(url=url, ok=True, status_code=response.status_code, elapsed_ms=elapsed_ms)
