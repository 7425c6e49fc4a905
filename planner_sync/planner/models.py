"""Pydantic models for Inventory Planner payloads and sync reports."""

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

LOW_STOCK_DAYS = 30


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _coerce_id(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)) if float(value).is_integer() else str(value)
    return value


class VariantFilter(str, Enum):
    """Named stock filters understood by the variants endpoint."""

    ALL = "all"
    LOW_STOCK = "low-stock"
    REORDER = "reorder"
    OUT_OF_STOCK = "out-of-stock"
    NEGATIVE = "negative"

    def query_params(self) -> Dict[str, str]:
        return dict(_FILTER_PARAMS[self])


_FILTER_PARAMS: Dict[VariantFilter, Dict[str, str]] = {
    VariantFilter.ALL: {},
    VariantFilter.LOW_STOCK: {"oos_lte": str(LOW_STOCK_DAYS)},
    VariantFilter.REORDER: {"replenishment_gt": "0"},
    VariantFilter.OUT_OF_STOCK: {"in_stock_lte": "0"},
    VariantFilter.NEGATIVE: {"in_stock_lt": "0"},
}


class PageMeta(BaseModel):
    """Pagination block returned with every list response."""

    total: int = 0
    count: int = 0
    limit: int = 0
    page: int = 0

    model_config = {"extra": "ignore"}

    @field_validator("total", "count", "limit", "page", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class PurchaseOrderItem(BaseModel):
    """A single line on a purchase order."""

    id: Optional[str] = None
    sku: str = ""
    title: Optional[str] = None
    replenishment: float = 0
    received: float = 0
    cost_price: float = 0
    ordered_cost: Optional[float] = None

    model_config = {"extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def _apply_fallbacks(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["id"] = _first_present(data, "id", "line_id")
        data["title"] = _first_present(data, "title", "title_original")
        data["replenishment"] = _first_present(data, "replenishment", "remaining") or 0
        data["cost_price"] = _first_present(data, "cost_price", "landing_cost_price") or 0
        data["received"] = data.get("received") or 0
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, value: Any) -> str:
        return (value or "").strip()


class PurchaseOrder(BaseModel):
    """Purchase order as exposed by the planner API."""

    id: str
    reference: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    status: str = "unknown"
    created_at: Optional[str] = None
    expected_date: Optional[str] = None
    updated_at: Optional[str] = None
    currency: str = "USD"
    total_value: float = 0
    items: List[PurchaseOrderItem] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def _apply_fallbacks(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["vendor_name"] = _first_present(
            data,
            "vendor_name",
            "vendor_display_name",
            "warehouse_display_name",
            "source_display_name",
            "vendor",
        )
        data["created_at"] = _first_present(data, "created_at", "created_date")
        data["total_value"] = _first_present(data, "total_value", "total") or 0
        data["status"] = data.get("status") or "unknown"
        data["currency"] = data.get("currency") or "USD"
        data["items"] = data.get("items") or []
        return data

    @field_validator("id", "vendor_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Any:
        return _coerce_id(value)

    @property
    def line_count(self) -> int:
        return len(self.items)


class VariantWarehouse(BaseModel):
    in_stock: float = 0
    replenishment: float = 0

    model_config = {"extra": "ignore"}


class Variant(BaseModel):
    """Product variant with stock and replenishment figures."""

    id: str
    sku: str = ""
    title: Optional[str] = None
    vendor_id: Optional[str] = None
    cost_price: Optional[float] = None
    replenishment: Optional[float] = None
    in_stock: Optional[float] = None
    oos: Optional[float] = None  # days of stock left
    lead_time: Optional[float] = None
    review_period: Optional[float] = None
    safety_stock: Optional[float] = None
    price: Optional[float] = None
    barcode: Optional[str] = None
    last_updated: Optional[str] = None
    warehouse: List[VariantWarehouse] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def _apply_fallbacks(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["vendor_id"] = _first_present(data, "vendor_id", "vendor")
        return data

    @field_validator("barcode", mode="before")
    @classmethod
    def _barcode_as_text(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("id", "vendor_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, value: Any) -> str:
        return (value or "").strip()

    @field_validator("warehouse", mode="before")
    @classmethod
    def _null_warehouse(cls, value: Any) -> Any:
        return value or []

    @property
    def total_in_stock(self) -> float:
        if self.warehouse:
            return sum(entry.in_stock for entry in self.warehouse)
        return self.in_stock or 0

    @property
    def has_stock_figure(self) -> bool:
        return self.in_stock is not None or bool(self.warehouse)


class VariantStats(BaseModel):
    """Stock figures for one page of variants."""

    total_items: int = 0
    total_stock: float = 0
    avg_days_of_stock: int = 0
    low_stock_items: int = 0
    out_of_stock_items: int = 0
    reorder_needed: float = 0


def variant_stats(variants: List[Variant], *, total: int = 0) -> VariantStats:
    """Summarise stock, cover and reorder quantities across *variants*.

    *total* is the upstream record count; it falls back to ``len(variants)``.
    """

    if not variants:
        return VariantStats(total_items=total)
    days = sum(variant.oos or 0 for variant in variants)
    return VariantStats(
        total_items=total or len(variants),
        total_stock=sum(variant.total_in_stock for variant in variants),
        avg_days_of_stock=math.floor(days / len(variants) + 0.5),
        low_stock_items=sum(1 for variant in variants if variant.oos is not None and variant.oos <= LOW_STOCK_DAYS),
        out_of_stock_items=sum(
            1 for variant in variants if variant.has_stock_figure and variant.total_in_stock <= 0
        ),
        reorder_needed=sum(variant.replenishment or 0 for variant in variants),
    )


class PurchaseOrderPage(BaseModel):
    meta: PageMeta = Field(default_factory=PageMeta)
    records: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PurchaseOrderPage":
        return cls(meta=payload.get("meta") or {}, records=payload.get("purchase-orders") or [])


class VariantPage(BaseModel):
    meta: PageMeta = Field(default_factory=PageMeta)
    records: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VariantPage":
        return cls(meta=payload.get("meta") or {}, records=payload.get("variants") or [])

    def variants(self) -> List[Variant]:
        parsed: List[Variant] = []
        for record in self.records:
            try:
                parsed.append(Variant.model_validate(record))
            except ValidationError as exc:
                LOGGER.warning("Skipping variant %s: %s", record.get("id"), str(exc).splitlines()[0])
        return parsed

    def stats(self) -> VariantStats:
        return variant_stats(self.variants(), total=self.meta.total)


class SyncStatus(str, Enum):
    """Outcome of one sync run."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"


class SyncRecordError(BaseModel):
    record_id: Optional[str] = None
    error: str


class SyncSummary(BaseModel):
    """Summary written next to the records pulled by a sync run."""

    resource: str
    status: SyncStatus = SyncStatus.SUCCESS
    count: int = 0
    pages: int = 0
    since: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    # start time of the newest run that succeeded, carried across failed runs
    last_success_at: Optional[datetime] = None
    errors: List[SyncRecordError] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = {"use_enum_values": True}
