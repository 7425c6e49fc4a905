"""Inventory Planner API helpers."""

from .client import ConnectionReport, InventoryPlannerClient, PlannerError, PlannerResponseError
from .models import (
    PageMeta,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderPage,
    SyncSummary,
    Variant,
    VariantFilter,
    VariantPage,
)

__all__ = [
    "ConnectionReport",
    "InventoryPlannerClient",
    "PageMeta",
    "PlannerError",
    "PlannerResponseError",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderPage",
    "SyncSummary",
    "Variant",
    "VariantFilter",
    "VariantPage",
]
