"""Billing calculation modules."""

from compliance_billing.calculators.billing_engine import (
    build_quote_items,
    compute_balance,
    compute_totals,
    quantize_money,
    split_gst,
)
from compliance_billing.calculators.types import (
    COMPUTED,
    BillingTotals,
    Computed,
    DiscountTerms,
    DiscountType,
    GstSplit,
    LineItem,
    Provided,
    TotalsOverrides,
)

__all__ = [
    "COMPUTED",
    "BillingTotals",
    "Computed",
    "DiscountTerms",
    "DiscountType",
    "GstSplit",
    "LineItem",
    "Provided",
    "TotalsOverrides",
    "build_quote_items",
    "compute_balance",
    "compute_totals",
    "quantize_money",
    "split_gst",
]
