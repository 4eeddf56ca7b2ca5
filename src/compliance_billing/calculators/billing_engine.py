"""Pure billing math: subtotal, discount, tax, total and GST split.

Nothing in this module touches the database or any clock. All monetary
outputs are quantized to paise with ROUND_HALF_UP.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from compliance_billing.calculators.types import (
    BillingTotals,
    DiscountTerms,
    DiscountType,
    GstSplit,
    LineItem,
    Override,
    Provided,
    TotalsOverrides,
)
from compliance_billing.errors import ValidationError

CENT = Decimal("0.01")
DEFAULT_TAX_RATE = Decimal("18")
MAX_TAX_RATE = Decimal("28")
HUNDRED = Decimal("100")


def quantize_money(amount: Decimal) -> Decimal:
    """Round an amount to paise."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _resolve(override: Override, computed: Decimal) -> Decimal:
    if isinstance(override, Provided):
        return Decimal(override.value)
    return computed


def validate_items(items: Sequence[LineItem]) -> None:
    """Reject negative quantities or rates and out-of-range tax rates."""
    for index, item in enumerate(items):
        if item.quantity < 0:
            raise ValidationError(f"item {index}: quantity cannot be negative", "quantity")
        if item.rate < 0:
            raise ValidationError(f"item {index}: rate cannot be negative", "rate")
        if item.tax_rate is not None and not (0 <= item.tax_rate <= MAX_TAX_RATE):
            raise ValidationError(
                f"item {index}: tax rate must be between 0 and {MAX_TAX_RATE}",
                "tax_rate",
            )


def validate_discount(discount: DiscountTerms) -> None:
    if discount.value < 0:
        raise ValidationError("discount value cannot be negative", "discount_value")
    if discount.discount_type == DiscountType.PERCENTAGE and discount.value > HUNDRED:
        raise ValidationError("percentage discount cannot exceed 100", "discount_value")


def compute_subtotal(items: Sequence[LineItem]) -> Decimal:
    return sum((item.effective_amount for item in items), Decimal("0"))


def compute_discount(subtotal: Decimal, discount: DiscountTerms) -> Decimal:
    if discount.discount_type == DiscountType.PERCENTAGE:
        return subtotal * discount.value / HUNDRED
    return Decimal(discount.value)


def compute_tax(
    items: Sequence[LineItem],
    default_rate: Decimal = DEFAULT_TAX_RATE,
) -> Decimal:
    """Sum tax over taxable items.

    Tax is charged on each item's own amount, before any document-level
    discount.
    """
    tax = Decimal("0")
    for item in items:
        if not item.taxable:
            continue
        rate = item.tax_rate if item.tax_rate is not None else default_rate
        tax += item.effective_amount * rate / HUNDRED
    return tax


def compute_totals(
    items: Sequence[LineItem],
    discount: DiscountTerms | None = None,
    overrides: TotalsOverrides | None = None,
    default_rate: Decimal = DEFAULT_TAX_RATE,
) -> BillingTotals:
    """Derive subtotal, discount, tax and total for a set of line items.

    Provided overrides take precedence over the computed value for their
    field. The discount is always computed from the resolved subtotal and a
    negative discounted subtotal is not clamped.
    """
    discount = discount or DiscountTerms.none()
    overrides = overrides or TotalsOverrides()

    validate_items(items)
    validate_discount(discount)

    subtotal = quantize_money(_resolve(overrides.subtotal, compute_subtotal(items)))
    discount_amount = quantize_money(compute_discount(subtotal, discount))
    tax_amount = quantize_money(
        _resolve(overrides.tax_amount, compute_tax(items, default_rate))
    )
    total_amount = quantize_money(
        _resolve(overrides.total_amount, subtotal - discount_amount + tax_amount)
    )

    return BillingTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total_amount=total_amount,
    )


def compute_balance(total_amount: Decimal, paid_amount: Decimal) -> Decimal:
    return quantize_money(Decimal(total_amount) - Decimal(paid_amount))


def split_gst(tax_amount: Decimal, is_interstate: bool) -> GstSplit:
    """Split tax into CGST/SGST halves, or IGST for interstate supply.

    When the tax has an odd paisa the extra paisa goes to SGST, so the two
    halves always add back up to the tax.
    """
    tax = quantize_money(tax_amount)
    zero = Decimal("0.00")
    if is_interstate:
        return GstSplit(cgst=zero, sgst=zero, igst=tax)
    cgst = quantize_money(tax / 2)
    if cgst * 2 > tax:
        cgst -= CENT
    return GstSplit(cgst=cgst, sgst=tax - cgst, igst=zero)


def build_quote_items(
    title: str,
    fixed_price: Decimal | None,
    subtasks: Sequence[dict] = (),
    default_rate: Decimal = DEFAULT_TAX_RATE,
) -> list[LineItem]:
    """Line items for a quotation raised from a completed obligation.

    The main item carries the fixed price and is taxable. Each subtask is
    listed as a zero-priced, non-taxable line.
    """
    price = Decimal(fixed_price or 0)
    items = [
        LineItem(
            description=title,
            quantity=Decimal("1"),
            rate=price,
            amount=price,
            taxable=True,
            tax_rate=default_rate,
        )
    ]
    ordered = sorted(subtasks, key=lambda s: s.get("order", 0))
    for subtask in ordered:
        items.append(
            LineItem(
                description=f"  - {subtask.get('title', '')}",
                quantity=Decimal("1"),
                rate=Decimal("0"),
                amount=Decimal("0"),
                taxable=False,
                tax_rate=Decimal("0"),
            )
        )
    return items
