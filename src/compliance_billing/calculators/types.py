"""Type definitions for billing computation."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class DiscountType(str, Enum):
    """How a discount value is interpreted."""

    PERCENTAGE = "percentage"
    FLAT = "flat"


@dataclass(frozen=True)
class LineItem:
    """A billable line before persistence.

    ``amount`` defaults to ``quantity * rate`` when not given. A ``tax_rate``
    of None means the default rate applies.
    """

    description: str
    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")
    amount: Decimal | None = None
    taxable: bool = True
    tax_rate: Decimal | None = None
    hsn: str | None = None

    @property
    def effective_amount(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return self.quantity * self.rate


@dataclass(frozen=True)
class DiscountTerms:
    """Discount applied to the subtotal."""

    discount_type: DiscountType = DiscountType.PERCENTAGE
    value: Decimal = Decimal("0")

    @classmethod
    def none(cls) -> DiscountTerms:
        return cls()


@dataclass(frozen=True)
class Computed:
    """Marker: derive the field from the items."""


@dataclass(frozen=True)
class Provided(Generic[T]):
    """Marker: the caller supplied this value and it wins over the computed one."""

    value: T


Override = Union[Computed, Provided[Decimal]]

COMPUTED = Computed()


@dataclass(frozen=True)
class TotalsOverrides:
    """Per-field overrides for :func:`compute_totals`."""

    subtotal: Override = field(default=COMPUTED)
    tax_amount: Override = field(default=COMPUTED)
    total_amount: Override = field(default=COMPUTED)

    @classmethod
    def from_optional(
        cls,
        subtotal: Decimal | None = None,
        tax_amount: Decimal | None = None,
        total_amount: Decimal | None = None,
    ) -> TotalsOverrides:
        """Build overrides where None means computed."""

        def wrap(value: Decimal | None) -> Override:
            return COMPUTED if value is None else Provided(value)

        return cls(
            subtotal=wrap(subtotal),
            tax_amount=wrap(tax_amount),
            total_amount=wrap(total_amount),
        )


@dataclass(frozen=True)
class BillingTotals:
    """Result of a totals computation."""

    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    @property
    def discounted_subtotal(self) -> Decimal:
        return self.subtotal - self.discount_amount


@dataclass(frozen=True)
class GstSplit:
    """Tax split into central, state and integrated GST."""

    cgst: Decimal
    sgst: Decimal
    igst: Decimal

    @property
    def total(self) -> Decimal:
        return self.cgst + self.sgst + self.igst
