"""Base protocol and types for payment link providers.

All provider adapters must implement the :class:`PaymentLinkProvider`
protocol. Providers may raise; the :class:`PaymentGatewayAdapter` is what
turns every failure into a :class:`LinkResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


class LinkErrorKind(str, Enum):
    """Why a payment link request failed."""

    TIMEOUT = "timeout"
    GATEWAY_ERROR = "gateway_error"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class PaymentLinkRequest:
    """Immutable snapshot of what the gateway needs to raise a link.

    Built from the document before the call so that no ORM state is
    touched while the request is in flight. ``reference_id`` is unique per
    document and lets the gateway deduplicate retries.
    """

    document_id: UUID
    firm_id: UUID
    reference_id: str
    amount: Decimal
    description: str
    obligation_id: UUID | None = None
    currency: str = "INR"
    customer_name: str | None = None
    customer_email: str | None = None
    customer_contact: str | None = None
    expire_by: date | None = None
    callback_url: str | None = None

    @property
    def amount_minor(self) -> int:
        """Amount in paise."""
        return int((self.amount * 100).to_integral_value())

    def notes(self) -> dict[str, str]:
        """Correlation ids echoed back by the gateway."""
        notes = {
            "document_id": str(self.document_id),
            "firm_id": str(self.firm_id),
        }
        if self.obligation_id is not None:
            notes["obligation_id"] = str(self.obligation_id)
        return notes


@dataclass(frozen=True)
class LinkResult:
    """Outcome of a payment link request."""

    success: bool
    link_id: str | None = None
    short_url: str | None = None
    order_id: str | None = None
    status: str | None = None
    error_kind: LinkErrorKind | None = None
    message: str = ""

    @classmethod
    def ok(
        cls,
        link_id: str,
        short_url: str | None,
        order_id: str | None = None,
        status: str | None = "created",
    ) -> LinkResult:
        return cls(
            success=True,
            link_id=link_id,
            short_url=short_url,
            order_id=order_id,
            status=status,
        )

    @classmethod
    def failed(cls, error_kind: LinkErrorKind, message: str = "") -> LinkResult:
        return cls(success=False, error_kind=error_kind, message=message)


class PaymentLinkProvider(Protocol):
    """Protocol for payment link provider adapters."""

    provider_name: str

    async def create_link(self, request: PaymentLinkRequest) -> LinkResult:
        """Create a payment link.

        Raises:
            GatewayError: The gateway rejected the request.
            GatewayTimeoutError: The gateway did not answer in time.
        """
        ...
