"""Payment gateway boundary."""

from compliance_billing.gateway.adapter import PaymentGatewayAdapter, build_adapter
from compliance_billing.gateway.base import (
    LinkErrorKind,
    LinkResult,
    PaymentLinkProvider,
    PaymentLinkRequest,
)
from compliance_billing.gateway.razorpay import RazorpayLinkProvider
from compliance_billing.gateway.stub import StubLinkProvider

__all__ = [
    "LinkErrorKind",
    "LinkResult",
    "PaymentGatewayAdapter",
    "PaymentLinkProvider",
    "PaymentLinkRequest",
    "RazorpayLinkProvider",
    "StubLinkProvider",
    "build_adapter",
]
