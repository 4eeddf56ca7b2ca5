"""Non-blocking boundary between the workflow and the payment gateway."""

from __future__ import annotations

import asyncio
import logging

import httpx

from compliance_billing.config import GatewayConfig
from compliance_billing.errors import GatewayError, GatewayTimeoutError
from compliance_billing.gateway.base import (
    LinkErrorKind,
    LinkResult,
    PaymentLinkProvider,
    PaymentLinkRequest,
)
from compliance_billing.gateway.razorpay import RazorpayLinkProvider
from compliance_billing.gateway.stub import StubLinkProvider

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class PaymentGatewayAdapter:
    """Wraps a provider with a hard timeout and total error containment.

    :meth:`request_link` never raises. Every failure comes back as a
    ``LinkResult(success=False)`` with an ``error_kind`` and a logged warning.
    """

    def __init__(
        self,
        provider: PaymentLinkProvider,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    async def request_link(self, request: PaymentLinkRequest) -> LinkResult:
        try:
            return await asyncio.wait_for(
                self.provider.create_link(request),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, GatewayTimeoutError, httpx.TimeoutException) as e:
            logger.warning(
                "Payment link request for document %s timed out after %.1fs",
                request.document_id,
                self.timeout_seconds,
            )
            return LinkResult.failed(LinkErrorKind.TIMEOUT, str(e) or "timeout")
        except GatewayError as e:
            logger.warning(
                "Gateway rejected payment link for document %s: %s",
                request.document_id,
                e,
            )
            return LinkResult.failed(LinkErrorKind.GATEWAY_ERROR, str(e))
        except (httpx.TransportError, OSError) as e:
            logger.warning(
                "Network error requesting payment link for document %s: %s",
                request.document_id,
                e,
            )
            return LinkResult.failed(LinkErrorKind.NETWORK_ERROR, str(e))
        except Exception as e:
            logger.warning(
                "Unexpected error requesting payment link for document %s: %r",
                request.document_id,
                e,
            )
            return LinkResult.failed(LinkErrorKind.GATEWAY_ERROR, repr(e))


def build_adapter(config: GatewayConfig) -> PaymentGatewayAdapter:
    """Create the adapter for the configured provider."""
    provider: PaymentLinkProvider
    if config.provider == "razorpay":
        provider = RazorpayLinkProvider(config)
    else:
        provider = StubLinkProvider()
    return PaymentGatewayAdapter(provider, timeout_seconds=config.timeout_seconds)
