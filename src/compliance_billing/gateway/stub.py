"""Stub payment link provider for local development and testing."""

from __future__ import annotations

import asyncio
import uuid

from compliance_billing.gateway.base import LinkResult, PaymentLinkRequest


class StubLinkProvider:
    """In-memory payment link provider.

    Args:
        delay: Seconds to sleep before answering, to exercise timeouts.
        fail_with: Exception raised on every call instead of answering.
        base_url: Prefix for generated short URLs.
    """

    provider_name = "stub"

    def __init__(
        self,
        delay: float = 0.0,
        fail_with: Exception | None = None,
        base_url: str = "https://pay.example.test",
    ):
        self.delay = delay
        self.fail_with = fail_with
        self.base_url = base_url
        self.requests: list[PaymentLinkRequest] = []
        # reference_id -> link, so retries return the same link
        self._links: dict[str, LinkResult] = {}

    async def create_link(self, request: PaymentLinkRequest) -> LinkResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

        existing = self._links.get(request.reference_id)
        if existing is not None:
            return existing

        token = uuid.uuid4().hex[:14]
        result = LinkResult.ok(
            link_id=f"plink_{token}",
            short_url=f"{self.base_url}/{token[:8]}",
            order_id=f"order_{token}",
        )
        self._links[request.reference_id] = result
        return result

    @property
    def call_count(self) -> int:
        return len(self.requests)
