"""Razorpay payment link provider."""

from __future__ import annotations

import calendar
from datetime import datetime, time, timezone
from typing import Any

import httpx

from compliance_billing.config import GatewayConfig
from compliance_billing.errors import GatewayError, GatewayTimeoutError
from compliance_billing.gateway.base import LinkResult, PaymentLinkRequest


class RazorpayLinkProvider:
    """Creates payment links through Razorpay's ``/v1/payment_links`` API.

    Amounts are sent in paise. ``reference_id`` is unique on Razorpay's side,
    so a retried request for the same document cannot create a second link.
    """

    provider_name = "razorpay"

    def __init__(
        self,
        config: GatewayConfig,
        client: httpx.AsyncClient | None = None,
    ):
        if not (config.key_id and config.key_secret):
            raise ValueError("Razorpay provider requires key_id and key_secret")
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_payload(self, request: PaymentLinkRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "amount": request.amount_minor,
            "currency": request.currency,
            "accept_partial": False,
            "description": request.description,
            "reference_id": request.reference_id,
            "notify": {"sms": False, "email": False},
            "reminder_enable": False,
            "notes": request.notes(),
        }
        customer = {
            key: value
            for key, value in (
                ("name", request.customer_name),
                ("email", request.customer_email),
                ("contact", request.customer_contact),
            )
            if value
        }
        if customer:
            payload["customer"] = customer
        if request.expire_by is not None:
            expire_at = datetime.combine(request.expire_by, time.max, tzinfo=timezone.utc)
            payload["expire_by"] = calendar.timegm(expire_at.utctimetuple())
        callback_url = request.callback_url or self.config.callback_url
        if callback_url:
            payload["callback_url"] = callback_url
            payload["callback_method"] = "get"
        return payload

    async def create_link(self, request: PaymentLinkRequest) -> LinkResult:
        try:
            response = await self._client.post(
                "/v1/payment_links",
                json=self.build_payload(request),
                auth=(self.config.key_id, self.config.key_secret),
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Razorpay timed out: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(_error_message(response), status_code=response.status_code)

        body = response.json()
        link_id = body.get("id")
        if not link_id:
            raise GatewayError("Razorpay response missing link id", response.status_code)

        return LinkResult.ok(
            link_id=link_id,
            short_url=body.get("short_url"),
            order_id=body.get("order_id"),
            status=body.get("status", "created"),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
        description = error.get("description")
    except ValueError:
        description = None
    return description or f"Razorpay returned HTTP {response.status_code}"
