"""API tests against the FastAPI app with a per-test database."""

from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from compliance_billing.api.app import create_app
from compliance_billing.api.dependencies import get_db_session
from compliance_billing.gateway import PaymentGatewayAdapter, StubLinkProvider
from compliance_billing.notifications import RecordingDispatcher


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def headers(firm_id, actor_id) -> dict[str, str]:
    return {"X-Firm-ID": str(firm_id), "X-Actor-ID": str(actor_id)}


def _build_app(session_factory, settings, directory, dispatcher, gateway) -> FastAPI:
    app = create_app(
        settings=settings,
        gateway=gateway,
        dispatcher=dispatcher,
        directory=directory,
    )

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    return app


def _client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def app(session_factory, settings, directory, dispatcher, gateway) -> FastAPI:
    return _build_app(session_factory, settings, directory, dispatcher, gateway)


@pytest_asyncio.fixture
async def client(app):
    async with _client(app) as client:
        yield client
    await app.state.dispatch_handler.drain(timeout=1.0)


@pytest_asyncio.fixture
async def slow_client(session_factory, settings, directory, dispatcher):
    gateway = PaymentGatewayAdapter(StubLinkProvider(delay=1.0), timeout_seconds=0.05)
    app = _build_app(session_factory, settings, directory, dispatcher, gateway)
    async with _client(app) as client:
        yield client
    await app.state.dispatch_handler.drain(timeout=1.0)


def _invoice_payload(client_id, **overrides) -> dict:
    payload = {
        "client_id": str(client_id),
        "kind": "invoice",
        "items": [{"description": "Statutory audit", "rate": "10000"}],
        "gst_applicable": False,
    }
    payload.update(overrides)
    return payload


def _quote_payload(client_id) -> dict:
    return {
        "client_id": str(client_id),
        "kind": "quotation",
        "items": [{"description": "Advisory retainer", "rate": "5000"}],
    }


class TestHealth:
    """Tests for health endpoints."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"

    async def test_ready_reports_gateway(self, client):
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "gateway_provider": "stub",
            "gateway_timeout_seconds": 0.5,
            "pending_notifications": 0,
        }

    async def test_live(self, client):
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestHeaders:
    """Tests for firm and actor headers."""

    async def test_missing_firm_header(self, client):
        response = await client.get("/api/v1/billing-documents")

        assert response.status_code == 400
        assert "X-Firm-ID" in response.json()["detail"]

    async def test_invalid_firm_header(self, client):
        response = await client.get(
            "/api/v1/billing-documents", headers={"X-Firm-ID": "not-a-uuid"}
        )

        assert response.status_code == 400


class TestBillingDocumentsApi:
    """Tests for billing document endpoints."""

    async def test_create_invoice(self, client, headers, client_id):
        payload = _invoice_payload(
            client_id,
            gst_applicable=True,
            discount={"type": "percentage", "value": "10"},
        )

        response = await client.post("/api/v1/billing-documents", json=payload, headers=headers)

        assert response.status_code == 201
        body = response.json()
        assert body["document_number"].startswith("INV")
        assert body["status"] == "draft"
        assert body["effective_status"] == "draft"
        assert Decimal(body["subtotal"]) == Decimal("10000")
        assert Decimal(body["discount_amount"]) == Decimal("1000")
        assert Decimal(body["tax_amount"]) == Decimal("1800")
        assert Decimal(body["total_amount"]) == Decimal("10800")
        assert Decimal(body["cgst"]) == Decimal("900")
        assert Decimal(body["sgst"]) == Decimal("900")
        assert len(body["items"]) == 1
        assert body["payments"] == []

    async def test_create_with_total_override(self, client, headers, client_id):
        payload = _invoice_payload(client_id, total_amount="9999.50")

        response = await client.post("/api/v1/billing-documents", json=payload, headers=headers)

        assert Decimal(response.json()["total_amount"]) == Decimal("9999.50")

    async def test_missing_client_is_422(self, client, headers, client_id):
        payload = _invoice_payload(client_id)
        payload.pop("client_id")

        response = await client.post("/api/v1/billing-documents", json=payload, headers=headers)

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["field"] == "client_id"

    async def test_unknown_document_is_404(self, client, headers):
        response = await client.get(f"/api/v1/billing-documents/{uuid4()}", headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_payment_flow(self, client, headers, client_id):
        """Send, pay partially, refuse a manual paid, refuse overpayment."""
        created = await client.post(
            "/api/v1/billing-documents", json=_invoice_payload(client_id), headers=headers
        )
        doc_id = created.json()["document_id"]
        base = f"/api/v1/billing-documents/{doc_id}"

        sent = await client.post(f"{base}/transitions", json={"target": "sent"}, headers=headers)
        assert sent.status_code == 200
        assert sent.json()["status"] == "sent"

        paid = await client.post(
            f"{base}/payments", json={"amount": "3000", "method": "upi"}, headers=headers
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "partially_paid"
        assert Decimal(paid.json()["balance_amount"]) == Decimal("7000")

        manual = await client.post(f"{base}/transitions", json={"target": "paid"}, headers=headers)
        assert manual.status_code == 409
        assert manual.json()["code"] == "INVALID_TRANSITION"

        over = await client.post(
            f"{base}/payments", json={"amount": "8000", "method": "cash"}, headers=headers
        )
        assert over.status_code == 422

        current = await client.get(base, headers=headers)
        assert len(current.json()["payments"]) == 1
        assert Decimal(current.json()["paid_amount"]) == Decimal("3000")

    async def test_invalid_payment_method(self, client, headers, client_id):
        created = await client.post(
            "/api/v1/billing-documents", json=_invoice_payload(client_id), headers=headers
        )
        doc_id = created.json()["document_id"]

        response = await client.post(
            f"/api/v1/billing-documents/{doc_id}/payments",
            json={"amount": "100", "method": "barter"},
            headers=headers,
        )

        assert response.status_code == 422

    async def test_quote_ready_attaches_link(self, client, headers, client_id):
        created = await client.post(
            "/api/v1/billing-documents", json=_quote_payload(client_id), headers=headers
        )
        base = f"/api/v1/billing-documents/{created.json()['document_id']}"

        ready = await client.post(
            f"{base}/transitions", json={"target": "quote_ready"}, headers=headers
        )

        assert ready.status_code == 200
        assert ready.json()["status"] == "quote_ready"
        link_id = ready.json()["gateway_link_id"]
        assert link_id.startswith("plink_")

        link = await client.post(f"{base}/payment-link", headers=headers)
        assert link.json()["success"] is True
        assert link.json()["link_id"] == link_id

    async def test_gateway_timeout_does_not_block_transition(
        self, slow_client, headers, client_id
    ):
        created = await slow_client.post(
            "/api/v1/billing-documents", json=_quote_payload(client_id), headers=headers
        )
        base = f"/api/v1/billing-documents/{created.json()['document_id']}"

        ready = await slow_client.post(
            f"{base}/transitions", json={"target": "quote_ready"}, headers=headers
        )
        assert ready.status_code == 200
        assert ready.json()["status"] == "quote_ready"
        assert ready.json()["gateway_link_id"] is None

        link = await slow_client.post(f"{base}/payment-link", headers=headers)
        assert link.status_code == 200
        assert link.json()["success"] is False
        assert link.json()["error_kind"] == "timeout"

    async def test_reject_quote(self, client, headers, client_id):
        created = await client.post(
            "/api/v1/billing-documents", json=_quote_payload(client_id), headers=headers
        )
        base = f"/api/v1/billing-documents/{created.json()['document_id']}"

        rejected = await client.post(f"{base}/reject", json={"reason": "Too high"}, headers=headers)

        assert rejected.status_code == 200
        assert rejected.json()["status"] == "cancelled"
        assert rejected.json()["admin_approval_status"] == "rejected"

    async def test_overdue_listing(self, client, headers, client_id):
        late = _invoice_payload(client_id, issue_date="2020-01-01", due_date="2020-01-31")
        created = await client.post("/api/v1/billing-documents", json=late, headers=headers)
        doc_id = created.json()["document_id"]
        await client.post(
            f"/api/v1/billing-documents/{doc_id}/transitions",
            json={"target": "sent"},
            headers=headers,
        )
        await client.post(
            "/api/v1/billing-documents", json=_invoice_payload(client_id), headers=headers
        )

        response = await client.get(
            "/api/v1/billing-documents", params={"status": "overdue"}, headers=headers
        )

        body = response.json()
        assert body["total"] == 1
        item = body["items"][0]
        assert item["document_id"] == doc_id
        assert item["status"] == "sent"
        assert item["effective_status"] == "overdue"
        assert item["is_overdue"] is True
        assert item["days_overdue"] > 0

    async def test_documents_scoped_to_firm(self, client, headers, client_id, actor_id):
        created = await client.post(
            "/api/v1/billing-documents", json=_invoice_payload(client_id), headers=headers
        )
        other_firm = {"X-Firm-ID": str(uuid4()), "X-Actor-ID": str(actor_id)}

        response = await client.get(
            f"/api/v1/billing-documents/{created.json()['document_id']}", headers=other_firm
        )

        assert response.status_code == 404


class TestObligationsApi:
    """Tests for obligation endpoints."""

    async def _create(self, client, headers, default_client_id, **overrides) -> dict:
        payload = {
            "title": "Annual ROC Filing",
            "due_date": "2031-09-30",
            "category": "roc",
            "client_id": str(default_client_id),
            "billable": True,
            "fixed_price": "5000",
            "subtasks": [{"title": "Board approval", "order": 1}],
        }
        payload.update(overrides)
        response = await client.post("/api/v1/obligations", json=payload, headers=headers)
        assert response.status_code == 201
        return response.json()

    async def test_complete_raises_quote(
        self, app, client, headers, client_id, dispatcher, approver_id
    ):
        obligation = await self._create(client, headers, client_id)

        response = await client.post(
            f"/api/v1/obligations/{obligation['obligation_id']}/complete", headers=headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["obligation"]["status"] == "completed"
        assert body["quote_created"] is True
        assert body["quote"]["status"] == "quote_draft"
        assert body["quote"]["document_type"] == "quote_draft"
        assert Decimal(body["quote"]["total_amount"]) == Decimal("5900")
        assert [i["description"] for i in body["quote"]["items"]] == [
            "Annual ROC Filing",
            "  - Board approval",
        ]

        await app.state.dispatch_handler.drain()
        approver_notices = [n for n in dispatcher.notifications if n[0] == "QuoteDraftCreated"]
        assert approver_notices[0][2] == [approver_id]

    async def test_complete_twice_returns_same_quote(self, client, headers, client_id):
        obligation = await self._create(client, headers, client_id)
        url = f"/api/v1/obligations/{obligation['obligation_id']}/complete"

        first = await client.post(url, headers=headers)
        second = await client.post(url, headers=headers)

        assert second.json()["quote_created"] is False
        assert second.json()["quote"]["document_id"] == first.json()["quote"]["document_id"]

    async def test_billable_without_client_is_422(self, client, headers, client_id):
        obligation = await self._create(client, headers, client_id, client_id=None)

        response = await client.post(
            f"/api/v1/obligations/{obligation['obligation_id']}/complete", headers=headers
        )

        assert response.status_code == 422
        # Nothing was committed
        current = await client.get(
            f"/api/v1/obligations/{obligation['obligation_id']}", headers=headers
        )
        assert current.json()["status"] == "todo"

    async def test_status_update_and_archive(self, client, headers, client_id):
        obligation = await self._create(client, headers, client_id, billable=False)
        base = f"/api/v1/obligations/{obligation['obligation_id']}"

        review = await client.patch(f"{base}/status", json={"status": "review"}, headers=headers)
        assert review.json()["obligation"]["status"] == "review"

        bad = await client.patch(f"{base}/status", json={"status": "done"}, headers=headers)
        assert bad.status_code == 422

        archived = await client.post(f"{base}/archive", headers=headers)
        assert archived.json()["is_archived"] is True
        restored = await client.post(f"{base}/unarchive", headers=headers)
        assert restored.json()["is_archived"] is False


class TestRecurringApi:
    """Tests for the recurring generation endpoint."""

    async def test_generate_is_idempotent(self, client, headers, session, make_template):
        await make_template(title="GSTR-1")
        await session.commit()

        first = await client.post(
            "/api/v1/recurring/generate", json={"as_of_date": "2031-03-10"}, headers=headers
        )
        second = await client.post(
            "/api/v1/recurring/generate", json={"as_of_date": "2031-03-25"}, headers=headers
        )

        assert first.status_code == 200
        assert first.json()["generated_count"] == 1
        assert second.json()["generated_count"] == 0
        assert second.json()["skipped"][0]["reason"] == "already_generated"
        assert second.json()["message"] == "Generated 0 recurring obligation(s), skipped 1"
