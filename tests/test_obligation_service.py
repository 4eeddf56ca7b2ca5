"""Tests for obligation completion, status changes and archival."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from compliance_billing.errors import NotFoundError, ValidationError
from compliance_billing.events import (
    ObligationArchived,
    ObligationCreated,
    ObligationStatusChanged,
    QuoteDraftCreated,
)
from compliance_billing.models import BillingDocument
from compliance_billing.services import ObligationInput, ObligationService


async def _quote_count(session, obligation_id) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(BillingDocument)
        .where(BillingDocument.related_obligation_id == obligation_id)
    )


class TestCompleteObligation:
    """Tests for completing obligations."""

    async def test_billable_completion_raises_quote(
        self, session, obligation_service, make_obligation, actor_id, collector
    ):
        """A 5000 billable obligation yields a 5900 draft quotation."""
        obligation = await make_obligation(
            custom_fields={
                "subtasks": [
                    {"title": "Prepare AOC-4", "order": 2},
                    {"title": "Board approval", "order": 1},
                ]
            }
        )

        result = await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

        assert result.obligation.status == "completed"
        assert result.obligation.completed_date is not None
        assert result.quote_created is True
        quote = result.quote
        assert quote.kind == "quotation"
        assert quote.status == "quote_draft"
        assert quote.admin_approval_status == "pending"
        assert quote.related_obligation_id == obligation.obligation_id
        assert quote.client_id == obligation.client_id
        assert quote.due_date == date(2026, 10, 31)
        assert quote.subtotal == Decimal("5000.00")
        assert quote.tax_amount == Decimal("900.00")
        assert quote.total_amount == Decimal("5900.00")
        assert [i.description for i in quote.items] == [
            "Annual ROC Filing",
            "  - Board approval",
            "  - Prepare AOC-4",
        ]

        drafts = collector.of_type(QuoteDraftCreated)
        assert len(drafts) == 1
        assert drafts[0].obligation_id == obligation.obligation_id
        changes = collector.of_type(ObligationStatusChanged)
        assert [(c.from_status, c.to_status) for c in changes] == [("inprogress", "completed")]

    async def test_completing_twice_keeps_one_quote(
        self, session, obligation_service, make_obligation, actor_id
    ):
        obligation = await make_obligation()

        first = await obligation_service.complete_obligation(obligation.obligation_id, actor_id)
        second = await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

        assert second.quote_created is False
        assert second.quote.document_id == first.quote.document_id
        assert await _quote_count(session, obligation.obligation_id) == 1

    async def test_non_billable_completion_has_no_quote(
        self, session, obligation_service, make_obligation, actor_id
    ):
        obligation = await make_obligation(billable=False)

        result = await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

        assert result.obligation.status == "completed"
        assert result.quote is None
        assert await _quote_count(session, obligation.obligation_id) == 0

    async def test_billable_without_client_rejected(
        self, obligation_service, make_obligation, actor_id
    ):
        obligation = await make_obligation(client_id=None)

        with pytest.raises(ValidationError) as exc_info:
            await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

        assert exc_info.value.field == "client_id"

    async def test_cancelled_cannot_complete(self, obligation_service, make_obligation, actor_id):
        obligation = await make_obligation(status="cancelled")

        with pytest.raises(ValidationError):
            await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

    async def test_without_billing_service(self, session, make_obligation, actor_id):
        """Completion still succeeds when no billing service is wired."""
        obligation = await make_obligation()
        service = ObligationService(session)

        result = await service.complete_obligation(obligation.obligation_id, actor_id)

        assert result.obligation.status == "completed"
        assert result.quote is None

    async def test_not_found(self, obligation_service, actor_id):
        with pytest.raises(NotFoundError):
            await obligation_service.complete_obligation(uuid4(), actor_id)

    async def test_other_firm_not_found(self, obligation_service, make_obligation, actor_id):
        obligation = await make_obligation()

        with pytest.raises(NotFoundError):
            await obligation_service.complete_obligation(
                obligation.obligation_id, actor_id, firm_id=uuid4()
            )


class TestUpdateStatus:
    """Tests for direct status updates."""

    async def test_reopen_clears_completed_date(
        self, obligation_service, make_obligation, actor_id
    ):
        obligation = await make_obligation(billable=False)
        await obligation_service.complete_obligation(obligation.obligation_id, actor_id)

        result = await obligation_service.update_status(
            obligation.obligation_id, "review", actor_id
        )

        assert result.obligation.status == "review"
        assert result.obligation.completed_date is None

    async def test_same_status_is_noop(
        self, obligation_service, make_obligation, actor_id, collector
    ):
        obligation = await make_obligation()

        await obligation_service.update_status(obligation.obligation_id, "inprogress", actor_id)

        assert collector.of_type(ObligationStatusChanged) == []

    async def test_unknown_status(self, obligation_service, make_obligation, actor_id):
        obligation = await make_obligation()

        with pytest.raises(ValidationError) as exc_info:
            await obligation_service.update_status(obligation.obligation_id, "done", actor_id)

        assert exc_info.value.field == "status"

    async def test_completion_through_status_update_raises_quote(
        self, obligation_service, make_obligation, actor_id
    ):
        obligation = await make_obligation()

        result = await obligation_service.update_status(
            obligation.obligation_id, "completed", actor_id
        )

        assert result.quote_created is True


class TestCreateObligation:
    """Tests for one-off obligation creation."""

    async def test_create(self, obligation_service, firm_id, actor_id, collector):
        obligation = await obligation_service.create_obligation(
            ObligationInput(
                firm_id=firm_id,
                title="  TDS return Q2 ",
                due_date=date(2026, 10, 31),
                assigned_by=actor_id,
                category="itr",
                priority="high",
                subtasks=[{"title": "Collect challans", "order": 1}],
            )
        )

        assert obligation.title == "TDS return Q2"
        assert obligation.status == "todo"
        assert obligation.obligation_type == "income_tax_return"
        assert obligation.assigned_to == actor_id
        assert obligation.is_recurring is False
        assert obligation.subtasks == [{"title": "Collect challans", "order": 1}]
        assert len(collector.of_type(ObligationCreated)) == 1

    async def test_title_required(self, obligation_service, firm_id, actor_id):
        with pytest.raises(ValidationError):
            await obligation_service.create_obligation(
                ObligationInput(
                    firm_id=firm_id, title=" ", due_date=date(2026, 10, 31), assigned_by=actor_id
                )
            )

    async def test_unknown_priority(self, obligation_service, firm_id, actor_id):
        with pytest.raises(ValidationError):
            await obligation_service.create_obligation(
                ObligationInput(
                    firm_id=firm_id,
                    title="Filing",
                    due_date=date(2026, 10, 31),
                    assigned_by=actor_id,
                    priority="critical",
                )
            )

    async def test_negative_price(self, obligation_service, firm_id, actor_id):
        with pytest.raises(ValidationError):
            await obligation_service.create_obligation(
                ObligationInput(
                    firm_id=firm_id,
                    title="Filing",
                    due_date=date(2026, 10, 31),
                    assigned_by=actor_id,
                    fixed_price=Decimal("-1"),
                )
            )


class TestArchival:
    """Tests for archive and unarchive."""

    async def test_archive_and_unarchive(
        self, obligation_service, make_obligation, actor_id, collector
    ):
        obligation = await make_obligation()

        archived = await obligation_service.archive_obligation(obligation.obligation_id, actor_id)
        assert archived.is_archived is True
        assert archived.archived_by == actor_id
        assert archived.archived_at is not None
        # Status is untouched by archival
        assert archived.status == "inprogress"

        restored = await obligation_service.unarchive_obligation(
            obligation.obligation_id, actor_id
        )
        assert restored.is_archived is False
        assert restored.archived_by is None
        assert restored.archived_at is None

        events = collector.of_type(ObligationArchived)
        assert [e.archived for e in events] == [True, False]

    async def test_archive_twice_emits_once(
        self, obligation_service, make_obligation, actor_id, collector
    ):
        obligation = await make_obligation()

        await obligation_service.archive_obligation(obligation.obligation_id, actor_id)
        await obligation_service.archive_obligation(obligation.obligation_id, actor_id)

        assert len(collector.of_type(ObligationArchived)) == 1
