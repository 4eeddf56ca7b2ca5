"""Tests for recurring obligation generation."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from compliance_billing.events import ObligationGenerated
from compliance_billing.models import Obligation
from compliance_billing.services import (
    GenerationResult,
    RecurrenceScheduler,
    SkipReason,
    due_date_for,
    period_window,
)
from compliance_billing.services.recurrence_scheduler import NotYetSupported, UnknownPattern


async def _obligations_for(session, template_id) -> list[Obligation]:
    result = await session.execute(
        select(Obligation).where(Obligation.template_id == template_id)
    )
    return list(result.scalars().all())


class TestPeriodWindow:
    """Tests for period and due date derivation."""

    def test_monthly_window(self):
        window = period_window("monthly", date(2026, 10, 15))

        assert window.start == date(2026, 10, 1)
        assert window.end == date(2026, 10, 31)
        assert window.key == "2026-10"

    def test_monthly_leap_february(self):
        window = period_window("monthly", date(2028, 2, 10))

        assert window.end == date(2028, 2, 29)
        assert due_date_for("monthly", "gst", window) == date(2028, 2, 29)

    def test_yearly_window(self):
        window = period_window("yearly", date(2026, 5, 20))

        assert window.start == date(2026, 1, 1)
        assert window.end == date(2026, 12, 31)
        assert window.key == "2026"

    def test_yearly_due_dates_by_category(self):
        window = period_window("yearly", date(2026, 5, 20))

        assert due_date_for("yearly", "roc", window) == date(2026, 9, 30)
        assert due_date_for("yearly", "itr", window) == date(2026, 7, 31)
        assert due_date_for("yearly", "gst", window) == date(2026, 12, 31)
        assert due_date_for("yearly", "other", window) == date(2026, 12, 31)

    def test_custom_not_supported(self):
        with pytest.raises(NotYetSupported):
            period_window("custom", date(2026, 5, 20))

    def test_unknown_pattern(self):
        with pytest.raises(UnknownPattern):
            period_window("weekly", date(2026, 5, 20))

        with pytest.raises(UnknownPattern):
            period_window(None, date(2026, 5, 20))

    def test_created_range_is_half_open(self):
        lower, upper = period_window("monthly", date(2026, 10, 15)).created_range()

        assert lower == datetime(2026, 10, 1, tzinfo=timezone.utc)
        assert upper == datetime(2026, 11, 1, tzinfo=timezone.utc)


class TestRecurrenceScheduler:
    """Tests for RecurrenceScheduler.generate."""

    async def test_monthly_template_generates_obligation(
        self, session, scheduler, make_template, firm_id, actor_id, collector
    ):
        """A monthly template yields one obligation due at month end."""
        template = await make_template(title="GSTR-3B", category="gst")

        result = await scheduler.generate(firm_id, date(2031, 10, 15), actor_id)

        assert result.generated_count == 1
        assert result.skipped == []
        obligation = await session.get(Obligation, result.created_ids[0])
        assert obligation.due_date == date(2031, 10, 31)
        assert obligation.period_key == "2031-10"
        assert obligation.status == "todo"
        assert obligation.is_recurring is True
        assert obligation.template_id == template.template_id
        assert obligation.obligation_type == "gst_filing"
        assert obligation.assigned_by == actor_id
        assert template.usage_count == 1
        assert template.last_used is not None

        events = collector.of_type(ObligationGenerated)
        assert len(events) == 1
        assert events[0].period_key == "2031-10"
        assert events[0].metadata.actor_type == "scheduler"

    async def test_yearly_roc_due_date(self, session, scheduler, make_template, firm_id, actor_id):
        """A yearly ROC template is due on 30 September."""
        await make_template(title="Annual return", category="roc", recurrence_pattern="yearly")

        result = await scheduler.generate(firm_id, date(2031, 3, 1), actor_id)

        obligation = await session.get(Obligation, result.created_ids[0])
        assert obligation.due_date == date(2031, 9, 30)
        assert obligation.period_key == "2031"

    async def test_second_run_is_idempotent(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        """Running twice in the same period creates nothing the second time."""
        template = await make_template()

        first = await scheduler.generate(firm_id, date(2031, 3, 5), actor_id)
        second = await scheduler.generate(firm_id, date(2031, 3, 28), actor_id)

        assert first.generated_count == 1
        assert second.generated_count == 0
        assert [s.reason for s in second.skipped] == [SkipReason.ALREADY_GENERATED]
        assert len(await _obligations_for(session, template.template_id)) == 1
        assert template.usage_count == 1

    async def test_next_period_generates_again(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        template = await make_template()

        await scheduler.generate(firm_id, date(2031, 3, 5), actor_id)
        result = await scheduler.generate(firm_id, date(2031, 4, 5), actor_id)

        assert result.generated_count == 1
        keys = sorted(o.period_key for o in await _obligations_for(session, template.template_id))
        assert keys == ["2031-03", "2031-04"]
        assert template.usage_count == 2

    async def test_obligation_created_in_window_counts_as_generated(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        """An obligation without a period key but created in the window blocks generation."""
        template = await make_template()
        session.add(
            Obligation(
                firm_id=firm_id,
                title=template.title,
                category="gst",
                due_date=date(2031, 3, 31),
                assigned_by=actor_id,
                template_id=template.template_id,
                period_key=None,
                created_at=datetime(2031, 3, 2, 9, 30, tzinfo=timezone.utc),
            )
        )
        await session.flush()

        result = await scheduler.generate(firm_id, date(2031, 3, 20), actor_id)

        assert result.generated_count == 0
        assert result.skipped[0].reason == SkipReason.ALREADY_GENERATED

    async def test_unique_constraint_catches_concurrent_run(
        self, session, scheduler, make_template, firm_id, actor_id, monkeypatch
    ):
        """A run that slips past the lookup is stopped by the unique constraint."""
        template = await make_template()
        await scheduler.generate(firm_id, date(2031, 5, 10), actor_id)

        async def never_generated(*args, **kwargs):
            return False

        monkeypatch.setattr(scheduler, "_already_generated", never_generated)
        result = await scheduler.generate(firm_id, date(2031, 5, 10), actor_id)

        assert result.generated_count == 0
        assert result.skipped[0].reason == SkipReason.ALREADY_GENERATED
        assert len(await _obligations_for(session, template.template_id)) == 1
        assert template.usage_count == 1

    async def test_custom_and_unknown_patterns_are_skipped(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        """Unsupported templates are reported without stopping the run."""
        custom = await make_template(title="Custom", recurrence_pattern="custom")
        weekly = await make_template(title="Weekly", recurrence_pattern="weekly")
        monthly = await make_template(title="Monthly")

        result = await scheduler.generate(firm_id, date(2031, 6, 1), actor_id)

        assert result.generated_count == 1
        reasons = {s.template_id: s.reason for s in result.skipped}
        assert reasons == {
            custom.template_id: SkipReason.PATTERN_NOT_SUPPORTED,
            weekly.template_id: SkipReason.UNKNOWN_PATTERN,
        }
        assert len(await _obligations_for(session, monthly.template_id)) == 1
        assert result.summary == "Generated 1 recurring obligation(s), skipped 2"

    async def test_inactive_and_deleted_templates_ignored(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        await make_template(title="Inactive", is_active=False)
        deleted = await make_template(title="Deleted")
        deleted.soft_delete()
        await session.flush()
        await make_template(title="One-off", is_recurring=False)

        result = await scheduler.generate(firm_id, date(2031, 6, 1), actor_id)

        assert result.generated_count == 0
        assert result.skipped == []

    async def test_other_firm_templates_ignored(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        await make_template(firm_id=uuid4())

        result = await scheduler.generate(firm_id, date(2031, 6, 1), actor_id)

        assert result.generated_count == 0

    async def test_template_fields_copied(
        self, session, scheduler, make_template, firm_id, actor_id, client_id
    ):
        """Assignee, client, price and subtasks come from the template."""
        employee_id = uuid4()
        subtasks = [{"title": "Collect invoices", "order": 1}]
        await make_template(
            title="Bookkeeping",
            category="other",
            is_payable=True,
            price=Decimal("2500.00"),
            assigned_employee_id=employee_id,
            client_id=client_id,
            subtasks=subtasks,
        )

        result = await scheduler.generate(firm_id, date(2031, 6, 1), actor_id)

        obligation = await session.get(Obligation, result.created_ids[0])
        assert obligation.assigned_to == employee_id
        assert obligation.assigned_by == actor_id
        assert obligation.client_id == client_id
        assert obligation.billable is True
        assert obligation.fixed_price == Decimal("2500.00")
        assert obligation.subtasks == subtasks

    async def test_assignee_defaults_to_actor(
        self, session, scheduler, make_template, firm_id, actor_id
    ):
        await make_template()

        result = await scheduler.generate(firm_id, date(2031, 6, 1), actor_id)

        obligation = await session.get(Obligation, result.created_ids[0])
        assert obligation.assigned_to == actor_id

    async def test_no_templates(self, session, firm_id, actor_id):
        """A firm with no templates gets an empty result."""
        result = await RecurrenceScheduler(session).generate(firm_id, date(2031, 6, 1), actor_id)

        assert isinstance(result, GenerationResult)
        assert result.summary == "Generated 0 recurring obligation(s), skipped 0"
        total = await session.scalar(select(func.count()).select_from(Obligation))
        assert total == 0
