"""Recurrence scheduler - turns recurring templates into obligations.

Generation is idempotent per (template, period). The lookup catches
obligations from earlier runs and the ``(template_id, period_key)``
unique constraint catches a concurrent run that slipped past the lookup.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_billing.events import (
    AsyncEventEmitter,
    EventMetadata,
    ObligationGenerated,
)
from compliance_billing.models import Obligation, RecurringTemplate
from compliance_billing.services.obligation_service import ObligationStatus, obligation_type_for

logger = logging.getLogger(__name__)


class RecurrencePattern(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class SkipReason(str, Enum):
    """Why a template produced no obligation."""

    ALREADY_GENERATED = "already_generated"
    PATTERN_NOT_SUPPORTED = "pattern_not_supported"
    UNKNOWN_PATTERN = "unknown_pattern"


# Statutory yearly due dates by category, as (month, day)
YEARLY_DUE_DATES = {
    "itr": (7, 31),
    "roc": (9, 30),
}
DEFAULT_YEARLY_DUE = (12, 31)


class NotYetSupported(Exception):
    """Raised for recurrence patterns the scheduler cannot expand yet."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__(f"Recurrence pattern '{pattern}' is not supported yet")


class UnknownPattern(Exception):
    def __init__(self, pattern: str | None):
        self.pattern = pattern
        super().__init__(f"Unknown recurrence pattern '{pattern}'")


@dataclass(frozen=True)
class PeriodWindow:
    """Inclusive date range a generated obligation belongs to."""

    start: date
    end: date
    key: str

    def created_range(self) -> tuple[datetime, datetime]:
        """Half-open UTC timestamp range covering the window."""
        lower = datetime.combine(self.start, time.min, tzinfo=timezone.utc)
        upper = datetime.combine(self.end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return lower, upper


@dataclass(frozen=True)
class SkippedTemplate:
    template_id: UUID
    title: str
    reason: SkipReason


@dataclass
class GenerationResult:
    """Outcome of one scheduler run."""

    created_ids: list[UUID] = field(default_factory=list)
    skipped: list[SkippedTemplate] = field(default_factory=list)

    @property
    def generated_count(self) -> int:
        return len(self.created_ids)

    @property
    def summary(self) -> str:
        return (
            f"Generated {len(self.created_ids)} recurring obligation(s), "
            f"skipped {len(self.skipped)}"
        )


def period_window(pattern: str | None, as_of: date) -> PeriodWindow:
    """Return the period containing ``as_of`` for a recurrence pattern.

    Raises:
        NotYetSupported: For the custom pattern.
        UnknownPattern: For anything else unrecognised.
    """
    if pattern == RecurrencePattern.MONTHLY:
        last_day = calendar.monthrange(as_of.year, as_of.month)[1]
        return PeriodWindow(
            start=as_of.replace(day=1),
            end=as_of.replace(day=last_day),
            key=f"{as_of.year:04d}-{as_of.month:02d}",
        )
    if pattern == RecurrencePattern.YEARLY:
        return PeriodWindow(
            start=date(as_of.year, 1, 1),
            end=date(as_of.year, 12, 31),
            key=f"{as_of.year:04d}",
        )
    if pattern == RecurrencePattern.CUSTOM:
        raise NotYetSupported(pattern)
    raise UnknownPattern(pattern)


def due_date_for(pattern: str, category: str, window: PeriodWindow) -> date:
    """Due date of an obligation generated for ``window``."""
    if pattern == RecurrencePattern.MONTHLY:
        return window.end
    month, day = YEARLY_DUE_DATES.get(category, DEFAULT_YEARLY_DUE)
    return date(window.start.year, month, day)


class RecurrenceScheduler:
    """Generates obligations from a firm's recurring templates.

    Invoked by an external trigger (HTTP endpoint or CLI). Templates are
    processed sequentially; one template's skip never stops the run.
    """

    def __init__(
        self,
        session: AsyncSession,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.emitter = emitter

    async def generate(
        self,
        firm_id: UUID,
        as_of_date: date,
        actor_id: UUID,
    ) -> GenerationResult:
        """Emit at most one obligation per template for the period of ``as_of_date``."""
        result = GenerationResult()
        templates = await self._active_templates(firm_id)
        logger.info("Found %d recurring template(s) for firm %s", len(templates), firm_id)

        for template in templates:
            try:
                window = period_window(template.recurrence_pattern, as_of_date)
            except NotYetSupported:
                self._skip(result, template, SkipReason.PATTERN_NOT_SUPPORTED)
                continue
            except UnknownPattern:
                self._skip(result, template, SkipReason.UNKNOWN_PATTERN)
                continue

            if await self._already_generated(template, window):
                self._skip(result, template, SkipReason.ALREADY_GENERATED)
                continue

            obligation = self._build_obligation(template, window, actor_id)
            try:
                async with self.session.begin_nested():
                    self.session.add(obligation)
                    await self.session.flush()
            except IntegrityError:
                # A concurrent run inserted this period first
                self._skip(result, template, SkipReason.ALREADY_GENERATED)
                continue

            template.increment_usage()
            await self.session.flush()
            result.created_ids.append(obligation.obligation_id)
            logger.info(
                "Generated obligation %s from template %s for period %s",
                obligation.obligation_id,
                template.template_id,
                window.key,
            )

            if self.emitter is not None:
                await self.emitter.emit(
                    ObligationGenerated(
                        metadata=EventMetadata.create(
                            firm_id=firm_id,
                            actor_id=actor_id,
                            actor_type="scheduler",
                            source_service="scheduler",
                        ),
                        obligation_id=obligation.obligation_id,
                        template_id=template.template_id,
                        period_key=window.key,
                        due_date=obligation.due_date,
                        assigned_to=obligation.assigned_to,
                    )
                )

        logger.info(result.summary)
        return result

    async def _active_templates(self, firm_id: UUID) -> list[RecurringTemplate]:
        result = await self.session.execute(
            select(RecurringTemplate)
            .where(
                RecurringTemplate.firm_id == firm_id,
                RecurringTemplate.is_recurring.is_(True),
                RecurringTemplate.is_active.is_(True),
                RecurringTemplate.is_deleted.is_(False),
            )
            .order_by(RecurringTemplate.created_at, RecurringTemplate.title)
        )
        return list(result.scalars().all())

    async def _already_generated(self, template: RecurringTemplate, window: PeriodWindow) -> bool:
        lower, upper = window.created_range()
        existing = await self.session.scalar(
            select(Obligation.obligation_id)
            .where(
                Obligation.template_id == template.template_id,
                or_(
                    Obligation.period_key == window.key,
                    and_(Obligation.created_at >= lower, Obligation.created_at < upper),
                ),
            )
            .limit(1)
        )
        return existing is not None

    def _build_obligation(
        self,
        template: RecurringTemplate,
        window: PeriodWindow,
        actor_id: UUID,
    ) -> Obligation:
        pattern = template.recurrence_pattern or ""
        subtasks = list(template.subtasks or [])
        return Obligation(
            firm_id=template.firm_id,
            title=template.title,
            description=template.description or "",
            category=template.category,
            obligation_type=obligation_type_for(template.category),
            priority="medium",
            status=ObligationStatus.TODO.value,
            due_date=due_date_for(pattern, template.category, window),
            billable=bool(template.is_payable),
            fixed_price=template.price,
            is_recurring=True,
            template_id=template.template_id,
            period_key=window.key,
            assigned_to=template.assigned_employee_id or actor_id,
            assigned_by=actor_id,
            client_id=template.client_id,
            collaborators=[],
            custom_fields={"subtasks": subtasks} if subtasks else {},
            is_archived=False,
        )

    def _skip(
        self,
        result: GenerationResult,
        template: RecurringTemplate,
        reason: SkipReason,
    ) -> None:
        logger.info(
            "Skipping template %s (%s): %s",
            template.template_id,
            template.title,
            reason.value,
        )
        result.skipped.append(SkippedTemplate(template.template_id, template.title, reason))
