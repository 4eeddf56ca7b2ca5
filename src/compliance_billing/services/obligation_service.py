"""Obligation service - status progression, completion and archival."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_billing.errors import NotFoundError, ValidationError
from compliance_billing.events import (
    AsyncEventEmitter,
    DomainEvent,
    EventMetadata,
    ObligationArchived,
    ObligationCreated,
    ObligationStatusChanged,
)
from compliance_billing.models import BillingDocument, Obligation
from compliance_billing.models.base import utcnow
from compliance_billing.services.billing_service import BillingDocumentService

logger = logging.getLogger(__name__)


class ObligationStatus(str, Enum):
    """Obligation workflow status values."""

    TODO = "todo"
    INPROGRESS = "inprogress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


PRIORITIES = {"low", "medium", "high", "urgent"}

CATEGORY_TO_TYPE = {
    "gst": "gst_filing",
    "itr": "income_tax_return",
    "roc": "compliance",
    "other": "other",
}


def obligation_type_for(category: str) -> str:
    return CATEGORY_TO_TYPE.get(category, "other")


@dataclass
class ObligationInput:
    """Fields for an obligation created directly by a user."""

    firm_id: UUID
    title: str
    due_date: date
    assigned_by: UUID
    category: str = "other"
    description: str | None = None
    priority: str = "medium"
    assigned_to: UUID | None = None
    client_id: UUID | None = None
    billable: bool = False
    fixed_price: Decimal | None = None
    collaborators: list[UUID] = field(default_factory=list)
    subtasks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CompletionResult:
    """Outcome of completing an obligation."""

    obligation: Obligation
    quote: BillingDocument | None = None
    quote_created: bool = False


class ObligationService:
    """Service for obligation lifecycle.

    Completing a billable obligation raises its quotation through the
    billing service. Archival is independent of status.
    """

    def __init__(
        self,
        session: AsyncSession,
        billing: BillingDocumentService | None = None,
        emitter: AsyncEventEmitter | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.billing = billing
        self.emitter = emitter
        self.today = today

    async def get_obligation(self, obligation_id: UUID, firm_id: UUID | None = None) -> Obligation:
        stmt = select(Obligation).where(Obligation.obligation_id == obligation_id)
        if firm_id is not None:
            stmt = stmt.where(Obligation.firm_id == firm_id)
        obligation = (await self.session.execute(stmt)).scalar_one_or_none()
        if obligation is None:
            raise NotFoundError("obligation", obligation_id)
        return obligation

    async def create_obligation(self, data: ObligationInput) -> Obligation:
        """Create a one-off obligation."""
        if not data.title or not data.title.strip():
            raise ValidationError("title is required", "title")
        if data.priority not in PRIORITIES:
            raise ValidationError(f"unknown priority '{data.priority}'", "priority")
        if data.fixed_price is not None and data.fixed_price < 0:
            raise ValidationError("fixed price cannot be negative", "fixed_price")

        obligation = Obligation(
            firm_id=data.firm_id,
            title=data.title.strip(),
            description=data.description,
            category=data.category,
            obligation_type=obligation_type_for(data.category),
            priority=data.priority,
            status=ObligationStatus.TODO.value,
            due_date=data.due_date,
            billable=data.billable,
            fixed_price=data.fixed_price,
            is_recurring=False,
            assigned_to=data.assigned_to or data.assigned_by,
            assigned_by=data.assigned_by,
            client_id=data.client_id,
            collaborators=[str(c) for c in data.collaborators],
            custom_fields={"subtasks": list(data.subtasks)} if data.subtasks else {},
            is_archived=False,
        )
        self.session.add(obligation)
        await self.session.flush()

        await self._emit(
            ObligationCreated(
                metadata=EventMetadata.create(
                    firm_id=obligation.firm_id,
                    actor_id=data.assigned_by,
                    source_service="obligations",
                ),
                obligation_id=obligation.obligation_id,
                title=obligation.title,
                assigned_to=obligation.assigned_to,
            )
        )
        return obligation

    async def update_status(
        self,
        obligation_id: UUID,
        status: str,
        actor_id: UUID,
        firm_id: UUID | None = None,
    ) -> CompletionResult:
        """Set an obligation's status.

        Moving into ``completed`` stamps the completion date and, for
        billable obligations, raises the quotation.
        """
        try:
            new_status = ObligationStatus(status)
        except ValueError:
            raise ValidationError(f"unknown obligation status '{status}'", "status") from None

        obligation = await self.get_obligation(obligation_id, firm_id)
        old_status = obligation.status
        result = CompletionResult(obligation=obligation)
        if old_status == new_status:
            return result

        obligation.status = new_status.value
        if new_status == ObligationStatus.COMPLETED:
            obligation.completed_date = utcnow()
        elif old_status == ObligationStatus.COMPLETED:
            obligation.completed_date = None
        await self.session.flush()

        if new_status == ObligationStatus.COMPLETED and obligation.billable:
            if self.billing is None:
                logger.warning(
                    "Obligation %s is billable but no billing service is configured",
                    obligation.obligation_id,
                )
            else:
                result.quote, result.quote_created = (
                    await self.billing.create_quote_for_obligation(obligation, actor_id)
                )

        await self._emit(
            ObligationStatusChanged(
                metadata=EventMetadata.create(
                    firm_id=obligation.firm_id,
                    actor_id=actor_id,
                    source_service="obligations",
                ),
                obligation_id=obligation.obligation_id,
                from_status=old_status,
                to_status=obligation.status,
                assigned_by=obligation.assigned_by,
            )
        )
        return result

    async def complete_obligation(
        self,
        obligation_id: UUID,
        actor_id: UUID,
        firm_id: UUID | None = None,
    ) -> CompletionResult:
        """Mark an obligation completed, raising its quotation if billable.

        Completing an already completed obligation changes nothing and
        returns the existing quotation, if any.
        """
        obligation = await self.get_obligation(obligation_id, firm_id)
        if obligation.status == ObligationStatus.CANCELLED:
            raise ValidationError("cancelled obligations cannot be completed", "status")
        if obligation.status == ObligationStatus.COMPLETED:
            quote = None
            if self.billing is not None:
                quote = await self.billing.find_quote_for_obligation(obligation_id)
            return CompletionResult(obligation=obligation, quote=quote)
        return await self.update_status(
            obligation_id, ObligationStatus.COMPLETED.value, actor_id, firm_id
        )

    async def archive_obligation(
        self,
        obligation_id: UUID,
        actor_id: UUID,
        firm_id: UUID | None = None,
    ) -> Obligation:
        obligation = await self.get_obligation(obligation_id, firm_id)
        if obligation.is_archived:
            return obligation
        obligation.is_archived = True
        obligation.archived_at = utcnow()
        obligation.archived_by = actor_id
        await self.session.flush()
        await self._emit_archived(obligation, actor_id, archived=True)
        return obligation

    async def unarchive_obligation(
        self,
        obligation_id: UUID,
        actor_id: UUID,
        firm_id: UUID | None = None,
    ) -> Obligation:
        obligation = await self.get_obligation(obligation_id, firm_id)
        if not obligation.is_archived:
            return obligation
        obligation.is_archived = False
        obligation.archived_at = None
        obligation.archived_by = None
        await self.session.flush()
        await self._emit_archived(obligation, actor_id, archived=False)
        return obligation

    async def _emit_archived(self, obligation: Obligation, actor_id: UUID, archived: bool) -> None:
        await self._emit(
            ObligationArchived(
                metadata=EventMetadata.create(
                    firm_id=obligation.firm_id,
                    actor_id=actor_id,
                    source_service="obligations",
                ),
                obligation_id=obligation.obligation_id,
                archived=archived,
            )
        )

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
