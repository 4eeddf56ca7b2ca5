"""Domain event types for the obligation and billing workflow.

All events are immutable frozen dataclasses carrying an
:class:`EventMetadata`. They are published through the emitter and
fanned out to the notification dispatcher.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    OBLIGATION = "obligation"
    BILLING = "billing"
    PAYMENT = "payment"
    GATEWAY = "gateway"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    firm_id: UUID
    actor_id: UUID | None
    actor_type: str  # 'user', 'system', 'scheduler'
    source_service: str

    @classmethod
    def create(
        cls,
        firm_id: UUID,
        actor_id: UUID | None = None,
        actor_type: str = "user",
        source_service: str = "billing",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            firm_id=firm_id,
            actor_id=actor_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        raise NotImplementedError("Subclasses must define category")

    @property
    def entity_kind(self) -> str:
        """Kind of entity this event is about, used for broadcasts."""
        return "billing_document"

    @property
    def entity_id(self) -> UUID:
        raise NotImplementedError("Subclasses must define entity_id")

    @property
    def action(self) -> str:
        """Broadcast action verb."""
        return "updated"

    def payload(self) -> dict[str, Any]:
        """Event fields without metadata, JSON compatible."""
        data = self.to_dict()
        data.pop("metadata", None)
        return data

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return _serialize_dict(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Obligation Events
# =============================================================================


@dataclass(frozen=True)
class ObligationGenerated(DomainEvent):
    """The scheduler emitted an obligation from a recurring template."""

    obligation_id: UUID
    template_id: UUID
    period_key: str
    due_date: date
    assigned_to: UUID | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.OBLIGATION

    @property
    def entity_kind(self) -> str:
        return "obligation"

    @property
    def entity_id(self) -> UUID:
        return self.obligation_id

    @property
    def action(self) -> str:
        return "created"


@dataclass(frozen=True)
class ObligationCreated(DomainEvent):
    """An obligation was created directly, outside the scheduler."""

    obligation_id: UUID
    title: str
    assigned_to: UUID | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.OBLIGATION

    @property
    def entity_kind(self) -> str:
        return "obligation"

    @property
    def entity_id(self) -> UUID:
        return self.obligation_id

    @property
    def action(self) -> str:
        return "created"


@dataclass(frozen=True)
class ObligationStatusChanged(DomainEvent):
    """An obligation moved between workflow statuses."""

    obligation_id: UUID
    from_status: str
    to_status: str
    assigned_by: UUID | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.OBLIGATION

    @property
    def entity_kind(self) -> str:
        return "obligation"

    @property
    def entity_id(self) -> UUID:
        return self.obligation_id


@dataclass(frozen=True)
class ObligationArchived(DomainEvent):
    """An obligation was archived or restored."""

    obligation_id: UUID
    archived: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.OBLIGATION

    @property
    def entity_kind(self) -> str:
        return "obligation"

    @property
    def entity_id(self) -> UUID:
        return self.obligation_id

    @property
    def action(self) -> str:
        return "archived" if self.archived else "unarchived"


# =============================================================================
# Billing Events
# =============================================================================


@dataclass(frozen=True)
class BillingDocumentCreated(DomainEvent):
    """A billing document was created."""

    document_id: UUID
    document_number: str
    kind: str
    status: str
    client_id: UUID
    total_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.BILLING

    @property
    def entity_id(self) -> UUID:
        return self.document_id

    @property
    def action(self) -> str:
        return "created"


@dataclass(frozen=True)
class QuoteDraftCreated(DomainEvent):
    """A draft quotation was raised for a completed billable obligation."""

    document_id: UUID
    document_number: str
    obligation_id: UUID
    total_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.BILLING

    @property
    def entity_id(self) -> UUID:
        return self.document_id

    @property
    def action(self) -> str:
        return "created"


@dataclass(frozen=True)
class DocumentStatusChanged(DomainEvent):
    """A billing document moved between lifecycle statuses."""

    document_id: UUID
    document_number: str
    from_status: str
    to_status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.BILLING

    @property
    def entity_id(self) -> UUID:
        return self.document_id


@dataclass(frozen=True)
class DocumentCancelled(DomainEvent):
    """A billing document was cancelled. Terminal."""

    document_id: UUID
    document_number: str
    from_status: str
    reason: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.BILLING

    @property
    def entity_id(self) -> UUID:
        return self.document_id

    @property
    def action(self) -> str:
        return "cancelled"


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentRecorded(DomainEvent):
    """A payment was appended to a billing document."""

    document_id: UUID
    payment_id: UUID
    amount: Decimal
    method: str
    paid_amount: Decimal
    balance_amount: Decimal
    status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT

    @property
    def entity_id(self) -> UUID:
        return self.document_id


# =============================================================================
# Gateway Events
# =============================================================================


@dataclass(frozen=True)
class PaymentLinkAttached(DomainEvent):
    """The gateway returned a payment link and it was stored on the document."""

    document_id: UUID
    link_id: str
    short_url: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.GATEWAY

    @property
    def entity_id(self) -> UUID:
        return self.document_id


@dataclass(frozen=True)
class PaymentLinkFailed(DomainEvent):
    """A payment link request failed. The document carries on without one."""

    document_id: UUID
    error_kind: str
    message: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.GATEWAY

    @property
    def entity_id(self) -> UUID:
        return self.document_id
