"""Workflow domain events package."""

from compliance_billing.events.emitter import (
    AsyncEventEmitter,
    EventCollector,
    Handler,
)
from compliance_billing.events.types import (
    BillingDocumentCreated,
    DocumentCancelled,
    DocumentStatusChanged,
    DomainEvent,
    EventCategory,
    EventMetadata,
    ObligationArchived,
    ObligationCreated,
    ObligationGenerated,
    ObligationStatusChanged,
    PaymentLinkAttached,
    PaymentLinkFailed,
    PaymentRecorded,
    QuoteDraftCreated,
)

__all__ = [
    # Emitter
    "AsyncEventEmitter",
    "EventCollector",
    "Handler",
    # Base
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    # Obligation events
    "ObligationArchived",
    "ObligationCreated",
    "ObligationGenerated",
    "ObligationStatusChanged",
    # Billing events
    "BillingDocumentCreated",
    "DocumentCancelled",
    "DocumentStatusChanged",
    "QuoteDraftCreated",
    # Payment events
    "PaymentRecorded",
    "PaymentLinkAttached",
    "PaymentLinkFailed",
]
