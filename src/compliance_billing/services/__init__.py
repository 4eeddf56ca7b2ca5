"""Business logic services."""

from compliance_billing.services.billing_service import (
    BillingDocumentService,
    DocumentInput,
    PaymentInput,
    retry_on_conflict,
)
from compliance_billing.services.obligation_service import (
    CompletionResult,
    ObligationInput,
    ObligationService,
    ObligationStatus,
)
from compliance_billing.services.recurrence_scheduler import (
    GenerationResult,
    NotYetSupported,
    RecurrenceScheduler,
    SkipReason,
    SkippedTemplate,
    due_date_for,
    period_window,
)
from compliance_billing.services.state_machine import (
    ApprovalStatus,
    DocumentKind,
    DocumentStateMachine,
    DocumentStatus,
    EffectiveStatus,
)

__all__ = [
    "ApprovalStatus",
    "BillingDocumentService",
    "CompletionResult",
    "DocumentInput",
    "DocumentKind",
    "DocumentStateMachine",
    "DocumentStatus",
    "EffectiveStatus",
    "GenerationResult",
    "NotYetSupported",
    "ObligationInput",
    "ObligationService",
    "ObligationStatus",
    "PaymentInput",
    "RecurrenceScheduler",
    "SkipReason",
    "SkippedTemplate",
    "due_date_for",
    "period_window",
    "retry_on_conflict",
]
