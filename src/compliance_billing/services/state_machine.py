"""Billing document state machine with transition validation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from compliance_billing.errors import InvalidTransitionError

if TYPE_CHECKING:
    from compliance_billing.models import BillingDocument


class DocumentStatus(str, Enum):
    """Billing document status values.

    OVERDUE is never stored. It is reported by :meth:`DocumentStateMachine.
    effective_status` for documents past their due date.
    """

    DRAFT = "draft"
    QUOTE_DRAFT = "quote_draft"
    QUOTE_READY = "quote_ready"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class DocumentKind(str, Enum):
    QUOTATION = "quotation"
    INVOICE = "invoice"
    PROFORMA = "proforma"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_REQUIRED = "not_required"


PAYMENT_EPSILON = Decimal("0.01")


@dataclass(frozen=True)
class EffectiveStatus:
    """Status as seen by readers, with the overdue view applied."""

    status: str
    is_overdue: bool = False
    days_overdue: int = 0


class DocumentStateMachine:
    """State machine for billing document status transitions.

    Allowed transitions:
    - draft → sent | cancelled
    - quote_draft → quote_ready | cancelled
    - quote_ready → sent | partially_paid | paid | cancelled
    - sent → partially_paid | paid | cancelled
    - partially_paid → partially_paid | paid | cancelled
    - paid, cancelled: terminal

    partially_paid and paid are reached only by recording payments.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        DocumentStatus.DRAFT: [DocumentStatus.SENT, DocumentStatus.CANCELLED],
        DocumentStatus.QUOTE_DRAFT: [DocumentStatus.QUOTE_READY, DocumentStatus.CANCELLED],
        DocumentStatus.QUOTE_READY: [
            DocumentStatus.SENT,
            DocumentStatus.PARTIALLY_PAID,
            DocumentStatus.PAID,
            DocumentStatus.CANCELLED,
        ],
        DocumentStatus.SENT: [
            DocumentStatus.PARTIALLY_PAID,
            DocumentStatus.PAID,
            DocumentStatus.CANCELLED,
        ],
        DocumentStatus.PARTIALLY_PAID: [
            DocumentStatus.PARTIALLY_PAID,
            DocumentStatus.PAID,
            DocumentStatus.CANCELLED,
        ],
        DocumentStatus.PAID: [],  # Terminal state
        DocumentStatus.CANCELLED: [],  # Terminal state
    }

    # Targets that only a recorded payment may reach
    PAYMENT_DRIVEN = {DocumentStatus.PARTIALLY_PAID, DocumentStatus.PAID}

    # Statuses in which payments are accepted
    PAYABLE = {
        DocumentStatus.QUOTE_READY,
        DocumentStatus.SENT,
        DocumentStatus.PARTIALLY_PAID,
    }

    TERMINAL = {DocumentStatus.PAID, DocumentStatus.CANCELLED}

    # Every status except paid and cancelled can be reported as overdue
    OVERDUE_ELIGIBLE = {
        DocumentStatus.DRAFT,
        DocumentStatus.QUOTE_DRAFT,
        DocumentStatus.QUOTE_READY,
        DocumentStatus.SENT,
        DocumentStatus.PARTIALLY_PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if to_status == DocumentStatus.OVERDUE:
            raise InvalidTransitionError(
                from_status, to_status, "overdue is derived from the due date"
            )
        if cls.is_terminal(from_status):
            raise InvalidTransitionError(from_status, to_status, "document is in a terminal state")
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def validate_manual_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition requested directly rather than by a payment."""
        cls.validate_transition(from_status, to_status)
        if to_status in cls.PAYMENT_DRIVEN:
            raise InvalidTransitionError(
                from_status, to_status, "payment statuses are reached by recording payments"
            )

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def can_accept_payment(cls, status: str) -> bool:
        return status in cls.PAYABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return [s.value for s in cls.VALID_TRANSITIONS.get(current_status, [])]

    @classmethod
    def status_after_payment(
        cls,
        total_amount: Decimal,
        paid_amount: Decimal,
        epsilon: Decimal = PAYMENT_EPSILON,
    ) -> str | None:
        """Status implied by the paid amount, or None if nothing is paid yet."""
        if paid_amount >= total_amount - epsilon:
            return DocumentStatus.PAID.value
        if paid_amount > 0:
            return DocumentStatus.PARTIALLY_PAID.value
        return None

    @classmethod
    def effective_status(cls, document: BillingDocument, today: date) -> EffectiveStatus:
        """Status with the overdue view applied for ``today``."""
        status = document.status
        if status in cls.OVERDUE_ELIGIBLE and document.due_date and today > document.due_date:
            return EffectiveStatus(
                status=DocumentStatus.OVERDUE.value,
                is_overdue=True,
                days_overdue=(today - document.due_date).days,
            )
        return EffectiveStatus(status=status)

    @classmethod
    def validate_document_for_transition(
        cls, document: BillingDocument, to_status: str
    ) -> list[str]:
        """Validate a document for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = document.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == DocumentStatus.QUOTE_READY:
            if document.kind != DocumentKind.QUOTATION:
                errors.append("Only quotations can become quote_ready")
            if document.total_amount <= 0:
                errors.append("Quotation total must be positive")

        elif to_status == DocumentStatus.SENT:
            if not document.items:
                errors.append("Document has no line items")
            if document.admin_approval_status == ApprovalStatus.REJECTED:
                errors.append("Rejected quotations cannot be sent")

        return errors
