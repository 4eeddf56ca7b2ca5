"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from compliance_billing.models import BillingDocument
from compliance_billing.services.state_machine import EffectiveStatus


class ErrorResponse(BaseModel):
    """Error body returned for domain errors."""

    detail: str
    code: str
    field: str | None = None


# ============================================================================
# Recurring generation
# ============================================================================


class GenerateRecurringRequest(BaseModel):
    """Defaults to today when no date is given."""

    as_of_date: date | None = None


class SkippedTemplateResponse(BaseModel):
    template_id: UUID
    title: str
    reason: str


class GenerateRecurringResponse(BaseModel):
    created_ids: list[UUID]
    skipped: list[SkippedTemplateResponse]
    generated_count: int
    message: str


# ============================================================================
# Obligation schemas
# ============================================================================


class SubtaskIn(BaseModel):
    title: str
    description: str | None = None
    order: int = 0
    estimated_hours: Decimal | None = None


class ObligationCreate(BaseModel):
    """Schema for creating a one-off obligation."""

    title: str = Field(min_length=1, max_length=200)
    due_date: date
    category: Literal["gst", "itr", "roc", "other"] = "other"
    description: str | None = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    assigned_to: UUID | None = None
    client_id: UUID | None = None
    billable: bool = False
    fixed_price: Decimal | None = None
    collaborators: list[UUID] = Field(default_factory=list)
    subtasks: list[SubtaskIn] = Field(default_factory=list)


class ObligationStatusUpdate(BaseModel):
    status: str


class ObligationResponse(BaseModel):
    """Schema for obligation response."""

    model_config = ConfigDict(from_attributes=True)

    obligation_id: UUID
    firm_id: UUID
    title: str
    description: str | None = None
    category: str
    obligation_type: str
    priority: str
    status: str
    due_date: date
    completed_date: datetime | None = None
    billable: bool
    fixed_price: Decimal | None = None
    is_recurring: bool
    template_id: UUID | None = None
    period_key: str | None = None
    assigned_to: UUID | None = None
    assigned_by: UUID
    client_id: UUID | None = None
    is_archived: bool
    archived_at: datetime | None = None
    archived_by: UUID | None = None
    created_at: datetime


# ============================================================================
# Billing document schemas
# ============================================================================


class LineItemIn(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    rate: Decimal = Decimal("0")
    amount: Decimal | None = None
    taxable: bool = True
    tax_rate: Decimal | None = None
    hsn: str | None = None


class DiscountIn(BaseModel):
    type: Literal["percentage", "flat"] = "percentage"
    value: Decimal = Decimal("0")


class BillingDocumentCreate(BaseModel):
    """Schema for creating a billing document.

    ``subtotal``, ``tax_amount`` and ``total_amount`` are overrides: when
    given they replace the computed value.
    """

    client_id: UUID | None = None
    kind: Literal["quotation", "invoice", "proforma"] = "invoice"
    items: list[LineItemIn] = Field(default_factory=list)
    discount: DiscountIn = Field(default_factory=DiscountIn)
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    gst_applicable: bool = True
    gst_rate: Decimal | None = None
    is_interstate: bool | None = None
    issue_date: date | None = None
    due_date: date | None = None
    related_obligation_id: UUID | None = None
    notes: str | None = None


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    taxable: bool
    tax_rate: Decimal | None = None
    hsn: str | None = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: UUID
    sequence: int
    amount: Decimal
    method: str
    reference: str | None = None
    notes: str | None = None
    recorded_by: UUID
    recorded_at: datetime


class BillingDocumentResponse(BaseModel):
    """Schema for billing document response."""

    model_config = ConfigDict(from_attributes=True)

    document_id: UUID
    firm_id: UUID
    document_number: str
    kind: str
    status: str
    document_type: str
    effective_status: str
    is_overdue: bool = False
    days_overdue: int = 0
    client_id: UUID
    related_obligation_id: UUID | None = None
    issue_date: date
    due_date: date
    paid_date: date | None = None
    subtotal: Decimal
    discount_type: str
    discount_value: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    gst_applicable: bool
    gst_rate: Decimal | None = None
    is_interstate: bool
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    admin_approval_status: str
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    gateway_link_id: str | None = None
    gateway_order_id: str | None = None
    gateway_short_url: str | None = None
    gateway_status: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    notes: str | None = None
    version: int
    items: list[LineItemResponse]
    payments: list[PaymentResponse]

    @classmethod
    def from_document(
        cls, document: BillingDocument, effective: EffectiveStatus
    ) -> "BillingDocumentResponse":
        data = {
            name: getattr(document, name)
            for name in cls.model_fields
            if name not in {"effective_status", "is_overdue", "days_overdue", "items", "payments"}
        }
        return cls(
            **data,
            effective_status=effective.status,
            is_overdue=effective.is_overdue,
            days_overdue=effective.days_overdue,
            items=[LineItemResponse.model_validate(i) for i in document.items],
            payments=[PaymentResponse.model_validate(p) for p in document.payments],
        )


class BillingDocumentListResponse(BaseModel):
    items: list[BillingDocumentResponse]
    total: int
    limit: int
    offset: int


class CompleteObligationResponse(BaseModel):
    obligation: ObligationResponse
    quote: BillingDocumentResponse | None = None
    quote_created: bool = False


class PaymentCreate(BaseModel):
    """Schema for recording a payment."""

    amount: Decimal
    method: Literal["cash", "cheque", "bank_transfer", "online", "upi"]
    reference: str | None = None
    notes: str | None = None


class TransitionRequest(BaseModel):
    target: str
    reason: str | None = None


class RejectQuoteRequest(BaseModel):
    reason: str = Field(min_length=1)


class PaymentLinkResponse(BaseModel):
    success: bool
    link_id: str | None = None
    short_url: str | None = None
    order_id: str | None = None
    error_kind: str | None = None
    message: str = ""
