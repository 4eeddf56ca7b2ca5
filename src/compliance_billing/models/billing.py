"""Billing document, line item and payment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance_billing.models.base import Base, TimestampMixin, utcnow

QUOTE_STATUSES = ("quote_draft", "quote_ready")


class BillingDocument(Base, TimestampMixin):
    """Quotation, invoice or proforma with GST math and payment tracking.

    ``kind`` and ``status`` are the only stored lifecycle fields. The legacy
    ``type`` tag is derived by :attr:`document_type`.
    """

    __tablename__ = "billing_document"

    document_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(nullable=False)
    document_number: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False, default="invoice")
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    created_by: Mapped[UUID] = mapped_column(nullable=False)
    related_obligation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("obligation.obligation_id"),
        nullable=True,
    )

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    discount_type: Mapped[str] = mapped_column(String, nullable=False, default="percentage")
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )

    # GST
    gst_applicable: Mapped[bool] = mapped_column(default=True, nullable=False)
    gst_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    is_interstate: Mapped[bool] = mapped_column(default=False, nullable=False)
    cgst: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    # Admin approval
    admin_approval_status: Mapped[str] = mapped_column(
        String, nullable=False, default="not_required"
    )
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Gateway data
    gateway_link_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_short_url: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_status: Mapped[str | None] = mapped_column(String, nullable=True)

    collection_method: Mapped[str] = mapped_column(String, nullable=False, default="account_1")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("firm_id", "document_number", name="billing_document_number_unique"),
        CheckConstraint(
            "kind IN ('quotation', 'invoice', 'proforma')",
            name="billing_document_kind_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'quote_draft', 'quote_ready', 'sent', 'paid', "
            "'partially_paid', 'cancelled')",
            name="billing_document_status_check",
        ),
        CheckConstraint(
            "discount_type IN ('percentage', 'flat')",
            name="billing_document_discount_type_check",
        ),
        CheckConstraint(
            "admin_approval_status IN ('pending', 'approved', 'rejected', 'not_required')",
            name="billing_document_approval_check",
        ),
        CheckConstraint("paid_amount >= 0", name="billing_document_paid_check"),
        Index(
            "uq_billing_document_obligation_quote",
            "related_obligation_id",
            unique=True,
            postgresql_where=text("kind = 'quotation'"),
            sqlite_where=text("kind = 'quotation'"),
        ),
        Index("ix_billing_document_firm_status", "firm_id", "status"),
    )

    # Relationships
    items: Mapped[list[BillingDocumentItem]] = relationship(
        back_populates="document",
        order_by="BillingDocumentItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    payments: Mapped[list[BillingPayment]] = relationship(
        back_populates="document",
        order_by="BillingPayment.sequence",
        cascade="save-update, merge",
        lazy="selectin",
    )

    @property
    def document_type(self) -> str:
        """Legacy type tag, derived so it can never drift from status."""
        if self.kind == "quotation" and self.status in QUOTE_STATUSES:
            return self.status
        return self.kind

    @property
    def has_payment_link(self) -> bool:
        return self.gateway_link_id is not None


class BillingDocumentItem(Base):
    """Line item of a billing document."""

    __tablename__ = "billing_document_item"

    item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_document.document_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    taxable: Mapped[bool] = mapped_column(default=True, nullable=False)
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    hsn: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("document_id", "position", name="billing_document_item_position_unique"),
    )

    document: Mapped[BillingDocument] = relationship(back_populates="items")


class BillingPayment(Base):
    """One recorded payment. Rows are inserted, never updated or deleted."""

    __tablename__ = "billing_payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_document.document_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    method: Mapped[str] = mapped_column(String, nullable=False)
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[UUID] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("document_id", "sequence", name="billing_payment_sequence_unique"),
        CheckConstraint("amount > 0", name="billing_payment_amount_check"),
        CheckConstraint(
            "method IN ('cash', 'cheque', 'bank_transfer', 'online', 'upi')",
            name="billing_payment_method_check",
        ),
    )

    document: Mapped[BillingDocument] = relationship(back_populates="payments")
