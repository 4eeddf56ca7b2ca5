"""Obligation (work item) model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance_billing.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from compliance_billing.models.template import RecurringTemplate


class Obligation(Base, TimestampMixin):
    """One instance of compliance work, generated from a template or created directly."""

    __tablename__ = "obligation"

    obligation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, default="other")
    obligation_type: Mapped[str] = mapped_column(String, nullable=False, default="other")
    priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String, nullable=False, default="todo")

    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Billing
    billable: Mapped[bool] = mapped_column(default=False, nullable=False)
    fixed_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(default=False, nullable=False)
    template_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("recurring_template.template_id"),
        nullable=True,
    )
    period_key: Mapped[str | None] = mapped_column(String, nullable=True)

    # People
    assigned_to: Mapped[UUID | None] = mapped_column(nullable=True)
    assigned_by: Mapped[UUID] = mapped_column(nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(nullable=True)
    collaborators: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    custom_fields: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    # Archival is orthogonal to status
    is_archived: Mapped[bool] = mapped_column(default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    archived_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "template_id", "period_key", name="obligation_template_period_unique"
        ),
        CheckConstraint(
            "status IN ('todo', 'inprogress', 'review', 'completed', 'cancelled')",
            name="obligation_status_check",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="obligation_priority_check",
        ),
        CheckConstraint(
            "fixed_price IS NULL OR fixed_price >= 0",
            name="obligation_fixed_price_check",
        ),
        Index("ix_obligation_template_created", "template_id", "created_at"),
        Index("ix_obligation_firm_status", "firm_id", "status"),
    )

    # Relationships
    template: Mapped[RecurringTemplate | None] = relationship(lazy="raise")

    @property
    def subtasks(self) -> list[dict[str, Any]]:
        return list((self.custom_fields or {}).get("subtasks", []))
