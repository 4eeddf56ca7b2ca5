"""Recurring obligation template model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance_billing.models.base import Base, JSONType, TimestampMixin, utcnow


class RecurringTemplate(Base, TimestampMixin):
    """Reusable definition of a recurring compliance obligation.

    Templates are soft-deleted only. The recurrence scheduler bumps
    ``usage_count`` and ``last_used`` every time it emits an obligation.
    """

    __tablename__ = "recurring_template"

    template_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    firm_id: Mapped[UUID] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False)

    is_recurring: Mapped[bool] = mapped_column(default=False, nullable=False)
    recurrence_pattern: Mapped[str | None] = mapped_column(String, nullable=True)

    is_payable: Mapped[bool] = mapped_column(default=False, nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    assigned_employee_id: Mapped[UUID | None] = mapped_column(nullable=True)
    client_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_by: Mapped[UUID] = mapped_column(nullable=False)

    subtasks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(default=False, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "category IN ('gst', 'itr', 'roc', 'other')",
            name="recurring_template_category_check",
        ),
        CheckConstraint(
            "price IS NULL OR price >= 0",
            name="recurring_template_price_check",
        ),
        Index("ix_recurring_template_firm_active", "firm_id", "is_active", "is_deleted"),
    )

    def increment_usage(self) -> None:
        """Record one emission from this template."""
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used = utcnow()

    def soft_delete(self) -> None:
        self.is_deleted = True
        self.is_active = False
