"""ORM models for the compliance billing engine."""

from compliance_billing.models.base import Base, TimestampMixin
from compliance_billing.models.billing import (
    BillingDocument,
    BillingDocumentItem,
    BillingPayment,
)
from compliance_billing.models.obligation import Obligation
from compliance_billing.models.template import RecurringTemplate

__all__ = [
    "Base",
    "TimestampMixin",
    "BillingDocument",
    "BillingDocumentItem",
    "BillingPayment",
    "Obligation",
    "RecurringTemplate",
]
