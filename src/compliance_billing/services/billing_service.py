"""Billing document service - drives documents through their lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from compliance_billing.calculators import (
    COMPUTED,
    DiscountTerms,
    DiscountType,
    LineItem,
    Provided,
    TotalsOverrides,
    build_quote_items,
    compute_balance,
    compute_totals,
    quantize_money,
    split_gst,
)
from compliance_billing.config import Settings, get_settings
from compliance_billing.directory import Directory, is_interstate
from compliance_billing.errors import (
    ConcurrencyConflict,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from compliance_billing.events import (
    AsyncEventEmitter,
    BillingDocumentCreated,
    DocumentCancelled,
    DocumentStatusChanged,
    DomainEvent,
    EventMetadata,
    PaymentLinkAttached,
    PaymentLinkFailed,
    PaymentRecorded,
    QuoteDraftCreated,
)
from compliance_billing.gateway import LinkResult, PaymentGatewayAdapter, PaymentLinkRequest
from compliance_billing.models import (
    BillingDocument,
    BillingDocumentItem,
    BillingPayment,
    Obligation,
)
from compliance_billing.models.base import utcnow
from compliance_billing.services.state_machine import (
    ApprovalStatus,
    DocumentKind,
    DocumentStateMachine,
    DocumentStatus,
    EffectiveStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NUMBER_PREFIXES = {
    DocumentKind.QUOTATION.value: "QUO",
    DocumentKind.INVOICE.value: "INV",
    DocumentKind.PROFORMA.value: "PRO",
}
PAYMENT_METHODS = {"cash", "cheque", "bank_transfer", "online", "upi"}
NUMBER_ATTEMPTS = 3


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    entity: str,
    entity_id: UUID,
    attempts: int = 2,
) -> T:
    """Run ``operation``, retrying after an optimistic-lock failure.

    ``operation`` must re-read the row it mutates. After the last attempt
    the failure surfaces as :class:`ConcurrencyConflict`.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except StaleDataError as e:
            if attempt >= attempts:
                raise ConcurrencyConflict(entity, entity_id, str(e)) from e
            logger.info(
                "Version conflict on %s %s, retrying (attempt %d/%d)",
                entity,
                entity_id,
                attempt,
                attempts,
            )
    raise AssertionError("unreachable")


@dataclass
class DocumentInput:
    """Everything needed to create a billing document."""

    firm_id: UUID
    client_id: UUID | None
    created_by: UUID
    items: list[LineItem]
    kind: str = DocumentKind.INVOICE.value
    discount: DiscountTerms = field(default_factory=DiscountTerms)
    overrides: TotalsOverrides = field(default_factory=TotalsOverrides)
    gst_applicable: bool = True
    gst_rate: Decimal | None = None
    is_interstate: bool | None = None  # None = derive from directory
    issue_date: date | None = None
    due_date: date | None = None
    related_obligation_id: UUID | None = None
    collection_method: str = "account_1"
    notes: str | None = None


@dataclass
class PaymentInput:
    """A single payment against a billing document."""

    amount: Decimal
    method: str
    recorded_by: UUID
    reference: str | None = None
    notes: str | None = None


class BillingDocumentService:
    """Service for billing document lifecycle.

    Operations:
    - create_document: compute totals and GST split, assign a number
    - create_quote_for_obligation: raise the quote for a completed obligation
    - transition_document: validated manual status changes
    - record_payment: append a payment and derive paid/partially_paid
    - request_payment_link: ask the gateway for a link, never blocking

    Gateway calls are made with no pending writes. Anything staged in the
    session is committed first and the document is re-read afterwards.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGatewayAdapter,
        emitter: AsyncEventEmitter | None = None,
        directory: Directory | None = None,
        settings: Settings | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.gateway = gateway
        self.emitter = emitter
        self.directory = directory
        self.settings = settings or get_settings()
        self.today = today

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_document(
        self,
        document_id: UUID,
        firm_id: UUID | None = None,
        refresh: bool = False,
    ) -> BillingDocument:
        """Load a document, raising NotFoundError if absent or outside the firm."""
        stmt = select(BillingDocument).where(BillingDocument.document_id == document_id)
        if firm_id is not None:
            stmt = stmt.where(BillingDocument.firm_id == firm_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("billing_document", document_id)
        return document

    async def list_documents(
        self,
        firm_id: UUID,
        status: str | None = None,
        kind: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BillingDocument], int]:
        """List a firm's documents, newest first.

        ``status="overdue"`` selects documents whose overdue view applies.
        """
        stmt = select(BillingDocument).where(BillingDocument.firm_id == firm_id)
        if status == DocumentStatus.OVERDUE:
            stmt = stmt.where(
                BillingDocument.status.in_([s.value for s in DocumentStateMachine.OVERDUE_ELIGIBLE]),
                BillingDocument.due_date < self.today(),
            )
        elif status is not None:
            stmt = stmt.where(BillingDocument.status == status)
        if kind is not None:
            stmt = stmt.where(BillingDocument.kind == kind)

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.session.execute(
            stmt.order_by(BillingDocument.created_at.desc(), BillingDocument.document_number.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    def effective_status(self, document: BillingDocument) -> EffectiveStatus:
        return DocumentStateMachine.effective_status(document, self.today())

    async def find_quote_for_obligation(self, obligation_id: UUID) -> BillingDocument | None:
        result = await self.session.execute(
            select(BillingDocument).where(
                BillingDocument.related_obligation_id == obligation_id,
                BillingDocument.kind == DocumentKind.QUOTATION.value,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_document(
        self,
        data: DocumentInput,
        initial_status: str | None = None,
        approval_status: str | None = None,
    ) -> BillingDocument:
        """Create a billing document with computed totals.

        Quotations start in quote_draft, everything else in draft.

        Raises:
            ValidationError: Missing client, bad items or discount, or the
                obligation already has a quotation.
        """
        if data.client_id is None:
            raise ValidationError("client is required", "client_id")
        if data.kind not in NUMBER_PREFIXES:
            raise ValidationError(f"unknown document kind '{data.kind}'", "kind")
        if not data.items:
            raise ValidationError("at least one line item is required", "items")

        is_quote = data.kind == DocumentKind.QUOTATION
        if is_quote and data.related_obligation_id is not None:
            if await self.find_quote_for_obligation(data.related_obligation_id):
                raise ValidationError(
                    "obligation already has a quotation", "related_obligation_id"
                )

        default_rate = data.gst_rate if data.gst_rate is not None else self.settings.default_tax_rate
        overrides = data.overrides
        if not data.gst_applicable and overrides.tax_amount == COMPUTED:
            overrides = TotalsOverrides(
                subtotal=overrides.subtotal,
                tax_amount=Provided(Decimal("0")),
                total_amount=overrides.total_amount,
            )
        totals = compute_totals(data.items, data.discount, overrides, default_rate)

        interstate = data.is_interstate
        if interstate is None:
            interstate = await self._detect_interstate(data.firm_id, data.client_id)
        split = split_gst(totals.tax_amount, interstate)

        issue_date = data.issue_date or self.today()
        due_date = data.due_date or issue_date + timedelta(days=self.settings.gateway.validity_days)
        status = initial_status or (
            DocumentStatus.QUOTE_DRAFT.value if is_quote else DocumentStatus.DRAFT.value
        )
        approval = approval_status or (
            ApprovalStatus.PENDING.value if is_quote else ApprovalStatus.NOT_REQUIRED.value
        )

        def build(number: str) -> BillingDocument:
            return BillingDocument(
                firm_id=data.firm_id,
                document_number=number,
                kind=data.kind,
                status=status,
                client_id=data.client_id,
                created_by=data.created_by,
                related_obligation_id=data.related_obligation_id,
                issue_date=issue_date,
                due_date=due_date,
                subtotal=totals.subtotal,
                discount_type=DiscountType(data.discount.discount_type).value,
                discount_value=quantize_money(data.discount.value),
                discount_amount=totals.discount_amount,
                tax_amount=totals.tax_amount,
                total_amount=totals.total_amount,
                paid_amount=Decimal("0.00"),
                balance_amount=compute_balance(totals.total_amount, Decimal("0")),
                gst_applicable=data.gst_applicable,
                gst_rate=default_rate if data.gst_applicable else None,
                is_interstate=interstate,
                cgst=split.cgst,
                sgst=split.sgst,
                igst=split.igst,
                admin_approval_status=approval,
                collection_method=data.collection_method,
                notes=data.notes,
                items=[
                    BillingDocumentItem(
                        position=position,
                        description=item.description,
                        quantity=item.quantity,
                        rate=item.rate,
                        amount=quantize_money(item.effective_amount),
                        taxable=item.taxable,
                        tax_rate=item.tax_rate,
                        hsn=item.hsn,
                    )
                    for position, item in enumerate(data.items, start=1)
                ],
                payments=[],
            )

        document = await self._insert_numbered(data, build, issue_date)

        await self._emit(
            BillingDocumentCreated(
                metadata=self._metadata(document.firm_id, data.created_by),
                document_id=document.document_id,
                document_number=document.document_number,
                kind=document.kind,
                status=document.status,
                client_id=document.client_id,
                total_amount=document.total_amount,
            )
        )
        return document

    async def create_quote_for_obligation(
        self,
        obligation: Obligation,
        actor_id: UUID,
    ) -> tuple[BillingDocument, bool]:
        """Raise the draft quotation for a completed billable obligation.

        Returns the quotation and whether it was created by this call. An
        obligation never gets more than one quotation.
        """
        existing = await self.find_quote_for_obligation(obligation.obligation_id)
        if existing is not None:
            return existing, False

        issue_date = self.today()
        data = DocumentInput(
            firm_id=obligation.firm_id,
            client_id=obligation.client_id,
            created_by=actor_id,
            kind=DocumentKind.QUOTATION.value,
            items=build_quote_items(
                obligation.title,
                obligation.fixed_price,
                obligation.subtasks,
                self.settings.default_tax_rate,
            ),
            issue_date=issue_date,
            due_date=obligation.due_date or issue_date + timedelta(days=30),
            related_obligation_id=obligation.obligation_id,
            collection_method="account_1" if obligation.billable else "default",
            notes=f"Quotation for {obligation.title}",
        )
        try:
            document = await self.create_document(data)
        except ValidationError:
            # Lost the race to a concurrent completion
            existing = await self.find_quote_for_obligation(obligation.obligation_id)
            if existing is not None:
                return existing, False
            raise

        await self._emit(
            QuoteDraftCreated(
                metadata=self._metadata(document.firm_id, actor_id),
                document_id=document.document_id,
                document_number=document.document_number,
                obligation_id=obligation.obligation_id,
                total_amount=document.total_amount,
            )
        )
        return document, True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition_document(
        self,
        document_id: UUID,
        target: str,
        actor_id: UUID,
        reason: str | None = None,
        firm_id: UUID | None = None,
    ) -> BillingDocument:
        """Move a document to ``target``.

        quote_draft → quote_ready and quote_ready → sent also request a
        payment link when the document has none. A failed link request
        never undoes the transition.

        Raises:
            InvalidTransitionError: The move is not allowed, including any
                move to paid, partially_paid or overdue.
            ConcurrencyConflict: The document kept changing underneath us.
        """

        async def apply() -> tuple[BillingDocument, str]:
            async with self.session.begin_nested():
                document = await self.get_document(document_id, firm_id, refresh=True)
                from_status = document.status
                DocumentStateMachine.validate_manual_transition(from_status, target)
                errors = DocumentStateMachine.validate_document_for_transition(document, target)
                if errors:
                    raise InvalidTransitionError(from_status, target, "; ".join(errors))

                if target == DocumentStatus.QUOTE_READY:
                    document.admin_approval_status = ApprovalStatus.PENDING.value
                elif target == DocumentStatus.SENT and document.kind == DocumentKind.QUOTATION:
                    document.admin_approval_status = ApprovalStatus.APPROVED.value
                    document.approved_by = actor_id
                    document.approved_at = utcnow()
                elif target == DocumentStatus.CANCELLED:
                    document.cancelled_at = utcnow()
                    document.cancel_reason = reason

                document.status = DocumentStatus(target).value
                await self.session.flush()
                return document, from_status

        document, from_status = await retry_on_conflict(apply, "billing_document", document_id)

        if target == DocumentStatus.CANCELLED:
            await self._emit(
                DocumentCancelled(
                    metadata=self._metadata(document.firm_id, actor_id),
                    document_id=document.document_id,
                    document_number=document.document_number,
                    from_status=from_status,
                    reason=reason,
                )
            )
        await self._emit_status_change(document, from_status, actor_id)

        needs_link = target == DocumentStatus.QUOTE_READY or (
            target == DocumentStatus.SENT and from_status == DocumentStatus.QUOTE_READY
        )
        if needs_link and not document.has_payment_link:
            await self.request_payment_link(document.document_id, actor_id, firm_id)
            document = await self.get_document(document_id, firm_id)

        return document

    async def reject_quote(
        self,
        document_id: UUID,
        actor_id: UUID,
        reason: str,
        firm_id: UUID | None = None,
    ) -> BillingDocument:
        """Record an approver's rejection. The quotation is cancelled."""
        if not reason:
            raise ValidationError("rejection requires a reason", "reason")

        async def apply() -> BillingDocument:
            async with self.session.begin_nested():
                document = await self.get_document(document_id, firm_id, refresh=True)
                if document.kind != DocumentKind.QUOTATION:
                    raise InvalidTransitionError(
                        document.status, DocumentStatus.CANCELLED.value, "only quotations need approval"
                    )
                DocumentStateMachine.validate_transition(document.status, DocumentStatus.CANCELLED)
                document.admin_approval_status = ApprovalStatus.REJECTED.value
                document.approved_by = actor_id
                document.approved_at = utcnow()
                await self.session.flush()
                return document

        await retry_on_conflict(apply, "billing_document", document_id)
        return await self.transition_document(
            document_id, DocumentStatus.CANCELLED.value, actor_id, reason, firm_id
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def record_payment(
        self,
        document_id: UUID,
        payment: PaymentInput,
        firm_id: UUID | None = None,
    ) -> BillingDocument:
        """Append a payment and derive the payment status.

        Raises:
            ValidationError: Non-positive amount, unknown method, or more
                than the outstanding balance.
            InvalidTransitionError: The document does not accept payments.
        """
        amount = Decimal(payment.amount)
        if amount <= 0:
            raise ValidationError("payment amount must be positive", "amount")
        if payment.method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method '{payment.method}'", "method")
        amount = quantize_money(amount)
        epsilon = self.settings.payment_epsilon

        async def apply() -> tuple[BillingDocument, BillingPayment, str]:
            async with self.session.begin_nested():
                document = await self.get_document(document_id, firm_id, refresh=True)
                from_status = document.status
                new_paid = document.paid_amount + amount
                target = DocumentStateMachine.status_after_payment(
                    document.total_amount, new_paid, epsilon
                )
                if not DocumentStateMachine.can_accept_payment(from_status):
                    raise InvalidTransitionError(
                        from_status,
                        target or DocumentStatus.PAID.value,
                        "payments are not accepted in this status",
                    )

                outstanding = compute_balance(document.total_amount, document.paid_amount)
                if amount > outstanding + epsilon:
                    raise ValidationError(
                        f"payment {amount} exceeds outstanding balance {outstanding}", "amount"
                    )

                record = BillingPayment(
                    document_id=document.document_id,
                    sequence=len(document.payments) + 1,
                    amount=amount,
                    method=payment.method,
                    reference=payment.reference,
                    notes=payment.notes,
                    recorded_by=payment.recorded_by,
                    recorded_at=utcnow(),
                )
                document.payments.append(record)
                document.paid_amount = new_paid
                document.balance_amount = compute_balance(document.total_amount, new_paid)
                if target is not None:
                    DocumentStateMachine.validate_transition(from_status, target)
                    document.status = target
                if target == DocumentStatus.PAID:
                    document.paid_date = self.today()
                await self.session.flush()
                return document, record, from_status

        document, record, from_status = await retry_on_conflict(
            apply, "billing_document", document_id
        )

        await self._emit(
            PaymentRecorded(
                metadata=self._metadata(document.firm_id, payment.recorded_by),
                document_id=document.document_id,
                payment_id=record.payment_id,
                amount=record.amount,
                method=record.method,
                paid_amount=document.paid_amount,
                balance_amount=document.balance_amount,
                status=document.status,
            )
        )
        await self._emit_status_change(document, from_status, payment.recorded_by)
        return document

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------

    async def request_payment_link(
        self,
        document_id: UUID,
        actor_id: UUID | None = None,
        firm_id: UUID | None = None,
    ) -> LinkResult:
        """Request a payment link and attach it to the document on success.

        Never raises for gateway failures. A document that already has a
        link gets it back without a gateway call.
        """
        document = await self.get_document(document_id, firm_id)
        if document.has_payment_link:
            return LinkResult.ok(
                link_id=document.gateway_link_id,  # type: ignore[arg-type]
                short_url=document.gateway_short_url,
                order_id=document.gateway_order_id,
                status=document.gateway_status,
            )
        if not DocumentStateMachine.can_accept_payment(document.status):
            raise InvalidTransitionError(
                document.status,
                document.status,
                "payment links are only issued for documents awaiting payment",
            )

        request = self._link_request(document)
        # Nothing may stay staged or locked while the gateway is called
        await self.session.commit()

        result = await self.gateway.request_link(request)

        if not result.success:
            await self._emit(
                PaymentLinkFailed(
                    metadata=self._metadata(request.firm_id, actor_id),
                    document_id=request.document_id,
                    error_kind=result.error_kind.value if result.error_kind else "gateway_error",
                    message=result.message,
                )
            )
            return result

        async def attach() -> BillingDocument | None:
            async with self.session.begin_nested():
                current = await self.get_document(document_id, firm_id, refresh=True)
                if current.has_payment_link or not DocumentStateMachine.can_accept_payment(
                    current.status
                ):
                    return None
                current.gateway_link_id = result.link_id
                current.gateway_order_id = result.order_id
                current.gateway_short_url = result.short_url
                current.gateway_status = result.status or "created"
                await self.session.flush()
                return current

        attached = await retry_on_conflict(attach, "billing_document", document_id)
        if attached is None:
            logger.info(
                "Document %s changed during link request, link %s not attached",
                document_id,
                result.link_id,
            )
            return result

        await self._emit(
            PaymentLinkAttached(
                metadata=self._metadata(attached.firm_id, actor_id),
                document_id=attached.document_id,
                link_id=result.link_id or "",
                short_url=result.short_url,
            )
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _link_request(self, document: BillingDocument) -> PaymentLinkRequest:
        kind_label = "Quotation" if document.kind == DocumentKind.QUOTATION else "Invoice"
        return PaymentLinkRequest(
            document_id=document.document_id,
            firm_id=document.firm_id,
            obligation_id=document.related_obligation_id,
            reference_id=document.document_number,
            amount=document.balance_amount,
            description=f"{kind_label} {document.document_number}",
            expire_by=self.today() + timedelta(days=self.settings.gateway.validity_days),
            callback_url=self.settings.gateway.callback_url,
        )

    async def _detect_interstate(self, firm_id: UUID, client_id: UUID) -> bool:
        if self.directory is None:
            return False
        firm_state = await self.directory.get_firm_state(firm_id)
        client_state = await self.directory.get_client_state(client_id)
        return is_interstate(firm_state, client_state)

    async def _next_document_number(self, firm_id: UUID, kind: str, issue_date: date) -> str:
        prefix = f"{NUMBER_PREFIXES[kind]}{issue_date.year % 100:02d}"
        count = await self.session.scalar(
            select(func.count())
            .select_from(BillingDocument)
            .where(
                BillingDocument.firm_id == firm_id,
                BillingDocument.kind == kind,
                BillingDocument.document_number.like(f"{prefix}%"),
            )
        )
        return f"{prefix}{int(count or 0) + 1:04d}"

    async def _insert_numbered(
        self,
        data: DocumentInput,
        build: Callable[[str], BillingDocument],
        issue_date: date,
    ) -> BillingDocument:
        """Insert under a fresh number, retrying if a concurrent insert took it."""
        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            number = await self._next_document_number(data.firm_id, data.kind, issue_date)
            document = build(number)
            try:
                async with self.session.begin_nested():
                    self.session.add(document)
                    await self.session.flush()
                return document
            except IntegrityError as e:
                if data.kind == DocumentKind.QUOTATION and data.related_obligation_id is not None:
                    if await self.find_quote_for_obligation(data.related_obligation_id):
                        raise ValidationError(
                            "obligation already has a quotation", "related_obligation_id"
                        ) from e
                if attempt >= NUMBER_ATTEMPTS:
                    raise ConcurrencyConflict("billing_document_number", number, str(e)) from e
                logger.info("Document number %s taken, retrying", number)
        raise AssertionError("unreachable")

    async def _emit_status_change(
        self,
        document: BillingDocument,
        from_status: str,
        actor_id: UUID | None,
    ) -> None:
        if from_status == document.status and document.status != DocumentStatus.PARTIALLY_PAID:
            return
        await self._emit(
            DocumentStatusChanged(
                metadata=self._metadata(document.firm_id, actor_id),
                document_id=document.document_id,
                document_number=document.document_number,
                from_status=from_status,
                to_status=document.status,
            )
        )

    def _metadata(self, firm_id: UUID, actor_id: UUID | None) -> EventMetadata:
        return EventMetadata.create(firm_id=firm_id, actor_id=actor_id, source_service="billing")

    async def _emit(self, event: DomainEvent) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
