"""Billing document API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from compliance_billing.api.dependencies import ActorId, BillingService, DbSession, FirmId
from compliance_billing.api.schemas import (
    BillingDocumentCreate,
    BillingDocumentListResponse,
    BillingDocumentResponse,
    ErrorResponse,
    PaymentCreate,
    PaymentLinkResponse,
    RejectQuoteRequest,
    TransitionRequest,
)
from compliance_billing.calculators import DiscountTerms, DiscountType, LineItem, TotalsOverrides
from compliance_billing.models import BillingDocument
from compliance_billing.services import DocumentInput, PaymentInput

router = APIRouter(prefix="/billing-documents", tags=["billing-documents"])


def _response(document: BillingDocument, billing: BillingService) -> BillingDocumentResponse:
    return BillingDocumentResponse.from_document(document, billing.effective_status(document))


@router.post(
    "",
    response_model=BillingDocumentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_billing_document(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    billing: BillingService,
    payload: BillingDocumentCreate,
) -> BillingDocumentResponse:
    """Create a billing document with computed totals and GST split."""
    document = await billing.create_document(
        DocumentInput(
            firm_id=firm_id,
            client_id=payload.client_id,
            created_by=actor_id,
            kind=payload.kind,
            items=[LineItem(**item.model_dump()) for item in payload.items],
            discount=DiscountTerms(
                discount_type=DiscountType(payload.discount.type),
                value=payload.discount.value,
            ),
            overrides=TotalsOverrides.from_optional(
                subtotal=payload.subtotal,
                tax_amount=payload.tax_amount,
                total_amount=payload.total_amount,
            ),
            gst_applicable=payload.gst_applicable,
            gst_rate=payload.gst_rate,
            is_interstate=payload.is_interstate,
            issue_date=payload.issue_date,
            due_date=payload.due_date,
            related_obligation_id=payload.related_obligation_id,
            notes=payload.notes,
        )
    )
    await db.commit()
    return _response(document, billing)


@router.get("", response_model=BillingDocumentListResponse)
async def list_billing_documents(
    firm_id: FirmId,
    billing: BillingService,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    kind: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> BillingDocumentListResponse:
    """List the firm's documents. ``status=overdue`` applies the overdue view."""
    documents, total = await billing.list_documents(
        firm_id, status=status_filter, kind=kind, limit=limit, offset=offset
    )
    return BillingDocumentListResponse(
        items=[_response(d, billing) for d in documents],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{document_id}",
    response_model=BillingDocumentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_billing_document(
    firm_id: FirmId,
    billing: BillingService,
    document_id: UUID = Path(...),
) -> BillingDocumentResponse:
    document = await billing.get_document(document_id, firm_id)
    return _response(document, billing)


@router.post(
    "/{document_id}/payments",
    response_model=BillingDocumentResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def record_payment(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    billing: BillingService,
    payload: PaymentCreate,
    document_id: UUID = Path(...),
) -> BillingDocumentResponse:
    """Record a payment against a document."""
    document = await billing.record_payment(
        document_id,
        PaymentInput(
            amount=payload.amount,
            method=payload.method,
            recorded_by=actor_id,
            reference=payload.reference,
            notes=payload.notes,
        ),
        firm_id=firm_id,
    )
    await db.commit()
    return _response(document, billing)


@router.post(
    "/{document_id}/transitions",
    response_model=BillingDocumentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def transition_billing_document(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    billing: BillingService,
    payload: TransitionRequest,
    document_id: UUID = Path(...),
) -> BillingDocumentResponse:
    """Move a document to another lifecycle status."""
    document = await billing.transition_document(
        document_id, payload.target, actor_id, reason=payload.reason, firm_id=firm_id
    )
    await db.commit()
    return _response(document, billing)


@router.post(
    "/{document_id}/reject",
    response_model=BillingDocumentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reject_quote(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    billing: BillingService,
    payload: RejectQuoteRequest,
    document_id: UUID = Path(...),
) -> BillingDocumentResponse:
    """Reject a quotation awaiting approval. The quotation is cancelled."""
    document = await billing.reject_quote(document_id, actor_id, payload.reason, firm_id)
    await db.commit()
    return _response(document, billing)


@router.post(
    "/{document_id}/payment-link",
    response_model=PaymentLinkResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def request_payment_link(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    billing: BillingService,
    document_id: UUID = Path(...),
) -> PaymentLinkResponse:
    """Ask the gateway for a payment link. Gateway failures are reported, not raised."""
    result = await billing.request_payment_link(document_id, actor_id, firm_id)
    await db.commit()
    return PaymentLinkResponse(
        success=result.success,
        link_id=result.link_id,
        short_url=result.short_url,
        order_id=result.order_id,
        error_kind=result.error_kind.value if result.error_kind else None,
        message=result.message,
    )
