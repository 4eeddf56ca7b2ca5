"""Obligation API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Path, status

from compliance_billing.api.dependencies import (
    ActorId,
    BillingService,
    DbSession,
    FirmId,
    Obligations,
)
from compliance_billing.api.schemas import (
    BillingDocumentResponse,
    CompleteObligationResponse,
    ErrorResponse,
    ObligationCreate,
    ObligationResponse,
    ObligationStatusUpdate,
)
from compliance_billing.services import CompletionResult, ObligationInput

router = APIRouter(prefix="/obligations", tags=["obligations"])


def _completion_response(
    result: CompletionResult, billing: BillingService
) -> CompleteObligationResponse:
    quote = None
    if result.quote is not None:
        quote = BillingDocumentResponse.from_document(
            result.quote, billing.effective_status(result.quote)
        )
    return CompleteObligationResponse(
        obligation=ObligationResponse.model_validate(result.obligation),
        quote=quote,
        quote_created=result.quote_created,
    )


@router.post(
    "",
    response_model=ObligationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_obligation(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    obligations: Obligations,
    payload: ObligationCreate,
) -> ObligationResponse:
    """Create a one-off obligation."""
    obligation = await obligations.create_obligation(
        ObligationInput(
            firm_id=firm_id,
            title=payload.title,
            due_date=payload.due_date,
            assigned_by=actor_id,
            category=payload.category,
            description=payload.description,
            priority=payload.priority,
            assigned_to=payload.assigned_to,
            client_id=payload.client_id,
            billable=payload.billable,
            fixed_price=payload.fixed_price,
            collaborators=payload.collaborators,
            subtasks=[s.model_dump(mode="json") for s in payload.subtasks],
        )
    )
    await db.commit()
    return ObligationResponse.model_validate(obligation)


@router.get(
    "/{obligation_id}",
    response_model=ObligationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_obligation(
    firm_id: FirmId,
    obligations: Obligations,
    obligation_id: UUID = Path(...),
) -> ObligationResponse:
    obligation = await obligations.get_obligation(obligation_id, firm_id)
    return ObligationResponse.model_validate(obligation)


@router.post(
    "/{obligation_id}/complete",
    response_model=CompleteObligationResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def complete_obligation(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    obligations: Obligations,
    billing: BillingService,
    obligation_id: UUID = Path(...),
) -> CompleteObligationResponse:
    """Complete an obligation. Billable obligations get a draft quotation."""
    result = await obligations.complete_obligation(obligation_id, actor_id, firm_id)
    await db.commit()
    return _completion_response(result, billing)


@router.patch(
    "/{obligation_id}/status",
    response_model=CompleteObligationResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_obligation_status(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    obligations: Obligations,
    billing: BillingService,
    payload: ObligationStatusUpdate,
    obligation_id: UUID = Path(...),
) -> CompleteObligationResponse:
    result = await obligations.update_status(obligation_id, payload.status, actor_id, firm_id)
    await db.commit()
    return _completion_response(result, billing)


@router.post(
    "/{obligation_id}/archive",
    response_model=ObligationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def archive_obligation(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    obligations: Obligations,
    obligation_id: UUID = Path(...),
) -> ObligationResponse:
    obligation = await obligations.archive_obligation(obligation_id, actor_id, firm_id)
    await db.commit()
    return ObligationResponse.model_validate(obligation)


@router.post(
    "/{obligation_id}/unarchive",
    response_model=ObligationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def unarchive_obligation(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    obligations: Obligations,
    obligation_id: UUID = Path(...),
) -> ObligationResponse:
    obligation = await obligations.unarchive_obligation(obligation_id, actor_id, firm_id)
    await db.commit()
    return ObligationResponse.model_validate(obligation)
