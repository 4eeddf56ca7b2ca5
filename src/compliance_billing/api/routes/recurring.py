"""Recurring obligation generation endpoint."""

from datetime import date

from fastapi import APIRouter, status

from compliance_billing.api.dependencies import ActorId, DbSession, FirmId, Scheduler
from compliance_billing.api.schemas import (
    ErrorResponse,
    GenerateRecurringRequest,
    GenerateRecurringResponse,
    SkippedTemplateResponse,
)

router = APIRouter(prefix="/recurring", tags=["recurring"])


@router.post(
    "/generate",
    response_model=GenerateRecurringResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}},
)
async def generate_recurring(
    db: DbSession,
    firm_id: FirmId,
    actor_id: ActorId,
    scheduler: Scheduler,
    payload: GenerateRecurringRequest | None = None,
) -> GenerateRecurringResponse:
    """Generate this period's obligations from the firm's recurring templates."""
    as_of = (payload.as_of_date if payload else None) or date.today()
    result = await scheduler.generate(firm_id, as_of, actor_id)
    await db.commit()

    return GenerateRecurringResponse(
        created_ids=result.created_ids,
        skipped=[
            SkippedTemplateResponse(
                template_id=s.template_id,
                title=s.title,
                reason=s.reason.value,
            )
            for s in result.skipped
        ],
        generated_count=result.generated_count,
        message=result.summary,
    )
