"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_billing.config import Settings
from compliance_billing.database import init_db
from compliance_billing.directory import Directory
from compliance_billing.events import AsyncEventEmitter
from compliance_billing.gateway import PaymentGatewayAdapter
from compliance_billing.services import (
    BillingDocumentService,
    ObligationService,
    RecurrenceScheduler,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _uuid_header(value: str | None, name: str) -> UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} header is required",
        )
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name} format",
        )


async def get_firm_id(x_firm_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract firm ID from header."""
    return _uuid_header(x_firm_id, "X-Firm-ID")


async def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> UUID:
    """Extract acting user ID from header."""
    return _uuid_header(x_actor_id, "X-Actor-ID")


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_emitter(request: Request) -> AsyncEventEmitter:
    return request.app.state.emitter


def get_gateway(request: Request) -> PaymentGatewayAdapter:
    return request.app.state.gateway


def get_directory(request: Request) -> Directory:
    return request.app.state.directory


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
FirmId = Annotated[UUID, Depends(get_firm_id)]
ActorId = Annotated[UUID, Depends(get_actor_id)]
AppSettings = Annotated[Settings, Depends(get_settings_dep)]
Emitter = Annotated[AsyncEventEmitter, Depends(get_emitter)]
Gateway = Annotated[PaymentGatewayAdapter, Depends(get_gateway)]
DirectoryDep = Annotated[Directory, Depends(get_directory)]


def get_billing_service(
    db: DbSession,
    gateway: Gateway,
    emitter: Emitter,
    directory: DirectoryDep,
    settings: AppSettings,
) -> BillingDocumentService:
    return BillingDocumentService(
        db,
        gateway=gateway,
        emitter=emitter,
        directory=directory,
        settings=settings,
    )


BillingService = Annotated[BillingDocumentService, Depends(get_billing_service)]


def get_obligation_service(
    db: DbSession,
    billing: BillingService,
    emitter: Emitter,
) -> ObligationService:
    return ObligationService(db, billing=billing, emitter=emitter)


def get_scheduler(db: DbSession, emitter: Emitter) -> RecurrenceScheduler:
    return RecurrenceScheduler(db, emitter=emitter)


Obligations = Annotated[ObligationService, Depends(get_obligation_service)]
Scheduler = Annotated[RecurrenceScheduler, Depends(get_scheduler)]
