"""Pytest fixtures for compliance billing engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from compliance_billing.calculators import LineItem
from compliance_billing.config import GatewayConfig, Settings
from compliance_billing.database import get_engine
from compliance_billing.directory import EmployeeRef, StaticDirectory
from compliance_billing.events import AsyncEventEmitter, EventCollector
from compliance_billing.gateway import PaymentGatewayAdapter, StubLinkProvider
from compliance_billing.models import Base, BillingDocument, Obligation, RecurringTemplate
from compliance_billing.services import (
    BillingDocumentService,
    DocumentInput,
    ObligationService,
    RecurrenceScheduler,
)

# Fixed "today" for services so due dates and numbers are deterministic
TODAY = date(2026, 10, 18)

# A file per test, so tests that open several sessions get real separate
# connections. Savepoints need get_engine's sqlite setup.


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        gateway=GatewayConfig(provider="stub", timeout_seconds=0.5),
        default_tax_rate=Decimal("18"),
        payment_epsilon=Decimal("0.01"),
    )


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def firm_id() -> UUID:
    return uuid4()


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


@pytest.fixture
def client_id() -> UUID:
    return uuid4()


@pytest.fixture
def approver_id() -> UUID:
    return uuid4()


@pytest.fixture
def directory(firm_id: UUID, client_id: UUID, approver_id: UUID) -> StaticDirectory:
    """Firm and client both registered in Maharashtra (27)."""
    directory = StaticDirectory()
    directory.register_firm(firm_id, gstin="27AAPFU0939F1ZV")
    directory.register_client(client_id, gstin="27AABCU9603R1ZM")
    directory.register_employee(
        EmployeeRef(employee_id=approver_id, name="Firm Owner", role="admin"),
        firm_id=firm_id,
    )
    return directory


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def emitter(collector: EventCollector) -> AsyncEventEmitter:
    emitter = AsyncEventEmitter()
    emitter.on_all(collector)
    return emitter


@pytest.fixture
def stub_provider() -> StubLinkProvider:
    return StubLinkProvider()


@pytest.fixture
def gateway(stub_provider: StubLinkProvider) -> PaymentGatewayAdapter:
    return PaymentGatewayAdapter(stub_provider, timeout_seconds=0.5)


@pytest.fixture
def billing_service(
    session: AsyncSession,
    gateway: PaymentGatewayAdapter,
    emitter: AsyncEventEmitter,
    directory: StaticDirectory,
    settings: Settings,
) -> BillingDocumentService:
    return BillingDocumentService(
        session,
        gateway=gateway,
        emitter=emitter,
        directory=directory,
        settings=settings,
        today=lambda: TODAY,
    )


@pytest.fixture
def obligation_service(
    session: AsyncSession,
    billing_service: BillingDocumentService,
    emitter: AsyncEventEmitter,
) -> ObligationService:
    return ObligationService(
        session,
        billing=billing_service,
        emitter=emitter,
        today=lambda: TODAY,
    )


@pytest.fixture
def scheduler(session: AsyncSession, emitter: AsyncEventEmitter) -> RecurrenceScheduler:
    return RecurrenceScheduler(session, emitter=emitter)


@pytest.fixture
def make_template(
    session: AsyncSession, firm_id: UUID, actor_id: UUID
) -> Callable[..., Awaitable[RecurringTemplate]]:
    """Factory for recurring templates owned by the test firm."""

    async def _make(**overrides: Any) -> RecurringTemplate:
        fields: dict[str, Any] = {
            "firm_id": firm_id,
            "title": "GSTR-3B Filing",
            "category": "gst",
            "is_recurring": True,
            "recurrence_pattern": "monthly",
            "is_payable": False,
            "created_by": actor_id,
            "subtasks": [],
        }
        fields.update(overrides)
        template = RecurringTemplate(**fields)
        session.add(template)
        await session.flush()
        return template

    return _make


@pytest.fixture
def make_obligation(
    session: AsyncSession, firm_id: UUID, actor_id: UUID, client_id: UUID
) -> Callable[..., Awaitable[Obligation]]:
    """Factory for obligations owned by the test firm."""

    async def _make(**overrides: Any) -> Obligation:
        fields: dict[str, Any] = {
            "firm_id": firm_id,
            "title": "Annual ROC Filing",
            "category": "roc",
            "obligation_type": "compliance",
            "priority": "medium",
            "status": "inprogress",
            "due_date": date(2026, 10, 31),
            "billable": True,
            "fixed_price": Decimal("5000.00"),
            "assigned_to": actor_id,
            "assigned_by": actor_id,
            "client_id": client_id,
            "collaborators": [],
            "custom_fields": {},
        }
        fields.update(overrides)
        obligation = Obligation(**fields)
        session.add(obligation)
        await session.flush()
        return obligation

    return _make


@pytest.fixture
def make_invoice(
    billing_service: BillingDocumentService,
    firm_id: UUID,
    actor_id: UUID,
    client_id: UUID,
) -> Callable[..., Awaitable[BillingDocument]]:
    """Factory for invoices. Defaults to a single 10000 line with no GST."""

    async def _make(**overrides: Any) -> BillingDocument:
        fields: dict[str, Any] = {
            "firm_id": firm_id,
            "client_id": client_id,
            "created_by": actor_id,
            "items": [LineItem(description="Statutory audit", rate=Decimal("10000"))],
            "gst_applicable": False,
        }
        fields.update(overrides)
        return await billing_service.create_document(DocumentInput(**fields))

    return _make
