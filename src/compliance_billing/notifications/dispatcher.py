"""Notification and broadcast dispatch.

The dispatcher is a consumed interface: the engine tells it what happened
and who should hear about it, and never waits on or fails because of it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from compliance_billing.directory import Directory
from compliance_billing.events.types import (
    DocumentStatusChanged,
    DomainEvent,
    ObligationGenerated,
    ObligationStatusChanged,
    PaymentRecorded,
    QuoteDraftCreated,
)

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 5.0


class NotificationDispatcher(Protocol):
    """Protocol for notification/broadcast backends."""

    async def notify(
        self,
        event_kind: str,
        payload: dict[str, Any],
        recipients: list[UUID],
    ) -> None:
        """Send a targeted notification."""
        ...

    async def broadcast(
        self,
        entity_kind: str,
        entity: dict[str, Any],
        action: str,
        actor_id: UUID | None,
    ) -> None:
        """Broadcast an entity change to connected clients."""
        ...


class LoggingDispatcher:
    """Default dispatcher: writes notifications and broadcasts to the log."""

    async def notify(
        self,
        event_kind: str,
        payload: dict[str, Any],
        recipients: list[UUID],
    ) -> None:
        logger.info(
            "notify %s to %d recipient(s): %s",
            event_kind,
            len(recipients),
            payload,
        )

    async def broadcast(
        self,
        entity_kind: str,
        entity: dict[str, Any],
        action: str,
        actor_id: UUID | None,
    ) -> None:
        logger.info("broadcast %s %s by %s", entity_kind, action, actor_id)


@dataclass
class RecordingDispatcher:
    """Dispatcher that keeps every call in memory."""

    notifications: list[tuple[str, dict[str, Any], list[UUID]]] = field(default_factory=list)
    broadcasts: list[tuple[str, dict[str, Any], str, UUID | None]] = field(default_factory=list)

    async def notify(
        self,
        event_kind: str,
        payload: dict[str, Any],
        recipients: list[UUID],
    ) -> None:
        self.notifications.append((event_kind, payload, list(recipients)))

    async def broadcast(
        self,
        entity_kind: str,
        entity: dict[str, Any],
        action: str,
        actor_id: UUID | None,
    ) -> None:
        self.broadcasts.append((entity_kind, entity, action, actor_id))


class DispatcherHandler:
    """Event handler that forwards domain events to a dispatcher.

    Every event is broadcast. Selected events are also notified to the
    people who care about them: generated obligations to the assignee, quote
    drafts to the firm's approvers and completions to the assigner.

    Delivery runs in background tasks, so a slow or hung dispatcher never
    holds up the service that emitted the event. Dispatcher errors are
    logged and swallowed. Call :meth:`drain` before the event loop stops.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        directory: Directory | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.directory = directory
        self._pending: set[asyncio.Task[None]] = set()

    async def __call__(self, event: DomainEvent) -> None:
        task = asyncio.create_task(self._deliver(event), name=f"dispatch-{event.event_type}")
        self._pending.add(task)
        task.add_done_callback(self._delivered)

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._pending)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries, cancelling any left after ``timeout``."""
        if not self._pending:
            return
        _, unfinished = await asyncio.wait(set(self._pending), timeout=timeout)
        if unfinished:
            logger.warning("Cancelling %d undelivered notification(s)", len(unfinished))
            for task in unfinished:
                task.cancel()
            await asyncio.gather(*unfinished, return_exceptions=True)

    def _delivered(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Dispatch task %s failed", task.get_name(), exc_info=error)

    async def _deliver(self, event: DomainEvent) -> None:
        try:
            await self.dispatcher.broadcast(
                event.entity_kind,
                event.payload(),
                event.action,
                event.metadata.actor_id,
            )
        except Exception:
            logger.exception("Broadcast failed for %s", event.event_type)

        try:
            recipients = await self._recipients(event)
            if recipients:
                await self.dispatcher.notify(event.event_type, event.payload(), recipients)
        except Exception:
            logger.exception("Notification failed for %s", event.event_type)

    async def _recipients(self, event: DomainEvent) -> list[UUID]:
        if isinstance(event, ObligationGenerated):
            return [event.assigned_to] if event.assigned_to else []

        if isinstance(event, ObligationStatusChanged):
            if event.to_status == "completed" and event.assigned_by:
                return [event.assigned_by]
            return []

        if isinstance(event, QuoteDraftCreated) or (
            isinstance(event, DocumentStatusChanged) and event.to_status == "quote_ready"
        ):
            if self.directory is None:
                return []
            return await self.directory.get_approvers(event.metadata.firm_id)

        if isinstance(event, PaymentRecorded) and event.metadata.actor_id:
            return [event.metadata.actor_id]

        return []
