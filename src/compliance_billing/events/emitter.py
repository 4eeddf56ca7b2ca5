"""Async event emitter for publishing workflow events.

Handlers are isolated from each other and from the publisher: a failing
handler is logged and reported in the returned error list, it never
propagates into the service that emitted the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar, Union

from compliance_billing.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: Handler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories


class AsyncEventEmitter:
    """Publishes domain events to registered sync or async handlers.

    Usage:
        emitter = AsyncEventEmitter()
        emitter.on(PaymentRecorded, handle_payment)
        emitter.on_category(EventCategory.GATEWAY, audit_gateway)
        await emitter.emit(event)
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, event_type: type[T] | list[type[T]], handler: Handler) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(HandlerRegistration(handler, types, None))

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: Handler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(HandlerRegistration(handler, None, cats))

    def on_all(self, handler: Handler) -> None:
        self._handlers.append(HandlerRegistration(handler, None, None))

    def off(self, handler: Handler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns list of any exceptions raised by handlers.
        """
        errors: list[Exception] = []
        event_type = event.event_type
        event_category = event.category

        tasks: list[asyncio.Task[None]] = []
        for reg in self._handlers:
            if reg.event_types and event_type not in reg.event_types:
                continue
            if reg.categories and event_category not in reg.categories:
                continue

            if inspect.iscoroutinefunction(reg.handler) or inspect.iscoroutinefunction(
                getattr(reg.handler, "__call__", None)
            ):
                tasks.append(asyncio.create_task(self._call_async(reg.handler, event)))
                continue

            try:
                reg.handler(event)
            except Exception as e:
                logger.exception("Handler %s failed for event %s", reg.handler, event_type)
                errors.append(e)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            errors.extend(r for r in results if isinstance(r, Exception))

        return errors

    async def _call_async(self, handler: Handler, event: DomainEvent) -> None:
        try:
            await handler(event)  # type: ignore[misc]
        except Exception:
            logger.exception(
                "Async handler %s failed for event %s", handler, event.event_type
            )
            raise


class EventCollector:
    """Handler that records every event it receives."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[T]) -> list[T]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()
