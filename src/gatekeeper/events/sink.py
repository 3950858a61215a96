"""Downstream delivery of validated webhook events.

The gatekeeper does not interpret payloads. Once a delivery passes every
check it is handed to an EventSink supplied by the surrounding system:

- LoggingEventSink: Records accepted events as log entries
- CallbackEventSink: Forwards events to an async callable
- CompositeEventSink: Delivers to multiple sinks independently
- NullEventSink: Discards events (for testing)
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

from src.gatekeeper.webhook.models import WebhookEvent


logger = logging.getLogger(__name__)

EventHandler = Callable[[WebhookEvent], Awaitable[None]]


class EventSink(ABC):
    """Abstract base class for validated-event consumers.

    Implementations should be fault-tolerant: the HTTP response has
    already been sent when ``deliver`` runs, so failures can only be logged.
    """

    @abstractmethod
    async def deliver(self, event: WebhookEvent) -> None:
        """Hand one validated event downstream.

        Args:
            event: The validated webhook event.
        """

    async def close(self) -> None:
        """Release resources. The default implementation does nothing."""


class LoggingEventSink(EventSink):
    """Logs accepted events without their payload."""

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def deliver(self, event: WebhookEvent) -> None:
        self._logger.info(
            "Webhook event: %s",
            event.event_type,
            extra={
                "event_type": event.event_type,
                "delivery_id": event.delivery_id,
                "action": event.action,
            },
        )


class CallbackEventSink(EventSink):
    """Forwards events to an async callable owned by the caller.

    Example:
        >>> async def handle(event: WebhookEvent) -> None:
        ...     await queue.put(event)
        >>> sink = CallbackEventSink(handle)
    """

    def __init__(self, handler: EventHandler):
        self._handler = handler

    async def deliver(self, event: WebhookEvent) -> None:
        await self._handler(event)


class CompositeEventSink(EventSink):
    """Delivers to multiple child sinks.

    Each child is called independently; a failing child is logged and does
    not stop delivery to the others.
    """

    def __init__(self, sinks: Optional[List[EventSink]] = None):
        self._sinks: List[EventSink] = sinks or []

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> List[EventSink]:
        """Read-only copy of the child sinks."""
        return list(self._sinks)

    async def deliver(self, event: WebhookEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.deliver(event)
            except Exception as e:
                logger.error(
                    "Failed to deliver event to %s: %s",
                    type(sink).__name__,
                    str(e),
                    extra={
                        "sink_type": type(sink).__name__,
                        "event_type": event.event_type,
                        "delivery_id": event.delivery_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error(
                    "Failed to close sink %s: %s",
                    type(sink).__name__,
                    str(e),
                )


class NullEventSink(EventSink):
    """Discards every event."""

    async def deliver(self, event: WebhookEvent) -> None:
        pass
