"""
Delivery routing: local relay first for small batches, direct delivery
otherwise or when the relay fails.

    route(records)
        relay enabled and len(records) < relay_max_records
            -> POST /logs to the extension
            -> on any failure, ship_direct(records) with the same records
        otherwise
            -> ship_direct(records)

    ship_direct(records)
        stamp sendToTraceDelay -> ensure credentials and transport
        -> AdaptiveBatchDispatcher
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from .config import TraceConfig
from .context import DeliveryContext
from .diagnostics import FailureObserver, notify_failure
from .dispatcher import AdaptiveBatchDispatcher, DispatchReport
from .errors import ConfigurationError, LogError, RelayError, TransportError
from .events import ENDED, InvocationEvents, invocation_events
from .formatter import format_before_trace
from .relay import LocalRelay

logger = logging.getLogger(__name__)

RelayFactory = Callable[[TraceConfig], LocalRelay]


class DeliveryRouter:
    """
    Chooses between the local relay and direct stream delivery.

    Args:
        context: Shared delivery state
        on_failure: Observer for records that could not be delivered
        relay_factory: Builds the relay client for a config
        events: Registry where the end-of-invocation listener is attached
    """

    def __init__(
        self,
        context: DeliveryContext,
        on_failure: FailureObserver | None = None,
        relay_factory: RelayFactory | None = None,
        events: InvocationEvents | None = None,
    ):
        self.context = context
        self.on_failure = on_failure
        self._relay_factory = relay_factory or LocalRelay.from_config
        self.events = events or invocation_events
        self._ended_relay: LocalRelay | None = None
        self._background: set[asyncio.Task] = set()

    def start(self, config: TraceConfig):
        """
        Subscribe to the end-of-invocation event, once per process.

        Called on every add(); only the first call with the relay enabled
        registers the listener.
        """
        if not config.relay_enabled or self.context.ended_listener_added:
            return

        try:
            self._ended_relay = self._relay_factory(config)
        except Exception as e:
            logger.error(f"Could not prepare the end-of-invocation flush: {e!r}")
            return

        self.events.on(ENDED, self.notify_ended)
        self.context.ended_listener_added = True
        logger.debug("Subscribed to end-of-invocation event")

    def reset(self):
        """Unsubscribe and clear the shared context."""
        self.events.off(ENDED, self.notify_ended)
        self._ended_relay = None
        self.context.reset()

    def should_relay(self, records: Sequence[Any], config: TraceConfig) -> bool:
        return config.relay_enabled and len(records) < config.relay_max_records

    async def route(self, records: list[dict], config: TraceConfig) -> DispatchReport | None:
        """
        Deliver formatted records through the relay or directly.

        Returns the dispatch report for direct deliveries, None when the relay
        accepted the records or nothing was sent.
        """
        if not records:
            return None

        if self.should_relay(records, config):
            return await self.add_locally(records, config)

        return await self.ship_direct(records, config)

    async def add_locally(self, records: list[dict], config: TraceConfig) -> DispatchReport | None:
        try:
            relay = self._relay_factory(config)
            await relay.send_logs(records)
            return None
        except RelayError as e:
            logger.error(f"Failed to save {len(records)} logs locally, falling back to direct delivery: {e}")
        except Exception as e:
            logger.error(f"Unexpected relay error for {len(records)} logs, falling back to direct delivery: {e!r}")

        return await self.ship_direct(records, config)

    async def ship_direct(self, records: list[dict], config: TraceConfig) -> DispatchReport | None:
        """Deliver records straight to the delivery stream."""
        if not records:
            return None

        prepared = [format_before_trace(record) for record in records]

        try:
            stream_name = config.delivery_stream_name
            dispatcher = self._dispatcher_for(config)
            transport = await self.context.ensure_transport(config)
        except LogError as e:
            logger.error(f"Abandoning delivery of {len(prepared)} logs: {e.message}")
            notify_failure(self.on_failure, prepared, e)
            return None
        except Exception as e:
            error = TransportError(f"Unexpected error preparing delivery: {e!r}")
            logger.error(f"Abandoning delivery of {len(prepared)} logs: {error.message}")
            notify_failure(self.on_failure, prepared, error)
            return None

        return await dispatcher.dispatch(transport, stream_name, prepared)

    def _dispatcher_for(self, config: TraceConfig) -> AdaptiveBatchDispatcher:
        try:
            return AdaptiveBatchDispatcher(config.batch_ladder, on_failure=self.on_failure)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    async def flush_on_ended(self):
        """Ask the extension to flush. Failures are logged and swallowed."""
        relay = self._ended_relay
        if relay is None:
            return

        try:
            await relay.end()
        except RelayError as e:
            logger.error(f"Failed calling {relay.base_url}/end: {e}")

    def notify_ended(self):
        """
        Run flush_on_ended as a detached task.

        Nothing is returned, so emitters never wait for the extension. The
        task is kept in pending_flushes until it finishes and its outcome is
        discarded.
        """
        task = asyncio.ensure_future(self.flush_on_ended())
        self._background.add(task)
        task.add_done_callback(self._discard)

    @property
    def pending_flushes(self) -> set[asyncio.Task]:
        return set(self._background)

    def _discard(self, task: asyncio.Task):
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"End-of-invocation flush failed: {task.exception()!r}")
