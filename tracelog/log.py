"""
tracelog entry point.

Usage:
    from tracelog import add

    await add("some-client", {
        "type": "updated",
        "entity": "product",
        "entityId": "62c5875be0821f812f2737b9",
        "message": "The product was successfully updated",
        "log": {"color": "red"},
    })

add() accepts one record or a sequence of records. Invalid records are
dropped with a logged diagnostic; valid ones are delivered. It never raises
for delivery problems: shipping logs must not break the host invocation.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .config import TraceConfig
from .context import DeliveryContext
from .diagnostics import FailureObserver
from .dispatcher import DispatchReport
from .errors import LogError
from .formatter import pre_format_log
from .models import validate_record
from .router import DeliveryRouter
from .serverless import serverless_configuration
from .tracker import LogTracker

logger = logging.getLogger(__name__)

LogInput = Mapping[str, Any] | Iterable[Mapping[str, Any]]


class Log:
    """
    Validates, formats and routes log records.

    Args:
        context: Shared delivery state (a fresh one is created by default)
        router: Delivery router (built on top of context by default)
        config_loader: Returns the configuration for the current call
        on_failure: Observer for records that could not be delivered
    """

    def __init__(
        self,
        context: DeliveryContext | None = None,
        router: DeliveryRouter | None = None,
        config_loader: Callable[[], TraceConfig] = TraceConfig.from_env,
        on_failure: FailureObserver | None = None,
    ):
        self.context = context or DeliveryContext()
        self.router = router or DeliveryRouter(self.context, on_failure=on_failure)
        self._config_loader = config_loader

    @property
    def serverless_configuration(self) -> list[list]:
        """Deployment hooks (env vars and IAM statement) for the current config."""
        return serverless_configuration(self._config_loader())

    def start(self, config: TraceConfig | None = None):
        """
        Prepare the end-of-invocation flush.

        Host handlers may call this at the start of every invocation, even
        when no logs are added, so the extension always gets its /end signal.
        """
        self.router.start(config or self._config_loader())

    async def add(self, client: str, logs: LogInput) -> DispatchReport | None:
        """
        Send logs through the local extension or straight to the stream.

        Args:
            client: Client code that created the logs. A record with its own
                client keeps it, so several clients can share one call.
            logs: A record or a sequence of records

        Returns:
            The dispatch report when records were delivered directly, None
            otherwise.
        """
        config = self._config_loader()

        if not config.should_ship:
            return None

        self.start(config)

        records = self.get_validated_logs(_as_list(logs), client, config)
        if not records:
            return None

        return await self.router.route(records, config)

    async def send_to_trace(self, logs: LogInput) -> DispatchReport | None:
        """
        Send records directly to the delivery stream, skipping the extension.

        Records must carry their own client; the ones that do not validate
        are dropped.
        """
        config = self._config_loader()

        records = self.get_validated_logs(_as_list(logs), None, config)
        if not records:
            return None

        return await self.router.ship_direct(records, config)

    def get_validated_logs(
        self,
        logs: list[Any],
        client: str | None,
        config: TraceConfig,
    ) -> list[dict]:
        """Format and validate each record, dropping the invalid ones."""
        validated = []

        for index, raw in enumerate(logs):
            try:
                validated.append(validate_record(pre_format_log(raw, client, config)))
            except LogError as e:
                logger.warning(f"Validation Error while creating Trace logs - log {index}: {e.message}")

        if len(validated) < len(logs):
            logger.warning(f"Dropped {len(logs) - len(validated)} of {len(logs)} invalid logs")

        return validated

    def create_tracker(self, client_code: str) -> LogTracker:
        """Create a tracker whose collected steps are shipped through this Log."""
        return LogTracker(self, client_code)

    def reset(self):
        """Drop cached credentials, transport and the end listener."""
        self.router.reset()


def _as_list(logs: LogInput | None) -> list[Any]:
    if logs is None:
        return []
    if isinstance(logs, Mapping | str | bytes):
        return [logs]
    try:
        return list(logs)
    except TypeError:
        # Not a sequence; validation reports it as an invalid record
        return [logs]
