"""
Process-wide delivery state.

Holds everything that outlives a single delivery call: the credential broker
(and its cached credentials), the current transport, and the flag recording
that the end-of-invocation listener was registered. Tests create their own
context or call reset() to avoid leaking state between cases.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any

from botocore.exceptions import BotoCoreError

from .config import TraceConfig
from .credentials import CredentialBroker, CredentialSet
from .errors import ConfigurationError, TransportError
from .transport import DeliveryTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[TraceConfig, CredentialSet | None], DeliveryTransport]


class DeliveryContext:
    """
    Shared, conditionally replaced delivery state.

    No locking: concurrent calls that see stale credentials may both refresh
    and both build a transport. The last one stored wins.

    Args:
        broker: Credential broker (a default one is created)
        transport_factory: Builds a transport for a config and credentials.
            Defaults to DeliveryTransport.build.
    """

    def __init__(
        self,
        broker: CredentialBroker | None = None,
        transport_factory: TransportFactory | None = None,
        sts_client_factory: Callable[[str | None], Any] | None = None,
    ):
        self.broker = broker or CredentialBroker(sts_client_factory=sts_client_factory)
        self._transport_factory = transport_factory or DeliveryTransport.build
        self.transport: DeliveryTransport | None = None
        self.ended_listener_added = False

    async def ensure_transport(self, config: TraceConfig) -> DeliveryTransport:
        """
        Return a transport backed by currently valid credentials.

        Refreshes credentials first when needed and builds a new transport
        whenever the credentials changed.

        Raises:
            CredentialError: credentials could not be obtained
            ConfigurationError: botocore rejected the client settings
            TransportError: the client could not be built for another reason
        """
        credentials = await self.broker.ensure_valid(config)

        if self.transport is not None and self.transport.uses(credentials):
            return self.transport

        loop = asyncio.get_running_loop()
        try:
            transport = await loop.run_in_executor(
                None, functools.partial(self._transport_factory, config, credentials)
            )
        except BotoCoreError as e:
            # e.g. NoRegionError when running on the ambient identity without a region
            raise ConfigurationError(f"Failed to build delivery transport: {e}") from e
        except Exception as e:
            raise TransportError(f"Failed to build delivery transport: {e!r}") from e

        self.transport = transport
        logger.debug("Built new delivery transport" + (" with assumed role credentials" if credentials else ""))
        return transport

    def reset(self):
        """Forget credentials, transport and the listener flag."""
        self.broker.reset()
        self.transport = None
        self.ended_listener_added = False
