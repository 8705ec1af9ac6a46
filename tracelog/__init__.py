"""
tracelog - Log shipping for serverless functions.

This package provides:
- Log: validates and formats records, then routes them to the local
  extension or straight to a Firehose delivery stream
- AdaptiveBatchDispatcher: batch delivery with a shrinking retry ladder
- CredentialBroker: cached STS AssumeRole credentials
- LogTracker: collect steps and ship them as one record

Usage:
    import tracelog

    await tracelog.add("some-client", {
        "type": "updated",
        "entity": "product",
        "entityId": "62c5875be0821f812f2737b9",
        "log": {"color": "red"},
    })

    # At the end of the invocation, let the extension flush
    from tracelog.events import ENDED, invocation_events
    await invocation_events.emit(ENDED)
"""

from .config import TraceConfig
from .context import DeliveryContext
from .credentials import CredentialBroker, CredentialSet
from .diagnostics import setup_logging
from .dispatcher import AdaptiveBatchDispatcher, DispatchReport
from .errors import (
    ConfigurationError,
    CredentialError,
    LogError,
    RelayError,
    TransportError,
    ValidationError,
)
from .events import ENDED, InvocationEvents, invocation_events
from .log import Log
from .relay import LocalRelay
from .router import DeliveryRouter
from .tracker import LogTracker
from .transport import DeliveryResult, DeliveryTransport

__all__ = [
    # Entry points
    "Log",
    "add",
    "send_to_trace",
    "start",
    "create_tracker",
    "LogTracker",
    # Delivery
    "AdaptiveBatchDispatcher",
    "DispatchReport",
    "DeliveryRouter",
    "DeliveryContext",
    "DeliveryTransport",
    "DeliveryResult",
    "CredentialBroker",
    "CredentialSet",
    "LocalRelay",
    # Lifecycle
    "ENDED",
    "InvocationEvents",
    "invocation_events",
    # Config and errors
    "TraceConfig",
    "setup_logging",
    "LogError",
    "ValidationError",
    "ConfigurationError",
    "CredentialError",
    "TransportError",
    "RelayError",
]

__version__ = "1.0.0"

setup_logging()

default_log = Log()

add = default_log.add
send_to_trace = default_log.send_to_trace
start = default_log.start
create_tracker = default_log.create_tracker
