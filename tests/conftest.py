"""Pytest configuration and shared fixtures for tracelog tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from tracelog.config import TraceConfig
from tracelog.context import DeliveryContext
from tracelog.credentials import CredentialBroker
from tracelog.events import InvocationEvents
from tracelog.log import Log
from tracelog.router import DeliveryRouter
from tracelog.transport import DeliveryTransport

ROLE_ARN = "arn:aws:iam::123456789012:role/TraceLogRole"
STREAM_NAME = "TraceDeliveryStreamName"


class FakeClock:
    """Settable clock for credential expiry tests."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def assume_role_response(clock: FakeClock, duration: int = 1800) -> dict:
    return {
        "Credentials": {
            "AccessKeyId": "some-access-key-id",
            "SecretAccessKey": "some-secret-access-key",
            "SessionToken": "some-session-token",
            "Expiration": clock() + timedelta(seconds=duration),
        }
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> TraceConfig:
    """A deployed configuration with a role and an explicit stream."""
    return TraceConfig(
        env="beta",
        service_name="default-service",
        role_arn=ROLE_ARN,
        delivery_stream=STREAM_NAME,
        region="us-east-1",
        transport_timeout=5.0,
    )


@pytest.fixture
def sts_client(clock: FakeClock) -> MagicMock:
    """STS client whose assume_role returns credentials valid for 30 minutes."""
    client = MagicMock()
    client.assume_role = MagicMock(side_effect=lambda **_: assume_role_response(clock))
    return client


@pytest.fixture
def firehose_client() -> MagicMock:
    """Firehose client that accepts every batch."""
    client = MagicMock()
    client.put_record_batch = MagicMock(return_value={"FailedPutCount": 0})
    return client


@pytest.fixture
def broker(sts_client: MagicMock, clock: FakeClock) -> CredentialBroker:
    return CredentialBroker(sts_client_factory=lambda region: sts_client, clock=clock)


@pytest.fixture
def context(broker: CredentialBroker, firehose_client: MagicMock) -> DeliveryContext:
    return DeliveryContext(
        broker=broker,
        transport_factory=lambda cfg, credentials: DeliveryTransport(
            firehose_client, credentials=credentials, timeout=cfg.transport_timeout
        ),
    )


@pytest.fixture
def events() -> InvocationEvents:
    return InvocationEvents()


@pytest.fixture
def failures() -> list:
    """Collects (records, error) pairs reported to the failure observer."""
    return []


@pytest.fixture
def router(context: DeliveryContext, events: InvocationEvents, failures: list) -> DeliveryRouter:
    return DeliveryRouter(
        context,
        on_failure=lambda records, error: failures.append((records, error)),
        events=events,
    )


@pytest.fixture
def log(context: DeliveryContext, router: DeliveryRouter, config: TraceConfig) -> Log:
    return Log(context=context, router=router, config_loader=lambda: config)


@pytest.fixture
def sample_log() -> dict:
    """Return a complete raw record."""
    return {
        "id": "8885e503-7272-4c0f-a355-5c7151540e18",
        "service": "catalog",
        "entity": "product",
        "entityId": "62c5875be0821f812f2737b9",
        "type": "updated",
        "message": "The product was successfully updated",
        "userCreated": "608c1589c063516b506fce19",
        "log": {"color": "red"},
    }
