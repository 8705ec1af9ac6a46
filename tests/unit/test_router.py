"""
Unit tests for DeliveryRouter.

Tests relay selection, fallback to direct delivery and the
end-of-invocation listener.
"""

import asyncio
import json
from dataclasses import replace

import pytest
from botocore.exceptions import NoRegionError

from tracelog.context import DeliveryContext
from tracelog.credentials import CredentialBroker
from tracelog.errors import ConfigurationError, CredentialError, RelayError, TransportError
from tracelog.events import ENDED
from tracelog.router import DeliveryRouter
from tracelog.transport import DeliveryTransport


class FakeRelay:
    """Stands in for LocalRelay and records what it was given."""

    def __init__(self, error: Exception | None = None, end_error: Exception | None = None):
        self.error = error
        self.end_error = end_error
        self.sent: list[list[dict]] = []
        self.end_calls = 0
        self.base_url = "http://127.0.0.1:8585"

    async def send_logs(self, records):
        self.sent.append(records)
        if self.error:
            raise self.error

    async def end(self):
        self.end_calls += 1
        if self.end_error:
            raise self.end_error


def make_records(count: int) -> list[dict]:
    return [
        {"id": f"log-{i}", "client": "c", "entity": "product", "type": "updated", "dateCreated": "2024-01-15T10:30:00.000Z"}
        for i in range(count)
    ]


async def drain(tasks):
    """Wait for detached end-of-invocation tasks, whatever their outcome."""
    await asyncio.gather(*tasks, return_exceptions=True)


def shipped(firehose_client) -> list[dict]:
    """Decode every record passed to put_record_batch."""
    records = []
    for call in firehose_client.put_record_batch.call_args_list:
        records.extend(json.loads(item["Data"]) for item in call.kwargs["Records"])
    return records


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def relay_router(context, events, failures, relay):
    return DeliveryRouter(
        context,
        on_failure=lambda records, error: failures.append((records, error)),
        relay_factory=lambda config: relay,
        events=events,
    )


@pytest.fixture
def relay_config(config):
    return replace(config, relay_enabled=True)


class TestRoute:
    """Test DeliveryRouter.route."""

    @pytest.mark.asyncio
    async def test_small_batch_goes_to_relay(self, relay_router, relay_config, relay, firehose_client):
        records = make_records(3)

        result = await relay_router.route(records, relay_config)

        assert result is None
        assert relay.sent == [records]
        firehose_client.put_record_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_relay_disabled_ships_direct(self, relay_router, config, relay, firehose_client):
        report = await relay_router.route(make_records(3), config)

        assert relay.sent == []
        assert firehose_client.put_record_batch.call_count == 1
        assert len(report.delivered) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count,relayed", [(99, True), (100, False), (150, False)])
    async def test_relay_threshold(self, relay_router, relay_config, relay, count, relayed):
        """Test only batches under 100 records use the relay."""
        await relay_router.route(make_records(count), relay_config)

        assert bool(relay.sent) is relayed

    @pytest.mark.asyncio
    async def test_relay_failure_falls_back(self, relay_router, relay_config, relay, firehose_client, failures):
        """Test records rejected by the relay are shipped directly."""
        relay.error = RelayError("POST http://127.0.0.1:8585/logs failed")
        records = make_records(2)

        report = await relay_router.route(records, relay_config)

        assert relay.sent == [records]
        assert report.ok
        sent = shipped(firehose_client)
        assert [r["id"] for r in sent] == ["log-0", "log-1"]
        assert all("sendToTraceDelay" in r for r in sent)
        assert failures == []

    @pytest.mark.asyncio
    async def test_empty_records(self, relay_router, relay_config, relay, firehose_client):
        assert await relay_router.route([], relay_config) is None
        assert relay.sent == []
        firehose_client.put_record_batch.assert_not_called()


class TestShipDirect:
    """Test DeliveryRouter.ship_direct."""

    @pytest.mark.asyncio
    async def test_ships_to_configured_stream(self, router, config, firehose_client):
        await router.ship_direct(make_records(1), config)

        call = firehose_client.put_record_batch.call_args
        assert call.kwargs["DeliveryStreamName"] == "TraceDeliveryStreamName"

    @pytest.mark.asyncio
    async def test_caller_records_untouched(self, router, config):
        records = make_records(1)

        await router.ship_direct(records, config)

        assert "sendToTraceDelay" not in records[0]

    @pytest.mark.asyncio
    async def test_reuses_transport(self, router, context, config, sts_client):
        """Test credentials and transport are kept across calls."""
        await router.ship_direct(make_records(1), config)
        transport = context.transport
        await router.ship_direct(make_records(1), config)

        assert context.transport is transport
        assert sts_client.assume_role.call_count == 1

    @pytest.mark.asyncio
    async def test_rebuilds_transport_after_expiry(self, router, context, config, clock):
        await router.ship_direct(make_records(1), config)
        transport = context.transport
        clock.tick(1900)

        await router.ship_direct(make_records(1), config)

        assert context.transport is not transport

    @pytest.mark.asyncio
    async def test_credential_failure_reported(self, router, config, sts_client, firehose_client, failures):
        """Test an AssumeRole failure abandons delivery without raising."""
        sts_client.assume_role.side_effect = RuntimeError("AccessDenied")

        result = await router.ship_direct(make_records(2), config)

        assert result is None
        firehose_client.put_record_batch.assert_not_called()
        assert len(failures) == 1
        records, error = failures[0]
        assert len(records) == 2
        assert isinstance(error, CredentialError)

    @pytest.mark.asyncio
    async def test_unknown_environment_reported(self, router, config, failures):
        await router.ship_direct(make_records(1), replace(config, env="staging", delivery_stream=None))

        assert isinstance(failures[0][1], ConfigurationError)

    @pytest.mark.asyncio
    async def test_invalid_ladder_reported(self, router, config, failures):
        await router.ship_direct(make_records(1), replace(config, batch_ladder=(10, 10)))

        assert isinstance(failures[0][1], ConfigurationError)

    @pytest.mark.asyncio
    async def test_delivery_failure_reported(self, router, config, firehose_client, failures):
        firehose_client.put_record_batch.return_value = {"FailedPutCount": 1}

        report = await router.ship_direct(make_records(1), config)

        assert len(report.failed) == 1
        assert firehose_client.put_record_batch.call_count == 5
        assert len(failures) == 1


class TestEndListener:
    """Test start(), reset() and the end-of-invocation flush."""

    def test_start_registers_once(self, relay_router, relay_config, events, context):
        relay_router.start(relay_config)
        relay_router.start(relay_config)

        assert events.listeners(ENDED) == [relay_router.notify_ended]
        assert context.ended_listener_added is True

    def test_start_without_relay(self, relay_router, config, events, context):
        relay_router.start(config)

        assert events.listeners(ENDED) == []
        assert context.ended_listener_added is False

    def test_reset(self, relay_router, relay_config, events, context):
        relay_router.start(relay_config)

        relay_router.reset()

        assert events.listeners(ENDED) == []
        assert context.ended_listener_added is False
        relay_router.start(relay_config)
        assert len(events.listeners(ENDED)) == 1

    @pytest.mark.asyncio
    async def test_ended_event_posts_end(self, relay_router, relay_config, events, relay):
        relay_router.start(relay_config)

        await events.emit(ENDED)
        await drain(relay_router.pending_flushes)

        assert relay.end_calls == 1

    @pytest.mark.asyncio
    async def test_emit_does_not_wait_for_flush(self, relay_router, relay_config, events):
        """Test emitting the end event returns before /end completes."""
        release = asyncio.Event()

        class SlowRelay(FakeRelay):
            async def end(self):
                await release.wait()

        relay_router._relay_factory = lambda config: SlowRelay()
        relay_router.start(relay_config)

        await events.emit(ENDED)

        pending = relay_router.pending_flushes
        assert len(pending) == 1
        release.set()
        await drain(pending)

    @pytest.mark.asyncio
    async def test_notify_returns_nothing(self, relay_router, relay_config):
        relay_router.start(relay_config)

        assert relay_router.notify_ended() is None
        await drain(relay_router.pending_flushes)

    @pytest.mark.asyncio
    async def test_end_failure_swallowed(self, relay_router, relay_config, relay):
        """Test a failing /end call never surfaces."""
        relay.end_error = RelayError("POST http://127.0.0.1:8585/end failed")
        relay_router.start(relay_config)

        relay_router.notify_ended()
        pending = relay_router.pending_flushes
        await drain(pending)

        assert relay.end_calls == 1
        assert all(task.exception() is None for task in pending)

    @pytest.mark.asyncio
    async def test_unexpected_end_error_discarded(self, relay_router, relay_config, relay):
        """Test the detached task's exception is retrieved and dropped."""
        relay.end_error = RuntimeError("boom")
        relay_router.start(relay_config)

        relay_router.notify_ended()
        await drain(relay_router.pending_flushes)
        await asyncio.sleep(0)

        assert relay_router.pending_flushes == set()

    @pytest.mark.asyncio
    async def test_notify_without_start(self, relay_router, relay):
        relay_router.notify_ended()
        await drain(relay_router.pending_flushes)

        assert relay.end_calls == 0


class TestUnexpectedErrors:
    """Test that errors outside the package hierarchy never reach the caller."""

    @pytest.mark.asyncio
    async def test_unexpected_relay_error_falls_back(self, relay_router, relay_config, relay, firehose_client):
        relay.error = TypeError("Object of type datetime is not JSON serializable")

        report = await relay_router.route(make_records(2), relay_config)

        assert report.ok
        assert firehose_client.put_record_batch.call_count == 1

    @pytest.mark.asyncio
    async def test_relay_factory_error_falls_back(self, context, events, relay_config, firehose_client):
        def broken_factory(config):
            raise RuntimeError("bad relay url")

        router = DeliveryRouter(context, relay_factory=broken_factory, events=events)

        report = await router.route(make_records(1), relay_config)

        assert report.ok

    @pytest.mark.asyncio
    async def test_transport_build_region_error(self, broker, events, config, failures):
        """Test a botocore error while building the client is reported as configuration."""

        def no_region(cfg, credentials):
            raise NoRegionError()

        context = DeliveryContext(broker=broker, transport_factory=no_region)
        router = DeliveryRouter(context, on_failure=lambda r, e: failures.append((r, e)), events=events)

        result = await router.ship_direct(make_records(1), replace(config, role_arn=None, region=None))

        assert result is None
        assert isinstance(failures[0][1], ConfigurationError)
        assert context.transport is None

    @pytest.mark.asyncio
    async def test_transport_build_unexpected_error(self, broker, events, config, failures):
        def broken(cfg, credentials):
            raise KeyError("endpoint")

        context = DeliveryContext(broker=broker, transport_factory=broken)
        router = DeliveryRouter(context, on_failure=lambda r, e: failures.append((r, e)), events=events)

        assert await router.ship_direct(make_records(1), config) is None
        assert isinstance(failures[0][1], TransportError)

    @pytest.mark.asyncio
    async def test_sts_client_factory_error(self, clock, events, config, firehose_client, failures):
        def broken_sts(region):
            raise NoRegionError()

        context = DeliveryContext(
            broker=CredentialBroker(sts_client_factory=broken_sts, clock=clock),
            transport_factory=lambda cfg, credentials: DeliveryTransport(firehose_client, credentials=credentials),
        )
        router = DeliveryRouter(context, on_failure=lambda r, e: failures.append((r, e)), events=events)

        assert await router.ship_direct(make_records(1), config) is None
        assert isinstance(failures[0][1], CredentialError)
        firehose_client.put_record_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_context_error(self, router, context, config, failures, mocker):
        mocker.patch.object(context, "ensure_transport", side_effect=AttributeError("boom"))

        assert await router.ship_direct(make_records(1), config) is None
        assert isinstance(failures[0][1], TransportError)
