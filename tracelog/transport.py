"""
Firehose PutRecordBatch wrapper.

A transport is bound to the credentials it was built with. When the broker
refreshes credentials a new transport is built and the old one is dropped, so
stale signing material is never reused.

send() never retries and never raises: a rejected call and a partially
failed batch both come back as a DeliveryResult.
"""

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config

from .config import DEFAULT_MAX_CONCURRENCY, TraceConfig
from .credentials import CredentialSet

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Normalized outcome of one PutRecordBatch call."""

    failed_count: int = 0
    failed_indices: list[int] | None = None  # None: failed records unknown
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_count == 0

    @classmethod
    def rejected(cls, size: int, error: str) -> "DeliveryResult":
        """A call that failed as a whole (exception, timeout)."""
        return cls(failed_count=size, failed_indices=None, error=error)


def _client_config(timeout: float, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> Config:
    # Retries belong to the dispatcher ladder, not to botocore
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": 1, "mode": "standard"},
        max_pool_connections=max_concurrency,
    )


def normalize_response(response: Any, size: int) -> DeliveryResult:
    """
    Turn a PutRecordBatch response into a DeliveryResult.

    Failed indices are only reported when RequestResponses lines up with the
    request; otherwise the whole batch is treated as failed by the caller.
    """
    if not response:
        return DeliveryResult()

    failed_count = response.get("FailedPutCount") or 0
    if not failed_count:
        return DeliveryResult()

    responses = response.get("RequestResponses") or []
    failed_indices = None
    error = None

    if len(responses) == size:
        failed_indices = [index for index, item in enumerate(responses) if item.get("ErrorCode")] or None

    for item in responses:
        if item.get("ErrorCode"):
            message = item.get("ErrorMessage")
            error = f"{item['ErrorCode']}: {message}" if message else item["ErrorCode"]
            break

    return DeliveryResult(
        failed_count=failed_count,
        failed_indices=failed_indices,
        error=error or f"{failed_count} records failed",
    )


def _release_slot(slots: asyncio.Semaphore, future: asyncio.Future):
    slots.release()
    if not future.cancelled():
        # Retrieve late failures of calls that already timed out
        future.exception()


class DeliveryTransport:
    """
    Thin async interface over a Firehose client.

    Args:
        client: boto3 Firehose client (or anything with put_record_batch)
        credentials: Credentials the client was built with, None for the
            ambient identity
        timeout: Seconds allowed for a single call, counted from the moment
            the call starts running
        max_concurrency: Calls running at once. Further sends wait for a
            free worker before their timeout starts.
    """

    def __init__(
        self,
        client: Any,
        credentials: CredentialSet | None = None,
        timeout: float = 0.5,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.client = client
        self.credentials = credentials
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self._executor = ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="tracelog-put")
        self._slots: asyncio.Semaphore | None = None
        self._slots_loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def build(cls, config: TraceConfig, credentials: CredentialSet | None) -> "DeliveryTransport":
        """Create a Firehose client for the given credentials."""
        params: dict[str, Any] = {
            "region_name": config.region,
            "config": _client_config(config.transport_timeout, config.transport_max_concurrency),
        }
        if credentials:
            params.update(credentials.as_client_kwargs())

        client = boto3.client("firehose", **params)
        return cls(
            client,
            credentials=credentials,
            timeout=config.transport_timeout,
            max_concurrency=config.transport_max_concurrency,
        )

    def _slots_for(self, loop: asyncio.AbstractEventLoop) -> asyncio.Semaphore:
        # A semaphore belongs to one event loop; hosts may run a new loop per invocation
        if self._slots is None or self._slots_loop is not loop:
            self._slots = asyncio.Semaphore(self.max_concurrency)
            self._slots_loop = loop
        return self._slots

    def uses(self, credentials: CredentialSet | None) -> bool:
        """True when this transport was built from exactly these credentials."""
        return self.credentials is credentials

    async def send(self, stream_name: str, records: list[bytes]) -> DeliveryResult:
        """
        Put one batch of serialized records.

        Args:
            stream_name: Firehose delivery stream
            records: Serialized records, at most 500

        Returns:
            DeliveryResult, with every record failed if the call was rejected
        """
        loop = asyncio.get_running_loop()
        slots = self._slots_for(loop)

        # The slot is held until the worker thread returns, even after a
        # timeout, so a started call never queues behind a hung one.
        await slots.acquire()
        try:
            future = loop.run_in_executor(
                self._executor,
                functools.partial(
                    self.client.put_record_batch,
                    DeliveryStreamName=stream_name,
                    Records=[{"Data": data} for data in records],
                ),
            )
        except Exception as e:
            slots.release()
            logger.debug(f"PutRecordBatch of {len(records)} records could not start: {e}")
            return DeliveryResult.rejected(len(records), str(e))
        future.add_done_callback(functools.partial(_release_slot, slots))

        try:
            response = await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout)
        except TimeoutError:
            logger.debug(f"PutRecordBatch of {len(records)} records timed out after {self.timeout}s")
            return DeliveryResult.rejected(len(records), f"timed out after {self.timeout}s")
        except Exception as e:
            logger.debug(f"PutRecordBatch of {len(records)} records rejected: {e}")
            return DeliveryResult.rejected(len(records), str(e))

        return normalize_response(response, len(records))
