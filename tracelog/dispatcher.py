"""
Adaptive batch dispatcher.

Ships a list of formatted records through a DeliveryTransport using a retry
ladder: a strictly decreasing sequence of maximum batch sizes, one per retry
depth, ending at 1.

    depth 0: chunks of 500 -> all sent concurrently
    a chunk with failures: its failed records (the whole chunk when the
        response does not say which) are re-split at the next depth
    deepest rung exhausted: the remaining records are permanently failed

Sibling chunks never cancel each other. The recursion is bounded by the
ladder length, and a single-record chunk at the last rung either succeeds or
fails, so every record ends up either delivered or failed.
"""

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from .config import DEFAULT_BATCH_LADDER
from .diagnostics import FailureObserver, notify_failure
from .errors import TransportError
from .transport import DeliveryResult, DeliveryTransport

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500


class Envelope(NamedTuple):
    """A record with its serialized bytes, computed once and reused on retry."""

    record: Mapping[str, Any]
    data: bytes


@dataclass
class DispatchReport:
    """Outcome of one dispatch call."""

    delivered: list[Mapping[str, Any]] = field(default_factory=list)
    failed: list[Mapping[str, Any]] = field(default_factory=list)
    attempts: int = 0
    max_depth: int = 0
    errors: list[str] = field(default_factory=list)
    attempt_sizes: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def serialize(record: Mapping[str, Any]) -> bytes:
    return json.dumps(record, separators=(",", ":"), default=str).encode("utf-8")


def chunked(items: Sequence, size: int) -> list[list]:
    """Split items into contiguous chunks of at most size."""
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


def validate_ladder(ladder: Sequence[int]) -> tuple[int, ...]:
    """
    Check a batch-size ladder.

    Raises:
        ValueError: when the ladder is empty, not strictly decreasing, does
            not end at 1, or starts above the PutRecordBatch limit
    """
    rungs = tuple(ladder)
    if not rungs:
        raise ValueError("batch ladder cannot be empty")
    if rungs[0] > MAX_BATCH_SIZE:
        raise ValueError(f"batch ladder cannot start above {MAX_BATCH_SIZE}")
    if any(later >= earlier for earlier, later in zip(rungs, rungs[1:])):
        raise ValueError(f"batch ladder must be strictly decreasing: {rungs}")
    if rungs[-1] != 1:
        raise ValueError(f"batch ladder must end at 1: {rungs}")
    return rungs


class AdaptiveBatchDispatcher:
    """
    Retry engine for delivering records to a stream.

    State is per call: create one dispatcher per delivery call, or reuse one
    sequentially.

    Args:
        ladder: Maximum batch size per retry depth
        on_failure: Observer called once with records that could not be
            delivered after the ladder was exhausted
    """

    def __init__(
        self,
        ladder: Sequence[int] = DEFAULT_BATCH_LADDER,
        on_failure: FailureObserver | None = None,
    ):
        self.ladder = validate_ladder(ladder)
        self.on_failure = on_failure

    async def dispatch(
        self,
        transport: DeliveryTransport,
        stream_name: str,
        records: Sequence[Mapping[str, Any]],
    ) -> DispatchReport:
        """
        Deliver records, shrinking batches on failure.

        Never raises for delivery problems; check the returned report.
        """
        report = DispatchReport()
        if not records:
            return report

        envelopes = [Envelope(record, serialize(record)) for record in records]
        await self._dispatch_level(transport, stream_name, envelopes, 0, report)

        if report.failed:
            error = TransportError(
                f"Failed to deliver {len(report.failed)} of {len(records)} records to {stream_name}"
                f" after {report.attempts} attempts: {report.errors[-1] if report.errors else 'unknown error'}"
            )
            logger.error(error.message)
            notify_failure(self.on_failure, report.failed, error)
        else:
            logger.debug(f"Delivered {len(report.delivered)} records to {stream_name} in {report.attempts} attempts")

        return report

    async def _dispatch_level(
        self,
        transport: DeliveryTransport,
        stream_name: str,
        envelopes: list[Envelope],
        depth: int,
        report: DispatchReport,
    ):
        chunks = chunked(envelopes, self.ladder[depth])

        results = await asyncio.gather(
            *(self._dispatch_chunk(transport, stream_name, chunk, depth, report) for chunk in chunks),
            return_exceptions=True,
        )

        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                # Unexpected bug in a branch: account the chunk as failed
                logger.error(f"Unexpected error dispatching {len(chunk)} records at depth {depth + 1}: {result!r}")
                report.failed.extend(envelope.record for envelope in chunk)
                report.errors.append(repr(result))

    async def _dispatch_chunk(
        self,
        transport: DeliveryTransport,
        stream_name: str,
        chunk: list[Envelope],
        depth: int,
        report: DispatchReport,
    ):
        report.attempts += 1
        report.attempt_sizes.append(len(chunk))
        report.max_depth = max(report.max_depth, depth + 1)

        try:
            result = await transport.send(stream_name, [envelope.data for envelope in chunk])
        except Exception as e:
            result = DeliveryResult.rejected(len(chunk), str(e))

        if result.ok:
            report.delivered.extend(envelope.record for envelope in chunk)
            return

        failed = self._failed_envelopes(chunk, result)
        failed_ids = {id(envelope) for envelope in failed}
        report.delivered.extend(envelope.record for envelope in chunk if id(envelope) not in failed_ids)

        if depth + 1 < len(self.ladder):
            logger.debug(
                f"{len(failed)} of {len(chunk)} records failed at depth {depth + 1} ({result.error}), "
                f"retrying in batches of {self.ladder[depth + 1]}"
            )
            await self._dispatch_level(transport, stream_name, failed, depth + 1, report)
            return

        report.failed.extend(envelope.record for envelope in failed)
        report.errors.append(result.error or "unknown error")

    @staticmethod
    def _failed_envelopes(chunk: list[Envelope], result: DeliveryResult) -> list[Envelope]:
        # Without per-record indices the whole chunk is resent (at-least-once)
        if result.failed_indices is None:
            return chunk

        failed = [chunk[index] for index in result.failed_indices if 0 <= index < len(chunk)]
        return failed or chunk
