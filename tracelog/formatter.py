"""
Record formatting for tracelog.

Two stages:
    pre_format_log: runs once per raw record when it enters the library.
        Fills defaults (id, service, client, dateCreated), merges caller
        metadata into the payload, masks private fields and serializes the
        payload to a JSON string.
    format_before_trace: runs once per record right before direct delivery
        and stamps sendToTraceDelay (seconds between creation and shipping).
"""

import json
import math
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .config import TraceConfig
from .errors import ValidationError
from .redaction import hide_fields_from_log


def iso_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (with optional Z suffix) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            raise ValidationError(f"dateCreated: invalid timestamp {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _payload(raw: Any) -> dict:
    if raw is None:
        return {}

    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("log: must be an object or an array") from None

    if isinstance(raw, list | tuple):
        return {"data": list(raw)}
    if isinstance(raw, Mapping):
        return dict(raw)

    raise ValidationError("log: must be an object or an array")


def pre_format_log(
    raw: Mapping[str, Any],
    client: str | None,
    config: TraceConfig,
    now: datetime | None = None,
) -> dict:
    """
    Normalize a raw record into its wire form.

    Args:
        raw: Record as passed by the caller
        client: Client code used when the record carries none
        config: Current configuration (service name, caller metadata,
            private fields)
        now: Creation time for records without dateCreated

    Returns:
        A new dict; the caller's mapping is not modified.

    Raises:
        ValidationError: When the record is not a mapping or its payload or
            timestamp cannot be interpreted.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(f"record: expected an object, got {type(raw).__name__}")

    record = dict(raw)
    payload = _payload(record.pop("log", None))

    if not record.get("id"):
        record["id"] = str(uuid.uuid4())
    if not record.get("service"):
        record["service"] = config.service_name
    if not record.get("client"):
        record["client"] = client

    created = record.get("dateCreated")
    created_at = parse_timestamp(created) if created else (now or datetime.now(UTC))
    record["dateCreated"] = iso_timestamp(created_at)

    if "userCreated" in record and record["userCreated"] is None:
        del record["userCreated"]

    if config.function_name and "functionName" not in payload:
        payload["functionName"] = config.function_name
    if config.api_request_log_id and "apiRequestLogId" not in payload:
        payload["apiRequestLogId"] = config.api_request_log_id

    payload = hide_fields_from_log(payload, config.private_fields)

    if payload:
        record["log"] = json.dumps(payload, separators=(",", ":"), default=str)

    return record


def format_before_trace(record: Mapping[str, Any], now: datetime | None = None) -> dict:
    """
    Stamp the delivery delay on a formatted record.

    Returns a copy; dateCreated keeps its original value and records without
    one get the current time.
    """
    now = now or datetime.now(UTC)
    formatted = dict(record)

    created = record.get("dateCreated")
    created_at = parse_timestamp(created) if created else now

    formatted["sendToTraceDelay"] = math.ceil((now - created_at).total_seconds())
    formatted["dateCreated"] = iso_timestamp(created_at)
    return formatted
