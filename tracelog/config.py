"""
Environment-driven configuration for tracelog.

Configuration is read per call (not cached at import time) because several
values, like the API request log id, change on every serverless invocation.

Environment variables:
    TRACE_ENV: Environment tier (local, beta, qa, prod). Only beta, qa and
        prod ship logs.
    TRACE_SERVICE_NAME: Default service for records that carry none
    TRACE_LOG_ROLE_ARN: Role assumed to obtain delivery credentials
        (LOG_ROLE_ARN is accepted as a legacy name)
    TRACE_FIREHOSE_DELIVERY_STREAM: Delivery stream name (defaults to
        TraceFirehose<Env>)
    TRACE_EXTENSION_ENABLED: Relay small batches through the local extension
    TRACE_EXTENSION_URL: Base URL of the local extension server
    TRACE_PRIVATE_FIELDS: Comma separated payload keys to mask
    TRACE_FUNCTION_NAME: Function name stamped into payloads
        (AWS_LAMBDA_FUNCTION_NAME is used when unset)
    TRACE_API_REQUEST_LOG_ID: Request id stamped into payloads
    AWS_DEFAULT_REGION: Region for STS and Firehose clients
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import ConfigurationError

ENVS = {
    "local": "Local",
    "beta": "Beta",
    "qa": "QA",
    "prod": "Prod",
}

SHIPPING_ENVS = ("beta", "qa", "prod")

DEFAULT_STREAM_PREFIX = "TraceFirehose"
DEFAULT_RELAY_URL = "http://127.0.0.1:8585"

# Firehose PutRecordBatch accepts at most 500 records per call
DEFAULT_BATCH_LADDER = (500, 100, 50, 10, 1)

# PutRecordBatch calls running at once per transport
DEFAULT_MAX_CONCURRENCY = 32


def _flag(value: str | None) -> bool:
    return bool(value) and value.strip().lower() not in ("0", "false", "no", "off")


def parse_private_fields(value: str | None) -> list[str]:
    """Split a comma separated field list, ignoring blanks."""
    if not value:
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


@dataclass
class TraceConfig:
    """Settings for one delivery call."""

    env: str | None = None
    service_name: str | None = None
    role_arn: str | None = None
    delivery_stream: str | None = None
    region: str | None = None

    relay_enabled: bool = False
    relay_url: str = DEFAULT_RELAY_URL
    relay_timeout: float = 0.3  # Seconds for POST /logs
    relay_end_timeout: float = 1.0  # Seconds for POST /end
    relay_max_records: int = 100  # Batches this size or larger skip the relay

    transport_timeout: float = 0.5  # Seconds per PutRecordBatch call
    transport_max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    role_session_duration: int = 1800  # 30 min
    batch_ladder: tuple[int, ...] = DEFAULT_BATCH_LADDER

    private_fields: list[str] = field(default_factory=list)
    function_name: str | None = None
    api_request_log_id: str | None = None

    @property
    def should_ship(self) -> bool:
        """Logs are only shipped from deployed environments."""
        return self.env in SHIPPING_ENVS

    @property
    def formatted_env(self) -> str:
        if not self.env or self.env not in ENVS:
            raise ConfigurationError(f"Unknown environment: {self.env!r}")
        return ENVS[self.env]

    @property
    def delivery_stream_name(self) -> str:
        """Explicit stream name, or the per-environment default."""
        return self.delivery_stream or f"{DEFAULT_STREAM_PREFIX}{self.formatted_env}"

    @property
    def role_session_name(self) -> str:
        return f"role-session-{self.service_name or 'tracelog'}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TraceConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            TraceConfig for the current invocation
        """
        env = os.environ if environ is None else environ

        return cls(
            env=env.get("TRACE_ENV") or None,
            service_name=env.get("TRACE_SERVICE_NAME") or None,
            role_arn=env.get("TRACE_LOG_ROLE_ARN") or env.get("LOG_ROLE_ARN") or None,
            delivery_stream=env.get("TRACE_FIREHOSE_DELIVERY_STREAM") or None,
            region=env.get("AWS_DEFAULT_REGION") or None,
            relay_enabled=_flag(env.get("TRACE_EXTENSION_ENABLED")),
            relay_url=(env.get("TRACE_EXTENSION_URL") or DEFAULT_RELAY_URL).rstrip("/"),
            private_fields=parse_private_fields(env.get("TRACE_PRIVATE_FIELDS")),
            function_name=env.get("TRACE_FUNCTION_NAME") or env.get("AWS_LAMBDA_FUNCTION_NAME") or None,
            api_request_log_id=env.get("TRACE_API_REQUEST_LOG_ID") or None,
        )
