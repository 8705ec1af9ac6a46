"""
Temporary delivery credentials obtained through STS AssumeRole.

The broker caches one CredentialSet per process and refreshes it once it
expires. boto3 is synchronous, so the AssumeRole call runs in the event
loop's default executor.

Concurrent delivery calls that hit an expired cache at the same time may each
call AssumeRole. Assumed-role sessions are independent and the last result
wins, so the duplicate calls only cost latency; no lock is taken.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import boto3

from .config import TraceConfig
from .errors import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSet:
    """Credentials returned by one AssumeRole call. Never mutated."""

    access_key: str
    secret_key: str
    session_token: str
    expiration: datetime
    role_arn: str | None = None

    def is_valid(self, now: datetime) -> bool:
        """Valid while the expiration is strictly in the future."""
        return self.expiration > now

    def as_client_kwargs(self) -> dict[str, str]:
        return {
            "aws_access_key_id": self.access_key,
            "aws_secret_access_key": self.secret_key,
            "aws_session_token": self.session_token,
        }


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _default_sts_client(region: str | None) -> Any:
    return boto3.client("sts", region_name=region)


def _parse_expiration(value: Any) -> datetime:
    if isinstance(value, datetime):
        expiration = value
    elif isinstance(value, str):
        expiration = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"unexpected expiration {value!r}")
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=UTC)
    return expiration


class CredentialBroker:
    """
    Obtains and caches role credentials for the delivery transport.

    Args:
        sts_client_factory: Builds an STS client for a region. Defaults to
            boto3.client("sts", ...).
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        sts_client_factory: Callable[[str | None], Any] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._sts_client_factory = sts_client_factory or _default_sts_client
        self._clock = clock
        self._sts_client: Any = None
        self.credentials: CredentialSet | None = None

    def valid_credentials(self, role_arn: str | None = None) -> bool:
        """Check the cache holds unexpired credentials for role_arn."""
        if self.credentials is None:
            return False
        if role_arn is not None and self.credentials.role_arn != role_arn:
            return False
        return self.credentials.is_valid(self._clock())

    async def ensure_valid(self, config: TraceConfig) -> CredentialSet | None:
        """
        Make sure usable credentials are cached.

        Returns None when no role is configured (the transport then uses the
        ambient identity of the function). On failure the cache is left as it
        was, so the next call retries from the same state.

        Raises:
            CredentialError: AssumeRole failed or returned an unusable result
        """
        if not config.role_arn:
            return None

        if self.valid_credentials(config.role_arn):
            return self.credentials

        credentials = await self._assume_role(config)
        self.credentials = credentials
        logger.info(f"Assumed role {config.role_arn}, credentials valid until {credentials.expiration.isoformat()}")
        return credentials

    def reset(self):
        """Drop cached credentials and the STS client."""
        self.credentials = None
        self._sts_client = None

    async def _assume_role(self, config: TraceConfig) -> CredentialSet:
        loop = asyncio.get_running_loop()

        try:
            if self._sts_client is None:
                self._sts_client = await loop.run_in_executor(
                    None, functools.partial(self._sts_client_factory, config.region)
                )
            response = await loop.run_in_executor(
                None,
                functools.partial(
                    self._sts_client.assume_role,
                    RoleArn=config.role_arn,
                    RoleSessionName=config.role_session_name,
                    DurationSeconds=config.role_session_duration,
                ),
            )
        except Exception as e:
            raise CredentialError(f"Failed to assume role {config.role_arn}: {e}") from e

        return self._parse_response(response, config.role_arn)

    @staticmethod
    def _parse_response(response: Any, role_arn: str) -> CredentialSet:
        if not response or not response.get("Credentials"):
            raise CredentialError("Failed to assume role, invalid response.")

        raw = response["Credentials"]

        try:
            return CredentialSet(
                access_key=raw["AccessKeyId"],
                secret_key=raw["SecretAccessKey"],
                session_token=raw["SessionToken"],
                expiration=_parse_expiration(raw.get("Expiration") or response.get("Expiration")),
                role_arn=role_arn,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CredentialError(f"Failed to assume role, invalid response: {e}") from e
