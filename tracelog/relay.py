"""
Client for the local extension server.

The extension runs next to the function and accepts records faster than the
delivery stream does. It exposes two endpoints:
    POST /logs {"logs": [...]}: buffer records
    POST /end: flush its own buffer at the end of the invocation
"""

import json
import logging
from typing import Any

import httpx

from .config import DEFAULT_RELAY_URL, TraceConfig
from .errors import RelayError

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class LocalRelay:
    """
    Async HTTP client for the local extension.

    Args:
        base_url: Extension server URL
        timeout: Seconds allowed for POST /logs
        end_timeout: Seconds allowed for POST /end
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_RELAY_URL,
        timeout: float = 0.3,
        end_timeout: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.end_timeout = end_timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: TraceConfig) -> "LocalRelay":
        return cls(
            base_url=config.relay_url,
            timeout=config.relay_timeout,
            end_timeout=config.relay_end_timeout,
        )

    async def send_logs(self, records: list[dict[str, Any]]):
        """
        Hand records to the extension.

        Raises:
            RelayError: on timeout, connection failure, a non-2xx answer or
                any other error while sending
        """
        await self._post("/logs", {"logs": records}, self.timeout)

    async def end(self):
        """
        Tell the extension the invocation ended.

        Raises:
            RelayError: on timeout, connection failure, a non-2xx answer or
                any other error while sending
        """
        await self._post("/end", None, self.end_timeout)

    async def _post(self, path: str, payload: dict | None, timeout: float):
        url = f"{self.base_url}{path}"

        try:
            # default=str: extra record fields may hold datetime or Decimal values
            content = None if payload is None else json.dumps(payload, separators=(",", ":"), default=str)
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, content=content, headers=JSON_HEADERS if content else None)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RelayError(f"POST {url} answered HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RelayError(f"POST {url} failed: {e!r}") from e
        except Exception as e:
            raise RelayError(f"POST {url} failed unexpectedly: {e!r}") from e
