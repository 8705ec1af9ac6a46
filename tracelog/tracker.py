"""Accumulate named debugging steps and ship them as a single record."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .log import Log


@dataclass
class LogTrackItem:
    name: str
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "data": self.data}


class LogTracker:
    """
    Collects steps during a process and logs them together.

    Usage:
        tracker = log.create_tracker("some-client")
        tracker.add("fetched", {"count": 3})
        tracker.add("saved", "ok")
        await tracker.log({"entity": "order", "type": "synced"})
    """

    def __init__(self, log_handler: "Log", client_code: str):
        self.log_handler = log_handler
        self.client_code = client_code
        self.data: list[LogTrackItem] = []

    def add(self, name: str, data: Any):
        self.data.append(LogTrackItem(name, data))

    def dump(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self.data]

    async def log(self, record: dict[str, Any]):
        """Ship the tracked steps as the record's payload and start over."""
        await self.log_handler.add(self.client_code, {**record, "log": self.dump()})
        self.data = []
