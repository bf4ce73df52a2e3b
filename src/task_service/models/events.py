"""Domain events and list pages."""

from dataclasses import dataclass, field
from datetime import datetime
from math import ceil
from typing import Any, Generic, TypeVar

from task_service.models.base import EventType
from task_service.utils.timestamps import format_instant, utcnow

T = TypeVar("T")


@dataclass(frozen=True)
class Event:
    """A domain event carrying a JSON snapshot of the affected entity."""

    event: EventType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict[str, Any]:
        """Webhook body: ``{event, timestamp, data}``."""
        return {
            "event": self.event.value,
            "timestamp": format_instant(self.timestamp),
            "data": self.data,
        }


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a filtered, creation-ordered listing."""

    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.limit) if self.total else 0

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.page < self.total_pages else None

    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "next_page": self.next_page,
        }
