from __future__ import annotations

# Data model shared by the engine, the automation and the stores.
#
# `OrderTiming` is owned by the TimingEngine. `OrderRecord` is the row shape of
# the external order store. Both serialize to plain JSON-compatible dicts.

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import SnapshotError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    # Generic terminal value accepted from callers that don't distinguish
    # delivery from pickup.
    COMPLETED = "completed"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING})
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.COMPLETED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (a trailing `Z` is accepted) or pass a datetime through."""
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"expected ISO-8601 timestamp, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


@dataclass
class OrderTiming:
    """Timing state of one order inside the engine.

    `item_count`, `base_wait_time` and `start_time` are fixed at creation. The
    other fields are derived by the engine on every recalculation.
    """

    order_id: str
    item_count: int
    base_wait_time: int
    start_time: datetime
    actual_wait_time: int = 0
    estimated_completion_time: datetime | None = None
    status: OrderStatus = OrderStatus.PENDING
    queue_position: int = 0

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def to_dict(self) -> dict[str, Any]:
        eta = self.estimated_completion_time
        return {
            "orderId": self.order_id,
            "itemCount": self.item_count,
            "baseWaitTime": self.base_wait_time,
            "actualWaitTime": self.actual_wait_time,
            "startTime": self.start_time.isoformat(),
            "estimatedCompletionTime": eta.isoformat() if eta is not None else None,
            "status": self.status.value,
            "queuePosition": self.queue_position,
        }

    @classmethod
    def from_dict(cls, data: Any) -> OrderTiming:
        """Rebuild a timing from its persisted form.

        Raises SnapshotError for anything that isn't a well-formed record.
        """
        if not isinstance(data, dict):
            raise SnapshotError(f"order record must be an object, got {type(data).__name__}")
        try:
            order_id = data["orderId"]
            if not isinstance(order_id, str) or not order_id:
                raise ValueError("orderId must be a non-empty string")
            item_count = int(data["itemCount"])
            if item_count < 1:
                raise ValueError("itemCount must be >= 1")
            eta_raw = data.get("estimatedCompletionTime")
            return cls(
                order_id=order_id,
                item_count=item_count,
                base_wait_time=int(data["baseWaitTime"]),
                start_time=parse_timestamp(data["startTime"]),
                actual_wait_time=int(data.get("actualWaitTime", 0)),
                estimated_completion_time=parse_timestamp(eta_raw) if eta_raw is not None else None,
                status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
                queue_position=int(data.get("queuePosition", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotError(f"malformed order record: {e}") from e


@dataclass
class OrderRecord:
    """One row of the external order store."""

    order_id: str
    created_at: datetime
    item_count: int
    status: OrderStatus = OrderStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.order_id,
            "createdAt": self.created_at.isoformat(),
            "itemCount": self.item_count,
            "status": self.status.value,
        }
