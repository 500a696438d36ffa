"""Error types and the shared error envelope.

Exceptions are raised inside the library; the MQTT service turns them into
`ErrorResponse` messages so every client sees the same shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class FulfillmentError(Exception):
    """Base error for the fulfillment queue."""


class SnapshotError(FulfillmentError):
    """Persisted queue state could not be read or written."""


class InvalidTransitionError(FulfillmentError, ValueError):
    """The order is already in a terminal status and can't move again."""

    def __init__(self, order_id: str, status: str) -> None:
        super().__init__(f"order {order_id!r} is already {status}")
        self.order_id = order_id
        self.status = status


class UnknownOrderError(FulfillmentError, KeyError):
    """The order store has no row for the requested id."""

    def __init__(self, order_id: str) -> None:
        super().__init__(order_id)
        self.order_id = order_id

    def __str__(self) -> str:
        return f"unknown order {self.order_id!r}"


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg
