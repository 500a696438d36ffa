from __future__ import annotations

# Order store.
#
# The durable order table belongs to the hosting application; the core only
# needs the small contract below. `InMemoryOrderStore` implements it for the
# MQTT service and for tests.

import threading
from dataclasses import replace
from typing import Iterable, Protocol

from .errors import UnknownOrderError
from .models import OrderRecord, OrderStatus


class OrderStore(Protocol):
    def add(self, record: OrderRecord) -> None: ...

    def get(self, order_id: str) -> OrderRecord | None: ...

    def list_by_status(self, statuses: Iterable[OrderStatus]) -> list[OrderRecord]: ...

    def save_status(self, order_id: str, status: OrderStatus) -> None: ...


class InMemoryOrderStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, OrderRecord] = {}

    def add(self, record: OrderRecord) -> None:
        """Insert or overwrite an order row."""
        with self._lock:
            self._orders[record.order_id] = replace(record)

    def get(self, order_id: str) -> OrderRecord | None:
        with self._lock:
            record = self._orders.get(order_id)
            return replace(record) if record is not None else None

    def list_by_status(self, statuses: Iterable[OrderStatus]) -> list[OrderRecord]:
        wanted = set(statuses)
        with self._lock:
            return [replace(r) for r in self._orders.values() if r.status in wanted]

    def save_status(self, order_id: str, status: OrderStatus) -> None:
        with self._lock:
            record = self._orders.get(order_id)
            if record is None:
                raise UnknownOrderError(order_id)
            record.status = status
