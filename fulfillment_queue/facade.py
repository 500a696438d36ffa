from __future__ import annotations

# Read-only query surface for presentation clients (customer app, admin table).
#
# Both surfaces share one engine through this facade. Callers may ask before
# the engine has started (or before one is attached), so every query falls
# back to a neutral value instead of raising.

from .engine import TimingEngine
from .models import OrderTiming
from .wait_time import format_time_display


class QueryFacade:
    def __init__(self, engine: TimingEngine | None = None) -> None:
        self._engine = engine

    def attach(self, engine: TimingEngine) -> None:
        self._engine = engine

    @property
    def ready(self) -> bool:
        return self._engine is not None and self._engine.started

    def get_remaining_time(self, order_id: str) -> int:
        if not self.ready:
            return 0
        return self._engine.get_remaining_time(order_id)

    def get_queue_position(self, order_id: str) -> int:
        if not self.ready:
            return 0
        return self._engine.get_queue_position(order_id)

    def get_queue_length(self) -> int:
        if not self.ready:
            return 0
        return self._engine.get_queue_length()

    def get_order_timing(self, order_id: str) -> OrderTiming | None:
        if not self.ready:
            return None
        return self._engine.get_order_timing(order_id)

    def get_active_orders(self) -> list[OrderTiming]:
        if not self.ready:
            return []
        return self._engine.get_active_orders()

    def format_time_display(self, minutes: int) -> str:
        return format_time_display(minutes)

    def display_for(self, order_id: str) -> str:
        """Countdown text for one order; empty until the engine knows the order."""
        if not self.ready or self._engine.get_order_timing(order_id) is None:
            return ""
        return format_time_display(self._engine.get_remaining_time(order_id))

    def describe(self, order_id: str) -> dict[str, object]:
        """Everything a client needs to render one order's progress."""
        timing = self.get_order_timing(order_id)
        remaining = self.get_remaining_time(order_id)
        return {
            "order_id": order_id,
            "status": timing.status.value if timing is not None else None,
            "remaining_minutes": remaining,
            "queue_position": self.get_queue_position(order_id),
            "queue_length": self.get_queue_length(),
            "display": format_time_display(remaining) if timing is not None else "",
        }
