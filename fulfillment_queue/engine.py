from __future__ import annotations

# The TimingEngine is the *authoritative source* of every order's ETA.
#
# It owns the in-flight queue and recomputes wait times and positions each time
# membership changes. All state lives on the instance (no module globals) so a
# host can run several engines and tests get a fresh one each time.
#
# Thread model: the automation ticker and request handlers call in from
# different threads. Every public method takes `self._lock`; mutations
# recalculate and persist before releasing it, so readers never see positions
# that don't match the current membership.

import random
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterator

from loguru import logger

from .errors import SnapshotError
from .models import OrderStatus, OrderTiming, as_utc, utcnow
from .persistence import LoadResult, MemorySnapshotStore, SnapshotStore
from .wait_time import compute_base_wait_minutes, format_time_display, remaining_minutes

Clock = Callable[[], datetime]


class TimingEngine:
    """Queue of in-flight orders with queue-aware wait estimates."""

    def __init__(
        self,
        *,
        store: SnapshotStore | None = None,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
        newest_first: bool = True,
    ) -> None:
        self._store: SnapshotStore = store if store is not None else MemorySnapshotStore()
        self._clock = clock
        self._rng = rng
        self._newest_first = newest_first

        # RLock: transaction() holds it while calling update_status().
        self._lock = threading.RLock()

        # Non-terminal orders in insertion order, including `ready` ones.
        self._queue: list[OrderTiming] = []
        # Orders that reached a terminal status.
        self._completed: list[OrderTiming] = []

        self._started = False
        self.stopped = False
        self.load_result: LoadResult | None = None
        self.last_persist_error: str | None = None

    # -------------------- lifecycle --------------------

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> LoadResult:
        """Load the persisted queue. Safe to call more than once."""
        with self._lock:
            self.stopped = False
            if self._started and self.load_result is not None:
                return self.load_result

            result = self._store.load()
            self._queue = []
            self._completed = []
            for timing in result.orders:
                if timing.status.is_terminal:
                    self._completed.append(timing)
                elif any(o.order_id == timing.order_id for o in self._queue):
                    logger.warning("Dropping duplicate order {} from snapshot", timing.order_id)
                else:
                    self._queue.append(timing)

            self.load_result = result
            self._started = True

            if result.reset:
                logger.warning("Timing engine started from an empty queue (snapshot reset: {})", result.error)
            else:
                logger.info("Timing engine started with {} queued orders", len(self._queue))
            return result

    def stop(self) -> None:
        """Flush the queue to the snapshot store.

        The in-memory queue stays loaded, so queries keep answering after stop.
        """
        with self._lock:
            if not self._started:
                return
            self._save()
            self.stopped = True

    def _ensure_started(self) -> None:
        if not self._started:
            self.start()

    @contextmanager
    def transaction(self) -> Iterator[TimingEngine]:
        """Hold the engine lock across several mutations.

        Queries from other threads wait until the whole batch is applied.
        """
        with self._lock:
            self._ensure_started()
            yield self

    # -------------------- mutations --------------------

    def add_order(self, order_id: str, item_count: int, created_at: datetime | None = None) -> OrderTiming:
        """Enter a newly placed order into the queue and recompute all ETAs."""
        if not order_id:
            raise ValueError("order_id required")
        # bool is an int subclass; True must not count as one item.
        if isinstance(item_count, bool) or not isinstance(item_count, int):
            raise ValueError(f"item_count must be an integer, got {item_count!r}")
        if item_count < 1:
            raise ValueError("item_count must be >= 1")

        with self._lock:
            self._ensure_started()

            existing = self._find(order_id)
            if existing is not None:
                logger.warning("Order {} is already queued; ignoring duplicate add", order_id)
                return replace(existing)

            timing = OrderTiming(
                order_id=order_id,
                item_count=item_count,
                base_wait_time=compute_base_wait_minutes(item_count=item_count, rng=self._rng),
                start_time=as_utc(created_at) if created_at is not None else self._clock(),
            )
            timing.actual_wait_time = timing.base_wait_time
            self._queue.append(timing)

            self._recalculate()
            self._save()
            logger.debug(
                "Queued order {} (items={}, base={}m, position={})",
                order_id,
                item_count,
                timing.base_wait_time,
                timing.queue_position,
            )
            return replace(timing)

    def update_status(self, order_id: str, status: OrderStatus | str) -> bool:
        """Move an order to `status`.

        Terminal statuses archive the order. Returns False (and logs) when the
        order isn't in the queue.
        """
        new_status = OrderStatus(status)

        with self._lock:
            self._ensure_started()

            timing = self._find(order_id)
            if timing is None:
                logger.warning("Status update for unknown order {} ({}) ignored", order_id, new_status.value)
                return False

            old_status = timing.status
            timing.status = new_status
            if new_status.is_terminal:
                self._queue.remove(timing)
                timing.queue_position = 0
                timing.actual_wait_time = 0
                self._completed.append(timing)

            self._recalculate()
            self._save()
            logger.info("Order {}: {} -> {}", order_id, old_status.value, new_status.value)
            return True

    def recalculate(self) -> None:
        with self._lock:
            self._recalculate()

    def refresh_queue(self) -> None:
        """Recompute ETAs against the current time and persist them."""
        with self._lock:
            self._ensure_started()
            self._recalculate()
            self._save()

    def clear_queue(self) -> None:
        """Drop every queued and archived order. Meant for resets and fixtures."""
        with self._lock:
            self._ensure_started()
            self._queue = []
            self._completed = []
            self._save()
            logger.info("Timing queue cleared")

    # -------------------- queries --------------------

    def get_remaining_time(self, order_id: str) -> int:
        with self._lock:
            if not self._started:
                return 0
            timing = self._find(order_id)
            if timing is None or not timing.is_active:
                return 0
            return remaining_minutes(eta=timing.estimated_completion_time, now=self._clock())

    def get_queue_position(self, order_id: str) -> int:
        with self._lock:
            if not self._started:
                return 0
            timing = self._find(order_id)
            if timing is None or not timing.is_active:
                return 0
            return timing.queue_position

    def get_queue_length(self) -> int:
        with self._lock:
            if not self._started:
                return 0
            return sum(1 for o in self._queue if o.is_active)

    def get_order_timing(self, order_id: str) -> OrderTiming | None:
        """Copy of the order's timing, looking in the archive too."""
        with self._lock:
            if not self._started:
                return None
            timing = self._find(order_id)
            if timing is None:
                timing = next((o for o in reversed(self._completed) if o.order_id == order_id), None)
            return replace(timing) if timing is not None else None

    def get_active_orders(self) -> list[OrderTiming]:
        """Non-terminal orders, oldest first."""
        with self._lock:
            if not self._started:
                return []
            return [replace(o) for o in sorted(self._queue, key=lambda o: o.start_time)]

    def get_order_queue(self) -> list[OrderTiming]:
        with self._lock:
            return [replace(o) for o in self._queue]

    def get_completed_orders(self) -> list[OrderTiming]:
        with self._lock:
            return [replace(o) for o in self._completed]

    @staticmethod
    def format_time_display(minutes: int) -> str:
        return format_time_display(minutes)

    # -------------------- internals (lock held) --------------------

    def _find(self, order_id: str) -> OrderTiming | None:
        for o in self._queue:
            if o.order_id == order_id:
                return o
        return None

    def _recalculate(self) -> None:
        """Recompute position, wait and ETA of every active order.

        Orders are walked newest first (LIFO, by default). Each order waits for
        its own base time plus everything ahead of it in that walk:
            actual[0] = base[0]
            actual[i] = actual[i-1] + base[i]
        Positions count down so the oldest order is position 1.
        """
        now = self._clock()
        active = sorted(
            (o for o in self._queue if o.is_active),
            key=lambda o: o.start_time,
            reverse=self._newest_first,
        )

        n = len(active)
        cumulative = 0
        for index, order in enumerate(active):
            cumulative += order.base_wait_time
            order.actual_wait_time = cumulative
            order.queue_position = n - index
            order.estimated_completion_time = now + timedelta(minutes=cumulative)

        # `ready` orders stay tracked but hold no place in the line.
        for order in self._queue:
            if not order.is_active:
                order.queue_position = 0
                order.actual_wait_time = 0

    def _save(self) -> None:
        try:
            self._store.save(list(self._queue))
        except SnapshotError as e:
            self.last_persist_error = str(e)
            logger.error("Failed to persist timing queue: {}", e)
        else:
            self.last_persist_error = None
