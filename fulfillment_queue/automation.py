from __future__ import annotations

# Status automation.
#
# Orders move through preparation purely as a function of time since they were
# created:
#
#   pending --3m--> confirmed --6m--> preparing --10m--> ready --15m--> delivered
#
# Every threshold is measured from `created_at`, not from the previous
# transition, and an order moves at most one stage per tick. An order that was
# stuck during downtime therefore catches up one stage per tick.
# `cancelled` is never set here; it only comes from an explicit caller action.

import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from .config import AutomationConfig
from .engine import Clock, TimingEngine
from .models import OrderStatus, as_utc, utcnow
from .order_store import OrderStore
from .scheduler import Ticker


@dataclass(frozen=True)
class Transition:
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    minutes_since_created: int

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "status_changed",
            "order_id": self.order_id,
            "from": self.from_status.value,
            "to": self.to_status.value,
            "minutes_since_created": self.minutes_since_created,
        }


@dataclass
class TickReport:
    scanned: int = 0
    transitions: list[Transition] = field(default_factory=list)
    # (order_id, error message) for orders that could not be advanced.
    errors: list[tuple[str, str]] = field(default_factory=list)


TransitionListener = Callable[[Transition], None]


def minutes_since(created_at: datetime, now: datetime) -> int:
    return math.floor((now - as_utc(created_at)).total_seconds() / 60.0)


class StatusAutomation:
    """Advances order status on elapsed time and keeps the engine in sync."""

    def __init__(
        self,
        *,
        engine: TimingEngine,
        orders: OrderStore,
        config: AutomationConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.engine = engine
        self.orders = orders
        self.config = config or AutomationConfig()
        self._clock = clock

        self._listeners: list[TransitionListener] = []
        self._ticker: Ticker | None = None

        # Ticks may come from the ticker thread and from trigger() at once.
        self._tick_lock = threading.Lock()
        self.ticks = 0
        self.last_tick_at: datetime | None = None
        self.last_report: TickReport | None = None

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def next_status(self, status: OrderStatus, minutes: int) -> OrderStatus | None:
        """Return the status `minutes` after creation allows, or None to stay put."""
        rule = self.config.thresholds.get(status)
        if rule is None:
            return None
        threshold, target = rule
        return target if minutes >= threshold else None

    # -------------------- scanning --------------------

    def tick(self) -> TickReport:
        """Scan every automated order once and apply due transitions."""
        with self._tick_lock:
            now = self._clock()
            report = TickReport()
            records = self.orders.list_by_status(self.config.thresholds.keys())
            report.scanned = len(records)

            # Explicit status changes also take the engine lock, so the row can
            # only have moved between the scan above and this point.
            with self.engine.transaction():
                for record in records:
                    minutes = minutes_since(record.created_at, now)
                    target = self.next_status(record.status, minutes)
                    if target is None:
                        continue
                    current = self.orders.get(record.order_id)
                    if current is None or current.status is not record.status:
                        logger.debug("Order {} changed since the scan; skipping", record.order_id)
                        continue
                    try:
                        self.orders.save_status(record.order_id, target)
                        self.engine.update_status(record.order_id, target)
                    except Exception as e:
                        logger.opt(exception=e).error("Automation failed for order {}", record.order_id)
                        report.errors.append((record.order_id, str(e)))
                        continue
                    report.transitions.append(
                        Transition(
                            order_id=record.order_id,
                            from_status=record.status,
                            to_status=target,
                            minutes_since_created=minutes,
                        )
                    )

            self.ticks += 1
            self.last_tick_at = now
            self.last_report = report

        if report.transitions or report.errors:
            logger.info(
                "Automation tick: scanned={} advanced={} failed={}",
                report.scanned,
                len(report.transitions),
                len(report.errors),
            )

        # Outside the engine lock so listeners may query the engine or do I/O.
        for transition in report.transitions:
            for listener in list(self._listeners):
                try:
                    listener(transition)
                except Exception:
                    logger.exception("Transition listener failed for order {}", transition.order_id)
        return report

    def trigger(self) -> TickReport:
        """Run one scan now, outside the schedule."""
        return self.tick()

    # -------------------- schedule --------------------

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def start(self, interval: float | None = None) -> None:
        if self.running:
            return
        seconds = interval if interval is not None else self.config.tick_seconds
        self._ticker = Ticker(self.tick, seconds, name="status-automation")
        self._ticker.start()
        logger.info("Order automation started (every {}s)", seconds)

    def stop(self) -> None:
        t = self._ticker
        if t is None:
            return
        t.stop()
        self._ticker = None
        logger.info("Order automation stopped")

    def status(self) -> dict[str, Any]:
        t = self._ticker
        return {
            "running": self.running,
            "interval_seconds": t.interval if t is not None else self.config.tick_seconds,
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
        }
