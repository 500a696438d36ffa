from __future__ import annotations

# Fulfillment service: hosts the core on an MQTT broker.
#
# This file contains two layers:
# 1) `FulfillmentCore` wires engine, order store, automation and facade together
#    (no MQTT, easy to unit test)
# 2) `MqttFulfillmentService` + `main()` (integration with the broker)
#
# The order-placement flow sends `place_order`; presentation clients send
# `query_order` or subscribe to the queue snapshot broadcast.

import argparse
import time
from datetime import datetime
from typing import Any, TYPE_CHECKING

from loguru import logger

from .automation import StatusAutomation, Transition
from .config import DEFAULT_NAMESPACE, AutomationConfig, EngineConfig, add_mqtt_args, add_service_args
from .engine import Clock, TimingEngine
from .errors import ErrorResponse, InvalidTransitionError
from .facade import QueryFacade
from .models import OrderRecord, OrderStatus, OrderTiming, parse_timestamp, utcnow
from .mqtt_topics import order_events, order_requests, queue_updates
from .order_store import InMemoryOrderStore, OrderStore
from .persistence import JsonFileSnapshotStore, LoadResult, MemorySnapshotStore
from .scheduler import Ticker

if TYPE_CHECKING:
    from .mqtt_client import MqttClient


class FulfillmentCore:
    """Engine + automation + facade sharing one queue."""

    def __init__(
        self,
        *,
        engine_config: EngineConfig | None = None,
        automation_config: AutomationConfig | None = None,
        orders: OrderStore | None = None,
        clock: Clock = utcnow,
        engine: TimingEngine | None = None,
    ) -> None:
        engine_config = engine_config or EngineConfig()
        if engine is None:
            store = (
                JsonFileSnapshotStore(engine_config.snapshot_path)
                if engine_config.snapshot_path is not None
                else MemorySnapshotStore()
            )
            engine = TimingEngine(store=store, clock=clock, newest_first=engine_config.newest_first)

        self._clock = clock
        self.engine = engine
        self.orders: OrderStore = orders if orders is not None else InMemoryOrderStore()
        self.automation = StatusAutomation(
            engine=self.engine, orders=self.orders, config=automation_config, clock=clock
        )
        self.facade = QueryFacade(self.engine)

    def start(self, *, run_automation: bool = True) -> LoadResult:
        result = self.engine.start()
        if run_automation:
            self.automation.start()
        return result

    def stop(self) -> None:
        self.automation.stop()
        self.engine.stop()

    def place_order(self, order_id: str, item_count: int, created_at: datetime | None = None) -> OrderTiming:
        """Record a new order in the store and enter it into the timing queue."""
        created = created_at if created_at is not None else self._clock()
        with self.engine.transaction():
            timing = self.engine.add_order(order_id, item_count, created)
            if self.orders.get(order_id) is None:
                self.orders.add(
                    OrderRecord(order_id=order_id, created_at=timing.start_time, item_count=timing.item_count)
                )
        return timing

    def set_status(self, order_id: str, status: OrderStatus | str) -> bool:
        """Explicit status change (cancel, complete) from an outside caller.

        Returns False when neither the store nor the engine knows the order.
        Raises InvalidTransitionError for orders already in a terminal status.
        """
        new_status = OrderStatus(status)
        # Same lock as the automation tick, so a scan can't overwrite this change.
        with self.engine.transaction():
            record = self.orders.get(order_id)
            timing = self.engine.get_order_timing(order_id)
            for current in (record.status if record else None, timing.status if timing else None):
                if current is not None and current.is_terminal:
                    raise InvalidTransitionError(order_id, current.value)

            if record is not None:
                self.orders.save_status(order_id, new_status)
            in_engine = self.engine.update_status(order_id, new_status)
            return record is not None or in_engine

    def queue_snapshot(self) -> dict[str, Any]:
        orders = [
            {
                "order_id": o.order_id,
                "status": o.status.value,
                "item_count": o.item_count,
                "queue_position": o.queue_position,
                "remaining_minutes": self.facade.get_remaining_time(o.order_id),
            }
            for o in self.facade.get_active_orders()
        ]
        return {
            "type": "queue_snapshot",
            "queue_length": self.facade.get_queue_length(),
            "orders": orders,
            "automation": self.automation.status(),
        }


class MqttFulfillmentService:
    """MQTT adapter around the fulfillment core."""

    def __init__(self, *, mqtt: MqttClient, core: FulfillmentCore, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.mqtt = mqtt
        self.namespace = namespace
        self.core = core

        self._publisher: Ticker | None = None

    def start(self, *, publish_every: float = 5.0, run_automation: bool = True) -> LoadResult:
        result = self.core.start(run_automation=run_automation)

        self.mqtt.subscribe(order_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message, order_requests(self.namespace))
        self.core.automation.add_listener(self._publish_transition)

        self._publisher = Ticker(self.publish_snapshot, publish_every, name="queue-publisher")
        self._publisher.start()
        return result

    def stop(self) -> None:
        """Stop background threads and flush the queue. Call before disconnecting MQTT."""
        if self._publisher is not None:
            self._publisher.stop()
            self._publisher = None
        self.core.stop()

    def publish_snapshot(self) -> None:
        self.mqtt.publish(queue_updates(self.namespace), self.core.queue_snapshot())

    def _publish_transition(self, transition: Transition) -> None:
        msg = transition.to_message()
        msg["remaining_minutes"] = self.core.facade.get_remaining_time(transition.order_id)
        self.mqtt.publish(order_events(self.namespace), msg)

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _eta_message(self, order_id: str, mtype: str) -> dict[str, Any]:
        msg = self.core.facade.describe(order_id)
        msg["type"] = mtype
        return msg

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        mtype = msg.get("type")

        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return

        def error(code: str, message: str) -> None:
            self._reply(reply_to, corr_id, ErrorResponse(code, message).to_message())

        if mtype == "queue_snapshot":
            self._reply(reply_to, corr_id, self.core.queue_snapshot())
            return

        order_id = str(msg.get("order_id", "") or "")
        if mtype in ("place_order", "update_status", "query_order") and not order_id:
            error("bad_request", "order_id required")
            return

        if mtype == "place_order":
            try:
                item_count = msg.get("item_count")
                raw_created = msg.get("created_at")
                created_at = parse_timestamp(raw_created) if raw_created else None
                self.core.place_order(order_id, item_count, created_at)
            except (TypeError, ValueError) as e:
                error("bad_request", str(e))
                return
            self._reply(reply_to, corr_id, self._eta_message(order_id, "order_queued"))
            return

        if mtype == "update_status":
            try:
                known = self.core.set_status(order_id, str(msg.get("status", "")))
            except ValueError as e:
                # Also covers InvalidTransitionError for orders already closed.
                error("bad_request", str(e))
                return
            if not known:
                error("unknown_order", f"Unknown order {order_id}")
                return
            self._reply(reply_to, corr_id, self._eta_message(order_id, "status_updated"))
            return

        if mtype == "query_order":
            self._reply(reply_to, corr_id, self._eta_message(order_id, "order_eta"))
            return

        error("bad_request", f"unsupported request type {mtype!r}")


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .log import configure_logging
    from .mqtt_client import MqttClient

    parser = argparse.ArgumentParser(description="Fulfillment service (MQTT)")
    add_mqtt_args(parser)
    add_service_args(parser)
    args = parser.parse_args()

    configure_logging(args.log_level)

    core = FulfillmentCore(
        engine_config=EngineConfig(snapshot_path=args.snapshot_path, newest_first=not args.fifo),
        automation_config=AutomationConfig(tick_seconds=args.tick_seconds),
    )

    mqtt_client = MqttClient(client_id="fulfillment-service", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()

    service = MqttFulfillmentService(mqtt=mqtt_client, core=core, namespace=args.namespace)
    result = service.start(publish_every=args.publish_every)
    if result.reset:
        logger.warning("Queue snapshot was unreadable; started empty")

    print(f"[serve] connected to MQTT {args.mqtt_host}:{args.mqtt_port}, namespace={args.namespace}")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
