import threading
import time
from datetime import timedelta

from fulfillment_queue.automation import StatusAutomation
from fulfillment_queue.config import AutomationConfig
from fulfillment_queue.errors import InvalidTransitionError, UnknownOrderError
from fulfillment_queue.models import OrderRecord, OrderStatus
from fulfillment_queue.order_store import InMemoryOrderStore
from fulfillment_queue.service import FulfillmentCore


def _setup(engine, clock, *orders):
    store = InMemoryOrderStore()
    for order_id, minutes_ago, status, items in orders:
        created = clock.now - timedelta(minutes=minutes_ago)
        store.add(OrderRecord(order_id=order_id, created_at=created, item_count=items, status=status))
        engine.add_order(order_id, items, created_at=created)
        if status is not OrderStatus.PENDING:
            engine.update_status(order_id, status)
    return store, StatusAutomation(engine=engine, orders=store, clock=clock)


def test_pending_order_is_confirmed_after_three_minutes(engine, clock):
    store, automation = _setup(engine, clock, ("a", 4, OrderStatus.PENDING, 6))

    report = automation.tick()

    assert store.get("a").status is OrderStatus.CONFIRMED
    assert engine.get_order_timing("a").status is OrderStatus.CONFIRMED
    assert [(t.order_id, t.to_status) for t in report.transitions] == [("a", OrderStatus.CONFIRMED)]


def test_young_order_stays_pending(engine, clock):
    store, automation = _setup(engine, clock, ("a", 2, OrderStatus.PENDING, 6))
    report = automation.tick()
    assert report.transitions == []
    assert store.get("a").status is OrderStatus.PENDING


def test_late_order_moves_one_stage_per_tick(engine, clock):
    store, automation = _setup(engine, clock, ("a", 12, OrderStatus.PENDING, 6))

    seen = []
    for _ in range(4):
        automation.tick()
        seen.append(store.get("a").status)

    assert seen == [OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.READY]


def test_full_lifecycle_against_the_clock(engine, clock):
    store, automation = _setup(engine, clock, ("a", 0, OrderStatus.PENDING, 6))
    timeline = {}
    for minute in range(1, 17):
        clock.advance(minutes=1)
        automation.tick()
        timeline[minute] = store.get("a").status

    assert timeline[2] is OrderStatus.PENDING
    assert timeline[3] is OrderStatus.CONFIRMED
    assert timeline[6] is OrderStatus.PREPARING
    assert timeline[10] is OrderStatus.READY
    assert timeline[15] is OrderStatus.DELIVERED
    assert engine.get_queue_length() == 0
    assert [o.order_id for o in engine.get_completed_orders()] == ["a"]


def test_ready_transition_recalculates_queue(engine, clock):
    store, automation = _setup(
        engine,
        clock,
        ("old", 11, OrderStatus.PREPARING, 12),
        ("new", 1, OrderStatus.PENDING, 25),
    )
    assert engine.get_order_timing("old").actual_wait_time == 35

    automation.tick()

    assert store.get("old").status is OrderStatus.READY
    assert engine.get_queue_length() == 1
    assert engine.get_queue_position("new") == 1
    assert engine.get_queue_position("old") == 0


def test_cancelled_and_delivered_orders_are_not_scanned(engine, clock):
    store, automation = _setup(
        engine,
        clock,
        ("c", 30, OrderStatus.CANCELLED, 6),
        ("d", 30, OrderStatus.DELIVERED, 6),
    )
    report = automation.tick()
    assert report.scanned == 0
    assert store.get("c").status is OrderStatus.CANCELLED


class FlakyStore(InMemoryOrderStore):
    def save_status(self, order_id, status):
        if order_id == "bad":
            raise UnknownOrderError(order_id)
        super().save_status(order_id, status)


def test_one_failing_order_does_not_block_the_batch(engine, clock):
    store = FlakyStore()
    for order_id in ("bad", "good"):
        created = clock.now - timedelta(minutes=5)
        store.add(OrderRecord(order_id=order_id, created_at=created, item_count=6))
        engine.add_order(order_id, 6, created_at=created)
    automation = StatusAutomation(engine=engine, orders=store, clock=clock)

    report = automation.tick()

    assert [e[0] for e in report.errors] == ["bad"]
    assert store.get("good").status is OrderStatus.CONFIRMED
    assert store.get("bad").status is OrderStatus.PENDING
    assert engine.get_order_timing("bad").status is OrderStatus.PENDING


def test_orders_unknown_to_engine_still_advance_in_store(engine, clock):
    store = InMemoryOrderStore()
    store.add(OrderRecord(order_id="x", created_at=clock.now - timedelta(minutes=4), item_count=3))
    automation = StatusAutomation(engine=engine, orders=store, clock=clock)

    report = automation.tick()

    assert store.get("x").status is OrderStatus.CONFIRMED
    assert report.errors == []


def test_listeners_receive_transitions(engine, clock):
    store, automation = _setup(engine, clock, ("a", 4, OrderStatus.PENDING, 6))
    received = []
    automation.add_listener(received.append)
    automation.add_listener(lambda t: 1 / 0)

    automation.tick()

    assert len(received) == 1
    msg = received[0].to_message()
    assert msg == {
        "type": "status_changed",
        "order_id": "a",
        "from": "pending",
        "to": "confirmed",
        "minutes_since_created": 4,
    }


def test_custom_thresholds(engine, clock):
    config = AutomationConfig(
        thresholds={OrderStatus.PENDING: (1, OrderStatus.PREPARING)},
    )
    store = InMemoryOrderStore()
    store.add(OrderRecord(order_id="a", created_at=clock.now - timedelta(minutes=1), item_count=3))
    automation = StatusAutomation(engine=engine, orders=store, config=config, clock=clock)
    automation.tick()
    assert store.get("a").status is OrderStatus.PREPARING


def test_status_reports_schedule_and_ticks(engine, clock):
    _store, automation = _setup(engine, clock)
    assert automation.status()["running"] is False

    automation.trigger()
    automation.start(interval=3600)
    try:
        status = automation.status()
        assert status["running"] is True
        assert status["interval_seconds"] == 3600
        assert status["ticks"] == 1
        assert status["last_tick_at"] == clock.now.isoformat()
    finally:
        automation.stop()

    assert automation.status()["running"] is False


class CancelDuringScanStore(InMemoryOrderStore):
    """Cancels an order right after the automation has read the rows."""

    def __init__(self):
        super().__init__()
        self.core = None

    def list_by_status(self, statuses):
        rows = super().list_by_status(statuses)
        if self.core is not None:
            core, self.core = self.core, None
            core.set_status("A", "cancelled")
        return rows


def test_cancel_between_scan_and_apply_is_not_overwritten(engine, clock):
    store = CancelDuringScanStore()
    core = FulfillmentCore(engine=engine, orders=store, clock=clock)
    core.place_order("A", 6, created_at=clock.now - timedelta(minutes=4))
    core.place_order("B", 6, created_at=clock.now - timedelta(minutes=4))
    store.core = core

    report = core.automation.tick()

    assert [t.order_id for t in report.transitions] == ["B"]
    assert store.get("A").status is OrderStatus.CANCELLED
    assert engine.get_order_timing("A").status is OrderStatus.CANCELLED
    assert store.get("B").status is OrderStatus.CONFIRMED
    assert engine.get_queue_length() == 1


class SlowStore(InMemoryOrderStore):
    def __init__(self):
        super().__init__()
        self.writing = threading.Event()

    def save_status(self, order_id, status):
        self.writing.set()
        time.sleep(0.1)
        super().save_status(order_id, status)


def test_stop_waits_for_the_tick_in_progress(engine, clock):
    store = SlowStore()
    for order_id in ("a", "b", "c"):
        created = clock.now - timedelta(minutes=4)
        store.add(OrderRecord(order_id=order_id, created_at=created, item_count=6))
        engine.add_order(order_id, 6, created_at=created)
    automation = StatusAutomation(engine=engine, orders=store, clock=clock)
    applied = []
    automation.add_listener(applied.append)

    automation.start(interval=0.01)
    assert store.writing.wait(2.0)
    automation.stop()

    assert automation.running is False
    assert sorted(t.order_id for t in applied) == ["a", "b", "c"]
    for order_id in ("a", "b", "c"):
        assert store.get(order_id).status is OrderStatus.CONFIRMED
        assert engine.get_order_timing(order_id).status is OrderStatus.CONFIRMED


def test_ticks_racing_with_callers_keep_store_and_engine_in_step(engine, clock):
    core = FulfillmentCore(engine=engine, clock=clock)
    for i in range(20):
        core.place_order(f"old{i}", 3 + i, created_at=clock.now - timedelta(minutes=i))
    errors = []

    def place():
        for i in range(20):
            core.place_order(f"new{i}", 1 + i)

    def cancel():
        for i in range(0, 20, 2):
            try:
                core.set_status(f"old{i}", "cancelled")
            except InvalidTransitionError:
                # Automation delivered it first.
                pass

    def tick():
        for _ in range(30):
            report = core.automation.tick()
            errors.extend(report.errors)
            clock.advance(minutes=1)

    threads = [threading.Thread(target=fn) for fn in (place, cancel, tick)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10.0)

    assert errors == []
    active = engine.get_active_orders()
    assert sorted(o.queue_position for o in active) == list(range(1, len(active) + 1))
    assert engine.get_queue_length() == len(active)
    ids = [f"old{i}" for i in range(20)] + [f"new{i}" for i in range(20)]
    for order_id in ids:
        assert core.orders.get(order_id).status is engine.get_order_timing(order_id).status
