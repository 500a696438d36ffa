from __future__ import annotations

# Runtime settings.
#
# Every entrypoint exposes these as argparse flags; the dataclasses hold the
# defaults so library users can construct components without a CLI.

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from .models import OrderStatus

DEFAULT_NAMESPACE = "fulfillment/v0"


@dataclass(frozen=True)
class EngineConfig:
    # JSON snapshot of the queue. None keeps the queue in memory only.
    snapshot_path: Path | None = None
    # LIFO: the newest order is served first and older orders accumulate
    # the wait of everything placed after them.
    newest_first: bool = True


@dataclass(frozen=True)
class AutomationConfig:
    """Status thresholds, in minutes since the order was created."""

    tick_seconds: float = 60.0
    thresholds: dict[OrderStatus, tuple[int, OrderStatus]] = field(
        default_factory=lambda: {
            OrderStatus.PENDING: (3, OrderStatus.CONFIRMED),
            OrderStatus.CONFIRMED: (6, OrderStatus.PREPARING),
            OrderStatus.PREPARING: (10, OrderStatus.READY),
            OrderStatus.READY: (15, OrderStatus.DELIVERED),
        }
    )

    def __post_init__(self) -> None:
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")


def add_mqtt_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--mqtt-host", default="127.0.0.1")
    p.add_argument("--mqtt-port", type=int, default=1883)
    p.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    p.add_argument("--log-level", default="INFO")


def add_service_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--snapshot-path",
        type=Path,
        default=None,
        help="JSON file for the queue snapshot (default: keep in memory)",
    )
    p.add_argument(
        "--tick-seconds",
        type=float,
        default=60.0,
        help="seconds between status automation scans",
    )
    p.add_argument(
        "--publish-every",
        type=float,
        default=5.0,
        help="seconds between broadcast queue snapshots",
    )
    p.add_argument(
        "--fifo",
        action="store_true",
        help="serve oldest orders first instead of the default newest-first policy",
    )
