from __future__ import annotations

# Wait time helpers.
#
# An order's intrinsic preparation time is a step function of how many units
# it contains:
#   < 5 items   -> 3..5 minutes (random, small orders vary the most)
#   5..9 items  -> 10 minutes
#   10..19      -> 15 minutes
#   >= 20       -> 20 minutes
#
# Queue contention is added on top of this by the TimingEngine.

import math
import random
from datetime import datetime


def compute_base_wait_minutes(*, item_count: int, rng: random.Random | None = None) -> int:
    """Compute the base preparation time (minutes) for an order.

    Args:
        item_count: total units across line items (>= 1).
        rng: optional RNG (useful for deterministic tests).

    Returns:
        Whole minutes, between 3 and 20.
    """
    if item_count < 1:
        raise ValueError("item_count must be >= 1")

    if item_count < 5:
        r = rng or random
        return r.randint(3, 5)
    if item_count < 10:
        return 10
    if item_count < 20:
        return 15
    return 20


def remaining_minutes(*, eta: datetime | None, now: datetime) -> int:
    """Whole minutes left until `eta`, rounded up and never negative."""
    if eta is None:
        return 0
    seconds = (eta - now).total_seconds()
    return max(0, math.ceil(seconds / 60.0))


def format_time_display(minutes: int) -> str:
    if minutes <= 0:
        return "Ready!"
    hours, mins = divmod(int(minutes), 60)
    return f"{hours}h {mins}m" if hours > 0 else f"{mins}m"
