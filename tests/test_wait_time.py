import random
from datetime import datetime, timedelta, timezone

import pytest

from fulfillment_queue.wait_time import compute_base_wait_minutes, format_time_display, remaining_minutes


def test_small_orders_wait_three_to_five_minutes():
    rng = random.Random(42)
    seen = {compute_base_wait_minutes(item_count=n, rng=rng) for n in (1, 2, 3, 4) for _ in range(50)}
    assert seen == {3, 4, 5}


@pytest.mark.parametrize(
    "item_count, minutes",
    [(5, 10), (9, 10), (10, 15), (19, 15), (20, 20), (250, 20)],
)
def test_base_wait_tiers(item_count, minutes):
    assert compute_base_wait_minutes(item_count=item_count) == minutes


def test_base_wait_rejects_empty_order():
    with pytest.raises(ValueError):
        compute_base_wait_minutes(item_count=0)


def test_format_time_display():
    assert format_time_display(0) == "Ready!"
    assert format_time_display(-3) == "Ready!"
    assert format_time_display(9) == "9m"
    assert format_time_display(60) == "1h 0m"
    assert format_time_display(75) == "1h 15m"


def test_remaining_minutes_rounds_up_and_clamps():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert remaining_minutes(eta=now + timedelta(minutes=4, seconds=1), now=now) == 5
    assert remaining_minutes(eta=now + timedelta(minutes=4), now=now) == 4
    assert remaining_minutes(eta=now - timedelta(minutes=2), now=now) == 0
    assert remaining_minutes(eta=None, now=now) == 0
