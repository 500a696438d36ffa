"""MQTT topic helpers.

We keep topic construction in one place so the service and its clients agree
on naming.

Topic layout under a configurable namespace (default: `fulfillment/v0`):

Request/response:
- `<ns>/orders/requests`
- `<ns>/orders/responses/<client_id>`

Streaming/broadcast:
- `<ns>/queue/updates`
    The service broadcasts periodic queue snapshots (positions and ETAs).
- `<ns>/orders/events`
    One `status_changed` message per automated status transition.
"""

from __future__ import annotations

from .config import DEFAULT_NAMESPACE


def order_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/orders/requests"


def order_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/orders/responses/{client_id}"


def queue_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Broadcast queue snapshots. Dashboards subscribe here."""
    return f"{namespace}/queue/updates"


def order_events(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/orders/events"
