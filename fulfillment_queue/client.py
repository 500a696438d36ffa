from __future__ import annotations

# Order client.
#
# A short-lived process that talks to the fulfillment service:
# - connect to broker
# - publish one request (place an order, change its status, or ask for its ETA)
# - wait for the correlated response, print it and exit

import argparse
import time
from typing import Any

from .config import add_mqtt_args
from .mqtt_client import MqttClient
from .mqtt_topics import order_requests, order_responses


def send_request(*, mqtt_host: str, mqtt_port: int, namespace: str, message: dict[str, Any]) -> dict[str, Any]:
    # Unique client id so several clients can run concurrently.
    client_id = f"client-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = order_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=order_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=5.0,
        )
    finally:
        mqtt.stop()


def format_response(resp: dict[str, Any]) -> str:
    if resp.get("type") == "error":
        return f"error {resp.get('code')}: {resp.get('message')}"
    if resp.get("type") == "queue_snapshot":
        lines = [f"{resp.get('queue_length', 0)} active orders"]
        for o in resp.get("orders", []):
            lines.append(
                f"  #{o['queue_position']} {o['order_id']} [{o['status']}] {o['remaining_minutes']}m left"
            )
        return "\n".join(lines)
    return (
        f"order {resp.get('order_id')} [{resp.get('status')}] "
        f"position {resp.get('queue_position')}/{resp.get('queue_length')}, "
        f"{resp.get('display') or 'unknown'}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Fulfillment client (MQTT)")
    add_mqtt_args(parser)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_place = sub.add_parser("place", help="place a new order")
    p_place.add_argument("--order-id", required=True)
    p_place.add_argument("--item-count", type=int, required=True, help="total units across line items")
    p_place.add_argument("--created-at", default=None, help="ISO-8601 creation time (default: now)")

    p_query = sub.add_parser("query", help="show an order's position and ETA")
    p_query.add_argument("--order-id", required=True)

    p_status = sub.add_parser("status", help="set an order's status (e.g. cancelled)")
    p_status.add_argument("--order-id", required=True)
    p_status.add_argument("--status", required=True)

    sub.add_parser("snapshot", help="list the active queue")

    args = parser.parse_args()

    if args.cmd == "place":
        message: dict[str, Any] = {"type": "place_order", "order_id": args.order_id, "item_count": args.item_count}
        if args.created_at:
            message["created_at"] = args.created_at
    elif args.cmd == "query":
        message = {"type": "query_order", "order_id": args.order_id}
    elif args.cmd == "status":
        message = {"type": "update_status", "order_id": args.order_id, "status": args.status}
    else:
        message = {"type": "queue_snapshot"}

    resp = send_request(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=message,
    )
    print(f"[client] {format_response(resp)}")


if __name__ == "__main__":
    main()
