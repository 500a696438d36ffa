"""Order-fulfillment queue: wait-time estimates and time-based status automation.

The package is split the same way as a queue manager service:
- `TimingEngine` keeps the in-flight orders and their recomputed ETAs
- `StatusAutomation` advances order status as wall-clock time passes
- `QueryFacade` is the read-only surface for presentation clients
- `MqttFulfillmentService` hosts all of the above on an MQTT broker

See `python -m fulfillment_queue.app -h` for how to run.
"""
