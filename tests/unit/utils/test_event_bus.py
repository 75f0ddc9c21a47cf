import unittest
from dataclasses import dataclass

from app.enums.events import AlertEvent, TelemetryEvent
from app.utils.event_bus import EventBus


@dataclass
class _Payload:
    stream_id: str
    value: float


class TestEventBus(unittest.TestCase):
    """Unit tests for the EventBus module."""

    def setUp(self):
        self.event_bus = EventBus()
        self.event_bus.clear_subscribers()
        self.received = []

    def tearDown(self):
        self.event_bus.clear_subscribers()

    def listener(self, data):
        self.received.append(data)

    def test_singleton(self):
        self.assertIs(EventBus(), EventBus.get_instance())

    def test_subscribe_and_publish(self):
        self.event_bus.subscribe(AlertEvent.ALERT_FIRED, self.listener)
        queued = self.event_bus.publish(AlertEvent.ALERT_FIRED, {"alert_id": "a-1"})

        self.assertEqual(queued, 1)
        self.assertTrue(self.event_bus.wait_idle())
        self.assertEqual(self.received, [{"alert_id": "a-1"}])

    def test_enum_and_string_topics_are_the_same(self):
        self.event_bus.subscribe("alerts.cleared", self.listener)
        self.event_bus.publish(AlertEvent.ALERT_CLEARED, {"alert_id": "a-1"})
        self.event_bus.wait_idle()
        self.assertEqual(len(self.received), 1)

    def test_dataclass_payload_becomes_dict(self):
        self.event_bus.subscribe(TelemetryEvent.READINGS_ACCEPTED, self.listener)
        self.event_bus.publish(TelemetryEvent.READINGS_ACCEPTED, _Payload("temp-1", 70.0))
        self.event_bus.wait_idle()
        self.assertEqual(self.received, [{"stream_id": "temp-1", "value": 70.0}])

    def test_no_subscribers(self):
        self.assertEqual(self.event_bus.publish("nobody.listens", {"x": 1}), 0)

    def test_unsubscribe(self):
        unsubscribe = self.event_bus.subscribe(AlertEvent.ALERT_FIRED, self.listener)
        unsubscribe()
        self.assertEqual(self.event_bus.publish(AlertEvent.ALERT_FIRED, {}), 0)

    def test_failing_subscriber_does_not_affect_others(self):
        def broken(_data):
            raise RuntimeError("subscriber bug")

        self.event_bus.subscribe(AlertEvent.ALERT_FIRED, broken)
        self.event_bus.subscribe(AlertEvent.ALERT_FIRED, self.listener)
        with self.assertLogs("app.utils.event_bus", level="ERROR"):
            self.event_bus.publish(AlertEvent.ALERT_FIRED, {"alert_id": "a-2"})
            self.event_bus.wait_idle()
        self.assertEqual(self.received, [{"alert_id": "a-2"}])

    def test_listener_decorator(self):
        @self.event_bus.listener(TelemetryEvent.SESSION_STARTED)
        def on_session(data):
            self.received.append(("session", data))

        self.event_bus.publish(TelemetryEvent.SESSION_STARTED, {"session_id": "s-1"})
        self.event_bus.wait_idle()
        self.assertEqual(self.received, [("session", {"session_id": "s-1"})])

    def test_metrics(self):
        self.event_bus.subscribe(AlertEvent.ALERT_FIRED, self.listener)
        metrics = self.event_bus.get_metrics()
        self.assertEqual(metrics["subscribers"], 1)
        self.assertIn("dropped_events", metrics)


if __name__ == "__main__":
    unittest.main()
