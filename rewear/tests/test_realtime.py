import json
import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from rewear import realtime
from rewear.realtime import ChangeEvent, ChangeFilter, InMemoryChangeFeed
from rewear.routes import sse_stream


class ChangeFilterTests(unittest.TestCase):
    def test_parse_row_filter(self):
        self.assertEqual(ChangeFilter.parse_row_filter("user_id=eq.42"), ("user_id", "42"))
        for bad in ("user_id", "user_id=gt.4", "=eq.4"):
            with self.subTest(row_filter=bad):
                with self.assertRaises(ValueError):
                    ChangeFilter(table="notifications", row_filter=bad)

    def test_matches_table_event_and_row(self):
        flt = ChangeFilter(table="notifications", event="INSERT", row_filter="user_id=eq.u1")
        self.assertTrue(flt.matches(ChangeEvent("notifications", "INSERT", new={"user_id": "u1"})))
        self.assertFalse(flt.matches(ChangeEvent("notifications", "INSERT", new={"user_id": "u2"})))
        self.assertFalse(flt.matches(ChangeEvent("notifications", "UPDATE", new={"user_id": "u1"})))
        self.assertFalse(flt.matches(ChangeEvent("items", "INSERT", new={"user_id": "u1"})))

    def test_delete_matches_old_row(self):
        flt = ChangeFilter(table="items", row_filter="owner_id=eq.o1")
        self.assertTrue(flt.matches(ChangeEvent("items", "DELETE", old={"owner_id": "o1"})))

    def test_unknown_event_type(self):
        with self.assertRaises(ValueError):
            ChangeEvent("items", "TRUNCATE")
        with self.assertRaises(ValueError):
            ChangeFilter(table="items", event="TRUNCATE")

    def test_payload_round_trip_keeps_event_type_key(self):
        event = ChangeEvent("items", "UPDATE", new={"id": "1"}, old={"id": "1"})
        payload = event.to_payload()
        self.assertEqual(payload["eventType"], "UPDATE")
        self.assertEqual(ChangeEvent.from_payload(payload), event)


class InMemoryFeedTests(unittest.TestCase):
    def setUp(self):
        self.feed = InMemoryChangeFeed()

    def test_notifications_channel_only_sees_own_inserts(self):
        channel, filters = realtime.notifications_channel("u1")
        self.assertEqual(channel, "notifications_for_user_u1")
        subscription = self.feed.subscribe(channel, filters)

        realtime.emit(self.feed, "notifications", "INSERT", new={"id": "n1", "user_id": "u1"})
        realtime.emit(self.feed, "notifications", "INSERT", new={"id": "n2", "user_id": "u2"})
        realtime.emit(self.feed, "notifications", "UPDATE", new={"id": "n1", "user_id": "u1"})

        self.assertEqual([e.new["id"] for e in subscription], ["n1"])
        self.assertEqual(len(self.feed.published), 3)

    def test_unsubscribe_stops_delivery(self):
        subscription = self.feed.subscribe(*realtime.items_channel())
        subscription.unsubscribe()
        realtime.emit(self.feed, "items", "INSERT", new={"id": "i1"})
        self.assertIsNone(subscription.get(timeout=0))
        self.assertEqual(self.feed.subscriber_count(), 0)

    def test_emit_logs_publish_failures(self):
        class BrokenFeed:
            def publish(self, event):
                raise RuntimeError("redis down")

        with self.assertLogs("rewear.realtime", level="ERROR"):
            realtime.emit(BrokenFeed(), "items", "INSERT", new={"id": "i1"})
        realtime.emit(None, "items", "INSERT")


class RedisFeedTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("rewear.realtime.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.from_url.return_value
        self.feed = realtime.RedisChangeFeed(url="redis://cache:6379/0")

    def _message(self, **new):
        payload = ChangeEvent("items", "INSERT", new=new).to_payload()
        return {"type": "message", "data": json.dumps(payload)}

    def test_publish_uses_table_topic(self):
        self.feed.publish(ChangeEvent("items", "INSERT", new={"id": "i1"}))
        topic, body = self.client.publish.call_args[0]
        self.assertEqual(topic, "rewear:changes:items")
        self.assertEqual(json.loads(body)["new"], {"id": "i1"})

    def test_connection_error_reads_as_no_event_and_reconnects(self):
        lost, fresh = MagicMock(), MagicMock()
        lost.get_message.side_effect = redis_exceptions.ConnectionError("idle timeout")
        fresh.get_message.return_value = self._message(id="i1")
        self.client.pubsub.side_effect = [lost, fresh]
        subscription = self.feed.subscribe(*realtime.items_channel())

        self.assertIsNone(subscription.get(timeout=0))
        lost.close.assert_called_once()
        fresh.subscribe.assert_called_once_with("rewear:changes:items")
        self.assertIs(self.feed.client, self.client)
        self.assertEqual(self.from_url.call_count, 1)

        self.assertEqual(subscription.get(timeout=0).new["id"], "i1")

    def test_failed_reconnect_also_reads_as_no_event(self):
        lost = MagicMock()
        lost.get_message.side_effect = redis_exceptions.ConnectionError("idle timeout")
        down = redis_exceptions.ConnectionError("server down")
        self.client.pubsub.side_effect = [lost, down, down]
        subscription = self.feed.subscribe(*realtime.items_channel())

        self.assertIsNone(subscription.get(timeout=0))
        self.assertIsNone(subscription.pubsub)
        self.assertIsNone(subscription.get(timeout=0))
        self.assertEqual(self.client.pubsub.call_count, 3)

    def test_unsubscribe_closes_pubsub(self):
        pubsub = self.client.pubsub.return_value
        subscription = self.feed.subscribe(*realtime.notifications_channel("u1"))
        pubsub.subscribe.assert_called_once_with("rewear:changes:notifications")

        subscription.unsubscribe()
        pubsub.unsubscribe.assert_called_once()
        pubsub.close.assert_called_once()
        self.assertIsNone(subscription.get(timeout=0))


class SseStreamTests(unittest.TestCase):
    def test_frames_then_unsubscribes(self):
        feed = InMemoryChangeFeed()
        subscription = feed.subscribe(*realtime.items_channel())
        realtime.emit(feed, "items", "INSERT", new={"id": "i1"})

        frames = list(sse_stream(subscription, poll_seconds=0.01, max_events=1))

        self.assertEqual(len(frames), 1)
        self.assertTrue(frames[0].startswith("data: "))
        payload = json.loads(frames[0][len("data: "):].strip())
        self.assertEqual((payload["table"], payload["new"]["id"]), ("items", "i1"))
        self.assertEqual(feed.subscriber_count(), 0)

    def test_keepalive_while_idle(self):
        feed = InMemoryChangeFeed()
        subscription = feed.subscribe(*realtime.items_channel())
        stream = sse_stream(subscription, poll_seconds=0.01, max_events=1)

        self.assertEqual(next(stream), ": keepalive\n\n")
        stream.close()
        self.assertEqual(feed.subscriber_count(), 0)


if __name__ == "__main__":
    unittest.main()
