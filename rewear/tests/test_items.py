import unittest
from unittest.mock import patch

from rewear import items
from rewear.db import InMemoryDbClient, UserRecord
from rewear.errors import BackendError, Conflict, PermissionDenied, ValidationError
from rewear.realtime import InMemoryChangeFeed


class ItemServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.feed = InMemoryChangeFeed()
        self.owner = self.db.create_user(UserRecord(email="o@example.com", name="Owner", password_hash="x"))

    def _payload(self, **overrides):
        payload = {"title": "Silk scarf", "category": "Accessories", "size": "S", "point_value": "15"}
        payload.update(overrides)
        return payload

    def test_is_uuid(self):
        self.assertTrue(items.is_uuid("8f14e45f-ceea-467f-a8f2-6b2c8f7e4c1a"))
        self.assertFalse(items.is_uuid("8f14e45f-ceea-067f-a8f2-6b2c8f7e4c1a"))
        self.assertFalse(items.is_uuid("8f14e45f-ceea-467f-c8f2-6b2c8f7e4c1a"))
        self.assertFalse(items.is_uuid("123"))

    def test_create_normalises_fields(self):
        item = items.create_item(
            self.db,
            self.owner.id,
            self._payload(title="  Silk scarf ", tags=[" silk", "", "silk", "red "]),
            feed=self.feed,
        )
        self.assertEqual(item.title, "Silk scarf")
        self.assertEqual(item.point_value, 15)
        self.assertEqual(item.tags, ["silk", "red"])
        self.assertEqual(item.status, "active")
        self.assertEqual(self.feed.published[-1].new["id"], item.id)

    def test_create_validation(self):
        cases = [
            (self._payload(title=""), None),
            (self._payload(category="Hats"), "category"),
            (self._payload(size="XXXL"), "size"),
            (self._payload(condition="Shredded"), "condition"),
            (self._payload(point_value=0), "point_value"),
            (self._payload(point_value="lots"), "point_value"),
            (self._payload(title="x" * 101), "title"),
            (self._payload(status="swapped"), "status"),
        ]
        for payload, field in cases:
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationError) as ctx:
                    items.create_item(self.db, self.owner.id, payload)
                self.assertEqual(ctx.exception.field, field)

    def test_get_item_by_id_skips_store_for_non_uuid(self):
        with patch.object(self.db, "get_item") as get_item:
            self.assertIsNone(items.get_item_by_id(self.db, "abc"))
            get_item.assert_not_called()

    def test_update_whitelist_and_status_rules(self):
        item = items.create_item(self.db, self.owner.id, self._payload())
        with self.assertRaises(ValidationError):
            items.update_item(self.db, self.owner.id, item.id, {"owner_id": "someone"})
        with self.assertRaises(ValidationError):
            items.update_item(self.db, self.owner.id, item.id, {"status": "swapped"})
        with self.assertRaises(PermissionDenied):
            items.update_item(self.db, "intruder", item.id, {"title": "Mine"})

        updated = items.update_item(
            self.db, self.owner.id, item.id, {"status": "pending"}, feed=self.feed
        )
        self.assertEqual(updated.status, "pending")
        event = self.feed.published[-1]
        self.assertEqual((event.event_type, event.old["status"], event.new["status"]), ("UPDATE", "active", "pending"))

    def test_swapped_item_cannot_be_archived(self):
        item = items.create_item(self.db, self.owner.id, self._payload())
        self.db.update_item(item.id, {"status": "swapped"})
        with self.assertRaises(Conflict):
            items.archive_item(self.db, self.owner.id, item.id)

    def test_active_items_joined_with_owner(self):
        items.create_item(self.db, self.owner.id, self._payload())
        archived = items.create_item(self.db, self.owner.id, self._payload(title="Old tee", category="Tops"))
        items.archive_item(self.db, self.owner.id, archived.id)

        rows = items.get_active_items(self.db)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["owner"], {"id": self.owner.id, "name": "Owner", "avatar_url": None})

    def test_backend_failure_message(self):
        with patch.object(self.db, "list_items", side_effect=RuntimeError("boom")):
            with self.assertRaises(BackendError) as ctx:
                items.get_active_items(self.db)
        self.assertEqual(ctx.exception.message, "Failed to load active items.")

    def test_subscribe_to_items_sees_all_event_types(self):
        subscription = items.subscribe_to_items(self.feed)
        item = items.create_item(self.db, self.owner.id, self._payload(), feed=self.feed)
        items.archive_item(self.db, self.owner.id, item.id, feed=self.feed)
        self.assertEqual([e.event_type for e in subscription], ["INSERT", "UPDATE"])
        subscription.unsubscribe()
        self.assertEqual(self.feed.subscriber_count(), 0)


if __name__ == "__main__":
    unittest.main()
