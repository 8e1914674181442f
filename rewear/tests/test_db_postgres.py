import unittest

from rewear.db import (
    ItemRecord,
    NotificationRecord,
    PostgresDbClient,
    SessionRecord,
    SwapRecord,
    UserRecord,
)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.owner = self.db.create_user(UserRecord(email="Owner@Example.com", name="Owner", password_hash="h"))
        self.other = self.db.create_user(UserRecord(email="other@example.com", name="Other", password_hash="h"))

    def _item(self, title="Tee", created_at=1.0, **fields):
        return self.db.insert_item(
            ItemRecord(
                owner_id=self.owner.id,
                title=title,
                category="Tops",
                size="M",
                point_value=10,
                created_at=created_at,
                **fields,
            )
        )

    def test_users(self):
        fetched = self.db.get_user_by_email("OWNER@example.com")
        self.assertEqual(fetched.id, self.owner.id)
        with self.assertRaises(ValueError):
            self.db.create_user(UserRecord(email="owner@example.com", name="Dup", password_hash="h"))

        updated = self.db.update_user(self.owner.id, {"avatar_url": "https://a.test/me.png"})
        self.assertEqual(updated.avatar_url, "https://a.test/me.png")
        self.assertIsNone(self.db.update_user("missing", {"name": "x"}))

    def test_sessions_and_purge(self):
        live = self.db.create_session(SessionRecord(user_id=self.owner.id, expires_at=200.0))
        stale = self.db.create_session(SessionRecord(user_id=self.owner.id, expires_at=50.0))

        self.assertEqual(self.db.purge_expired_sessions(now=100.0), 1)
        self.assertIsNone(self.db.get_session(stale.token))
        self.assertEqual(self.db.get_session(live.token).user_id, self.owner.id)

        self.assertEqual(self.db.delete_user_sessions(self.owner.id), 1)
        self.assertIsNone(self.db.get_session(live.token))

    def test_items_round_trip_and_filters(self):
        first = self._item("Tee", created_at=1.0, tags=["cotton"], images=["https://x/1.png"])
        second = self._item("Coat", created_at=2.0)
        self._item("Old", created_at=3.0, status="archived")

        loaded = self.db.get_item(first.id)
        self.assertEqual(loaded.tags, ["cotton"])
        self.assertEqual(loaded.images, ["https://x/1.png"])

        active = self.db.list_items(status="active")
        self.assertEqual([i.id for i in active], [second.id, first.id])
        self.assertEqual(len(self.db.list_items(owner_id=self.owner.id)), 3)
        self.assertEqual(len(self.db.list_items(status="active", limit=1)), 1)

        self.db.update_item(first.id, {"status": "pending"})
        self.assertEqual(self.db.get_item(first.id).status, "pending")

    def test_swaps_visible_to_requester_and_owner(self):
        item = self._item()
        older = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id=self.other.id, requested_at=1.0))
        newer = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id=self.other.id, requested_at=2.0))

        for user in (self.owner, self.other):
            self.assertEqual(
                [s.id for s in self.db.list_swaps_for_user(user.id)], [newer.id, older.id]
            )
        self.assertEqual(self.db.list_swaps_for_user("stranger"), [])

        self.db.update_swap_status(older.id, "rejected")
        pending = self.db.list_swaps_for_item(item.id, status="pending")
        self.assertEqual([s.id for s in pending], [newer.id])

    def test_accept_and_complete_swap(self):
        item = self._item()
        winner = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id=self.other.id, requested_at=1.0))
        loser = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id="third", requested_at=2.0))

        accepted, reserved = self.db.accept_swap(winner.id, item.id)
        self.assertEqual((accepted.status, reserved.status), ("accepted", "pending"))
        with self.assertRaises(ValueError):
            self.db.accept_swap(loser.id, item.id)

        completed, swapped, rejected = self.db.complete_swap(winner.id, item.id, self.owner.id, 10)
        self.assertEqual((completed.status, swapped.status), ("completed", "swapped"))
        self.assertEqual([s.id for s in rejected], [loser.id])
        self.assertEqual(self.db.get_swap(loser.id).status, "rejected")
        self.assertEqual(self.db.get_user(self.owner.id).points, 10)
        ledger = self.db.list_point_transactions(self.owner.id)
        self.assertEqual([(t.reason, t.related_id) for t in ledger], [("swap_completed", winner.id)])

        with self.assertRaises(ValueError):
            self.db.complete_swap(winner.id, item.id, self.owner.id, 10)
        self.assertEqual(self.db.get_user(self.owner.id).points, 10)

    def test_complete_swap_rolls_back_on_failure(self):
        item = self._item()
        swap = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id=self.other.id))
        other = self.db.insert_swap(SwapRecord(item_id=item.id, requester_id="third"))
        self.db.accept_swap(swap.id, item.id)

        # The credit step fails after the item and swap rows were changed.
        with self.assertRaises(KeyError):
            self.db.complete_swap(swap.id, item.id, "missing-owner", 10)

        self.assertEqual(self.db.get_item(item.id).status, "pending")
        self.assertEqual(self.db.get_swap(swap.id).status, "accepted")
        self.assertEqual(self.db.get_swap(other.id).status, "pending")
        self.assertEqual(self.db.list_point_transactions("missing-owner"), [])

    def test_notifications_mark_all(self):
        for n in range(3):
            self.db.insert_notification(
                NotificationRecord(user_id=self.owner.id, type="swap_requested", created_at=float(n))
            )
        first = self.db.list_notifications(self.owner.id)[-1]
        self.db.mark_notification_read(first.id)
        self.assertTrue(self.db.get_notification(first.id).is_read)

        self.assertEqual(self.db.mark_all_notifications_read(self.owner.id), 2)
        self.assertEqual(self.db.mark_all_notifications_read(self.owner.id), 0)

    def test_adjust_points_writes_ledger(self):
        self.assertEqual(self.db.adjust_points(self.owner.id, 40, "swap_completed", related_id="s1"), 40)
        self.assertEqual(self.db.adjust_points(self.owner.id, 5, "bonus"), 45)
        self.assertEqual(self.db.get_user(self.owner.id).points, 45)

        ledger = self.db.list_point_transactions(self.owner.id)
        self.assertEqual(sorted(t.amount for t in ledger), [5, 40])
        with self.assertRaises(KeyError):
            self.db.adjust_points("missing", 1, "bonus")


if __name__ == "__main__":
    unittest.main()
