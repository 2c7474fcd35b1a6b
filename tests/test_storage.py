import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from display_sync.models import OrderItem
from display_sync.storage import MediaStore, StorageError

class TestMediaStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = MediaStore(os.path.join(self.tmp.name, "db", "media.db"))
        self.store.initialize()
        self.uploader = self.store.add_user("ada", role="faculty", first_name="Ada", last_name="Lovelace")
        self.now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def tearDown(self):
        self.tmp.cleanup()

    def add(self, title, status="approved", days_ago=0, **kwargs):
        path = os.path.join(self.tmp.name, f"{title}.png")
        with open(path, "wb") as f:
            f.write(b"png")
        return self.store.add_media(
            title, path, kwargs.pop("file_type", "image"), self.uploader,
            status=status, approved_at=self.now - timedelta(days=days_ago) if status == "approved" else None,
            **kwargs
        )

    def test_initialize_is_idempotent(self):
        self.store.initialize()
        self.assertIsNotNone(self.store.pick_admin_id())
        self.assertEqual(self.store.get_setting("auto_archive_days"), "0")

    def test_approved_ordering(self):
        a = self.add("a", display_order=2, days_ago=3)
        b = self.add("b", display_order=1, days_ago=5)
        c = self.add("c", days_ago=10)
        d = self.add("d", days_ago=1)
        self.add("pending", status="pending")

        entries = self.store.list_approved_media()
        self.assertEqual([e.id for e in entries], [b, a, d, c])
        self.assertEqual(self.store.count_approved(), 4)

    def test_entry_fields(self):
        media_id = self.add("clip", file_type="video", duration=42.5, metadata={"caption": "hi"})
        entry = self.store.list_approved_media()[0]
        self.assertEqual(entry.id, media_id)
        self.assertEqual(entry.file_type, "video")
        self.assertEqual(entry.duration_seconds, 42.5)
        self.assertEqual(entry.file_url, "/uploads/clip.png")
        self.assertEqual(entry.uploaded_by, "ada")
        self.assertEqual(entry.full_name, "Ada Lovelace")
        self.assertEqual(entry.metadata, {"caption": "hi"})

    def test_malformed_metadata_is_ignored(self):
        media_id = self.add("x")
        with self.store._connect() as conn:
            conn.execute("UPDATE media SET metadata = '{broken' WHERE id = ?", (media_id,))
        self.assertEqual(self.store.list_approved_media()[0].metadata, {})

    def test_set_media_duration(self):
        media_id = self.add("x")
        self.assertTrue(self.store.set_media_duration(media_id, 12.0))
        self.assertFalse(self.store.set_media_duration(9999, 12.0))
        self.assertEqual(self.store.list_approved_media()[0].duration_seconds, 12.0)

    def test_archive_older_than(self):
        old = self.add("old", days_ago=40)
        fresh = self.add("fresh", days_ago=2)
        admin = self.store.pick_admin_id()

        archived = self.store.archive_older_than(self.now - timedelta(days=30), admin)
        self.assertEqual(archived, 1)
        self.assertEqual([e.id for e in self.store.list_approved_media()], [fresh])
        with self.store._connect() as conn:
            row = conn.execute("SELECT status, archived_by FROM media WHERE id = ?", (old,)).fetchone()
        self.assertEqual(row["status"], "archived")
        self.assertEqual(row["archived_by"], admin)

    def test_approve_only_pending(self):
        media_id = self.add("p", status="pending")
        self.assertTrue(self.store.approve_media(media_id, self.uploader))
        self.assertFalse(self.store.approve_media(media_id, self.uploader))
        self.assertEqual(self.store.count_approved(), 1)

    def test_reject_removes_file(self):
        media_id = self.add("p", status="pending")
        path = os.path.join(self.tmp.name, "p.png")
        self.assertTrue(self.store.reject_media(media_id, self.uploader))
        self.assertFalse(os.path.exists(path))
        self.assertFalse(self.store.reject_media(media_id, self.uploader))

    def test_delete_media(self):
        media_id = self.add("x")
        os.remove(os.path.join(self.tmp.name, "x.png"))  # missing file is only logged
        self.assertTrue(self.store.delete_media(media_id))
        self.assertFalse(self.store.delete_media(media_id))
        self.assertEqual(self.store.count_approved(), 0)

    def test_update_order(self):
        a = self.add("a", days_ago=1)
        b = self.add("b", days_ago=2)
        self.store.update_media_order([OrderItem(id=b, display_order=0), OrderItem(id=a, display_order=1)])
        self.assertEqual([e.id for e in self.store.list_approved_media()], [b, a])

    def test_update_media(self):
        media_id = self.add("x")
        self.assertTrue(self.store.update_media(media_id, {"title": "Renamed", "metadata": {"k": 1}}))
        entry = self.store.list_approved_media()[0]
        self.assertEqual(entry.title, "Renamed")
        self.assertEqual(entry.metadata, {"k": 1})
        self.assertFalse(self.store.update_media(9999, {"title": "nope"}))
        with self.assertRaises(ValueError):
            self.store.update_media(media_id, {"file_path": "/etc/passwd"})

    def test_settings_roundtrip(self):
        self.store.set_setting("auto_archive_days", "30", updated_by=self.uploader)
        self.assertEqual(self.store.get_setting("auto_archive_days"), "30")
        self.assertIsNone(self.store.get_setting("missing"))

    def test_unreadable_database_raises_storage_error(self):
        store = MediaStore(os.path.join(self.tmp.name, "missing-dir", "nested", "x.db"))
        with self.assertRaises(StorageError):
            store.count_approved()

if __name__ == '__main__':
    unittest.main()
