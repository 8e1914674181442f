import unittest
from unittest.mock import patch

from rewear import images
from rewear.errors import BackendError, ValidationError
from rewear.images import ImageUpload
from rewear.storage import InMemoryStorageClient


class ImageHelpersTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorageClient()

    def test_build_image_path(self):
        self.assertEqual(
            images.build_image_path("my photo (1).JPG", now=1700000000.5, token="ab12"),
            "item_images/1700000000500-ab12-my-photo-1-.JPG",
        )
        self.assertEqual(
            images.build_image_path("../../etc/passwd", now=1, token="t"), "item_images/1000-t-passwd"
        )
        self.assertEqual(images.build_image_path("???", now=1, token="t"), "item_images/1000-t-image")
        self.assertNotEqual(
            images.build_image_path("photo.jpg", now=1), images.build_image_path("photo.jpg", now=1)
        )

    def test_same_filename_twice_in_one_batch(self):
        with patch("rewear.images.time.time", return_value=1700000000.0):
            urls = images.upload_item_images(
                self.storage,
                [
                    ImageUpload("photo.jpg", b"first", "image/jpeg"),
                    ImageUpload("photo.jpg", b"second", "image/jpeg"),
                ],
            )
        self.assertEqual(len(set(urls)), 2)
        self.assertEqual(
            sorted(obj.data for obj in self.storage.stored_objects.values()), [b"first", b"second"]
        )

    def test_failed_batch_removes_uploaded_files(self):
        original = self.storage.upload_bytes
        calls = []

        def flaky_upload(path, data, **kwargs):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("connection reset")
            return original(path, data, **kwargs)

        with patch.object(self.storage, "upload_bytes", side_effect=flaky_upload):
            with self.assertRaises(BackendError) as ctx:
                images.upload_item_images(
                    self.storage,
                    [
                        ImageUpload("front.png", b"front", "image/png"),
                        ImageUpload("back.png", b"back", "image/png"),
                    ],
                )
        self.assertEqual(ctx.exception.message, "Failed to upload image: back.png.")
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_returns_urls_in_order(self):
        files = [
            ImageUpload("front.png", b"front", "image/png"),
            ImageUpload("back.png", b"back", "image/png"),
        ]
        urls = images.upload_item_images(self.storage, files)

        self.assertTrue(urls[0].endswith("-front.png"))
        self.assertTrue(urls[1].endswith("-back.png"))
        stored = list(self.storage.stored_objects.values())
        self.assertEqual([obj.data for obj in stored], [b"front", b"back"])
        self.assertEqual(stored[0].cache_control, "3600")

    def test_upload_checks_every_file_first(self):
        files = [
            ImageUpload("ok.png", b"ok", "image/png"),
            ImageUpload("huge.png", b"x" * 11, "image/png"),
        ]
        with self.assertRaises(ValidationError) as ctx:
            images.upload_item_images(self.storage, files, max_bytes=10)
        self.assertEqual(ctx.exception.field, "images")
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_failure_names_the_file(self):
        with patch.object(self.storage, "upload_bytes", side_effect=OSError("disk full")):
            with self.assertRaises(BackendError) as ctx:
                images.upload_item_images(self.storage, [ImageUpload("a.png", b"a", "image/png")])
        self.assertEqual(ctx.exception.message, "Failed to upload image: a.png.")

    def test_path_from_public_url(self):
        url = "https://cdn.example.test/storage/rewear_images/item_images/1-a.png"
        self.assertEqual(images.path_from_public_url(url, "rewear_images"), "item_images/1-a.png")
        self.assertEqual(images.path_from_public_url("https://x.test/a.png", "rewear_images"), "")

    def test_delete_skips_foreign_urls(self):
        urls = images.upload_item_images(self.storage, [ImageUpload("a.png", b"a", "image/png")])
        deleted = images.delete_item_images(self.storage, urls + ["https://x.test/b.png"])
        self.assertEqual(len(deleted), 1)
        self.assertEqual(self.storage.stored_objects, {})
        self.assertEqual(images.delete_item_images(self.storage, []), [])

    def test_delete_failure(self):
        with patch.object(self.storage, "remove", side_effect=OSError("denied")):
            with self.assertRaises(BackendError) as ctx:
                images.delete_item_images(
                    self.storage, [self.storage.public_url("item_images/1-a.png")]
                )
        self.assertEqual(ctx.exception.message, "Failed to delete images.")


if __name__ == "__main__":
    unittest.main()
