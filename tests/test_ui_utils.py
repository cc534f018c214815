import unittest

from blob_uploader.models import SourceFile, UploadAttempt, UploadStatus
from blob_uploader.ui_utils import build_tiles, entry_kind, format_size, format_status


class UiUtilsTests(unittest.TestCase):
    def test_entry_kind_recognises_image_suffixes(self):
        self.assertEqual("image", entry_kind("https://store/c/photo.jpg"))
        self.assertEqual("image", entry_kind("https://store/c/a.jpeg"))
        self.assertEqual("image", entry_kind("https://store/c/a.PNG"))
        self.assertEqual("image", entry_kind("https://store/c/anim.gif?sv=1"))
        self.assertEqual("text", entry_kind("https://store/c/doc.pdf"))
        self.assertEqual("text", entry_kind("https://store/c/jpg"))

    def test_build_tiles_preserves_order_and_addresses(self):
        entries = ("https://store/c/z.txt", "https://store/c/a%20b.png")

        tiles = build_tiles(entries)

        self.assertEqual(list(entries), [tile.address for tile in tiles])
        self.assertEqual(["text", "image"], [tile.kind for tile in tiles])

    def test_format_size(self):
        self.assertEqual("-", format_size(None))
        self.assertEqual("512 B", format_size(512))
        self.assertEqual("9.8 KB", format_size(10000))
        self.assertEqual("2.0 MB", format_size(2 * 1024 * 1024))

    def test_format_status_includes_detail_and_listing_error(self):
        attempt = UploadAttempt(source_file=SourceFile(name="a.txt", data=b"x"))
        self.assertEqual("", format_status(attempt))

        attempt.status = UploadStatus.TRANSFER_SUCCEEDED
        attempt.status_text = "Successfully finished upload"
        attempt.status_detail = "trace"
        attempt.listing_error = "down"

        self.assertEqual(
            "Successfully finished upload\nListing not refreshed: down",
            format_status(attempt),
        )
        self.assertEqual(
            "Successfully finished upload\ntrace\nListing not refreshed: down",
            format_status(attempt, include_detail=True),
        )
        self.assertEqual("", format_status(None))


if __name__ == "__main__":
    unittest.main()
