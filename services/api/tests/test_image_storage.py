"""
Tests for the image storage backends.

Run with: pytest tests/test_image_storage.py -v
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.drive_client import drive_file_id_from_url
from core.image_storage import DriveImageStorage, LocalImageStorage, object_path

JPEG = b"\xff\xd8\xff"


class TestObjectPath:
    """Tests for the per-user object layout."""

    def test_memo_and_temp_folders(self):
        assert object_path("u1", "a b.jpg", "m1", ts=5) == "users/u1/memos/m1/5_a_b.jpg"
        assert object_path("u1", "../x.png", ts=5) == "users/u1/temp/5_x.png"


class TestLocalImageStorage:
    """Tests for the filesystem backend."""

    def test_owns_uploaded_url(self, tmp_path):
        storage = LocalImageStorage(str(tmp_path), "http://testserver/uploads")
        url = storage.upload_image("u1", JPEG, content_type="image/jpeg", filename="a.jpg")
        assert storage.owns_url(url)

    def test_foreign_urls(self, tmp_path):
        storage = LocalImageStorage(str(tmp_path), "http://testserver/uploads")
        for url in (
            "",
            "http://169.254.169.254/latest/meta-data/",
            "http://testserver/uploadsX/users/u1/a.jpg",
            "http://testserver/uploads/../secret.jpg",
        ):
            assert not storage.owns_url(url), url

    def test_delete_stays_inside_root(self, tmp_path):
        outside = tmp_path / "keep.txt"
        outside.write_text("x")
        storage = LocalImageStorage(str(tmp_path / "uploads"), "http://testserver/uploads")
        storage.delete_image("http://testserver/uploads/../keep.txt")
        assert outside.exists()

        url = storage.upload_image("u1", JPEG, content_type="image/jpeg", filename="a.jpg")
        storage.delete_image(url)
        assert not any((tmp_path / "uploads").rglob("*.jpg"))


class TestDriveUrls:
    """Tests for recognising Drive links."""

    def test_file_id(self):
        assert drive_file_id_from_url("https://drive.google.com/uc?export=view&id=abc") == "abc"

    def test_lookalike_hosts(self):
        for url in (
            "https://drive.google.com.evil.example/uc?id=abc",
            "http://evil.example/?next=drive.google.com&id=abc",
            "http://drive.google.com/uc?id=abc",
            "https://drive.google.com/uc?export=view",
        ):
            assert drive_file_id_from_url(url) is None, url

    def test_owns_url(self):
        storage = DriveImageStorage()
        assert storage.owns_url("https://drive.google.com/uc?export=view&id=abc")
        assert not storage.owns_url("http://169.254.169.254/latest/meta-data/")
