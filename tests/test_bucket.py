import os

import pytest

from services.bucket import decode_data_uri, ext_for, safe_key
from services.errors import StorageError, ValidationError


def test_upload_read_and_remove(bucket):
    url = bucket.upload("card.png", b"abc")
    assert url == "/uploads/card.png"
    assert bucket.read("card.png") == b"abc"
    assert bucket.remove([bucket.key_from_url(url)]) == 1
    assert bucket.read("card.png") is None


def test_upload_without_upsert_refuses_existing(bucket):
    bucket.upload("card.png", b"abc")
    with pytest.raises(StorageError):
        bucket.upload("card.png", b"def", upsert=False)
    assert bucket.read("card.png") == b"abc"


def test_failed_write_leaves_no_temp_file(bucket, monkeypatch):
    def boom(src, dst):
        raise OSError("disk full")
    monkeypatch.setattr(os, "replace", boom)
    with pytest.raises(StorageError):
        bucket.upload("card.png", b"abc")
    monkeypatch.undo()
    assert os.listdir(bucket.root) == []


def test_key_from_url_only_for_own_objects(bucket):
    assert bucket.key_from_url("/uploads/a.png?v=2") == "a.png"
    assert bucket.key_from_url("https://cdn.example.com/a.png") is None
    assert bucket.key_from_url("/static/placeholder.svg") is None
    assert bucket.key_from_url(None) is None


def test_safe_key_strips_paths():
    assert safe_key("../../etc/passwd") == "passwd"
    with pytest.raises(ValidationError):
        safe_key("..")


def test_decode_data_uri():
    assert decode_data_uri("data:image/png;base64,AAEC") == (b"\x00\x01\x02", "image/png")
    assert decode_data_uri("data:image/svg+xml,%3Csvg%3E") == (b"<svg>", "image/svg+xml")
    with pytest.raises(ValidationError):
        decode_data_uri("data:image/png;base64,***")
    with pytest.raises(ValidationError):
        decode_data_uri("not a data uri")


def test_ext_for():
    assert ext_for("image/jpeg") == "jpg"
    assert ext_for("image/png", "Photo.JPEG") == "jpg"
    assert ext_for("image/webp", "") == "webp"
