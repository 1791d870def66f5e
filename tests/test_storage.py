"""Tests for the local history store, media store and filesystem writer."""

from datetime import datetime, timedelta

import pytest

from links2media.schemas.result import HistoryRecord, Platform
from links2media.storage import (
    DirectoryMediaStore,
    JsonHistoryStore,
    LocalFileSystemWriter,
    guess_mime_type,
    unique_display_name,
)


def _record(url: str, minutes_ago: int = 0) -> HistoryRecord:
    return HistoryRecord(
        url=url,
        platform=Platform.WEIBO,
        title=f"Post {url[-1]}",
        created_at=datetime(2024, 1, 1, 12, 0) - timedelta(minutes=minutes_ago),
    )


class TestJsonHistoryStore:
    def test_insert_and_exists(self, tmp_path):
        store = JsonHistoryStore(tmp_path / "sub" / "history.json")
        assert not store.exists_by_url("https://weibo.com/1/A")

        store.insert(_record("https://weibo.com/1/A"))

        assert store.exists_by_url("https://weibo.com/1/A")
        # a fresh instance reads the same file
        assert JsonHistoryStore(tmp_path / "sub" / "history.json").exists_by_url("https://weibo.com/1/A")

    def test_page_newest_first(self, tmp_path):
        store = JsonHistoryStore(tmp_path / "history.json")
        for i, minutes in enumerate([30, 10, 20, 0]):
            store.insert(_record(f"https://weibo.com/1/{i}", minutes_ago=minutes))

        first = store.page(0, 2)
        second = store.page(1, 2)

        assert [r.url[-1] for r in first] == ["3", "1"]
        assert [r.url[-1] for r in second] == ["2", "0"]
        assert store.page(2, 2) == []

    def test_page_ascending_and_bad_key(self, tmp_path):
        store = JsonHistoryStore(tmp_path / "history.json")
        store.insert(_record("https://weibo.com/1/a", minutes_ago=5))
        store.insert(_record("https://weibo.com/1/b", minutes_ago=10))

        assert [r.url[-1] for r in store.page(0, 10, descending=False)] == ["b", "a"]
        with pytest.raises(ValueError):
            store.page(0, 10, order_key="nope")

    def test_delete(self, tmp_path):
        store = JsonHistoryStore(tmp_path / "history.json")
        store.insert(_record("https://weibo.com/1/A"))

        assert store.delete("https://weibo.com/1/A") is True
        assert store.delete("https://weibo.com/1/A") is False
        assert not store.exists_by_url("https://weibo.com/1/A")


class TestMediaStore:
    def test_unique_display_name_uses_store_predicate(self, tmp_path):
        store = DirectoryMediaStore(tmp_path)
        store.save(b"1", "pic.jpg", "weibo", "image/jpeg")
        store.save(b"2", "pic(1).jpg", "weibo", "image/jpeg")

        assert unique_display_name(store, "pic", ".jpg", "weibo") == "pic(2).jpg"
        assert unique_display_name(store, "pic", ".jpg", "douyin") == "pic.jpg"

    def test_save_returns_location(self, tmp_path):
        store = DirectoryMediaStore(tmp_path)
        location = store.save(b"data", "clip.mp4", "douyin", "video/mp4")
        assert location == str(tmp_path / "douyin" / "clip.mp4")
        assert (tmp_path / "douyin" / "clip.mp4").read_bytes() == b"data"

    def test_unwritable_folder_returns_none(self, tmp_path):
        blocked = tmp_path / "blocked"
        blocked.write_text("not a folder")
        store = DirectoryMediaStore(blocked)
        assert store.save(b"data", "clip.mp4", "douyin", "video/mp4") is None


def test_local_file_system_writer(tmp_path):
    writer = LocalFileSystemWriter()
    directory = writer.ensure_directory(tmp_path / "a" / "b")
    assert directory.is_dir()

    path = writer.unique_path(directory, "x", "jpg")
    path.write_bytes(b"1")
    assert writer.unique_path(directory, "x", "jpg").name == "x(1).jpg"


def test_guess_mime_type(tmp_path):
    assert guess_mime_type(tmp_path / "a.jpg") == "image/jpeg"
    assert guess_mime_type(tmp_path / "a.unknownext") == "application/octet-stream"
