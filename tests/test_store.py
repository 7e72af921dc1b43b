"""Tests for the SQLite archive store."""

import sqlite3

import pytest

from skyharvest.errors import StorageError
from skyharvest.store import ArchivedImageRecord, ArchivedPostRecord, ArchiveStore


def _post(uri="at://did:plc:test/app.bsky.feed.post/1", **overrides):
    fields = dict(
        uri=uri,
        cid="bafyreitest",
        author_did="did:plc:test",
        author_handle="test.bsky.social",
        post_text=None,
        image_count=1,
        post_created_at="2024-01-01T00:00:00Z",
        has_content_warning=False,
    )
    fields.update(overrides)
    return ArchivedPostRecord(**fields)


def _image(blob_cid="test_blob_cid_123", post_uri="at://did:plc:test/app.bsky.feed.post/1", **overrides):
    fields = dict(
        post_uri=post_uri,
        blob_cid=blob_cid,
        filename="test.jpg",
        mime_type="image/jpeg",
        size=1024,
    )
    fields.update(overrides)
    return ArchivedImageRecord(**fields)


class TestPosts:
    def test_upsert_and_lookup(self, store):
        assert not store.has_post("at://did:plc:test/app.bsky.feed.post/1")
        store.upsert_post(_post())
        assert store.has_post("at://did:plc:test/app.bsky.feed.post/1")

    def test_upsert_overwrites_without_duplicating(self, store):
        store.upsert_post(_post(post_text="old", has_content_warning=False))
        store.upsert_post(_post(post_text="new", has_content_warning=True, image_count=2))

        record = store.get_post("at://did:plc:test/app.bsky.feed.post/1")
        assert record.post_text == "new"
        assert record.has_content_warning is True
        assert record.image_count == 2
        assert store.stats() == (1, 0)

    def test_upsert_keeps_existing_images(self, store):
        store.upsert_post(_post())
        store.upsert_image(_image())
        store.upsert_post(_post(post_text="refreshed"))
        assert store.has_image("test_blob_cid_123")

    def test_get_missing_post(self, store):
        assert store.get_post("at://nope") is None


class TestImages:
    def test_insert_then_detected(self, store):
        store.upsert_post(_post())
        assert not store.has_image("test_blob_cid_123")
        assert store.upsert_image(_image(alt_text="alt", width=4, height=3)) is True
        assert store.has_image("test_blob_cid_123")

        record = store.get_image("test_blob_cid_123")
        assert record.filename == "test.jpg"
        assert record.alt_text == "alt"
        assert (record.width, record.height) == (4, 3)

    def test_second_insert_for_same_blob_is_ignored(self, store):
        store.upsert_post(_post())
        store.upsert_image(_image(filename="first.jpg"))
        assert store.upsert_image(_image(filename="second.jpg")) is False
        assert store.get_image("test_blob_cid_123").filename == "first.jpg"
        assert store.stats() == (1, 1)

    def test_images_for_post(self, store):
        store.upsert_post(_post())
        store.upsert_post(_post(uri="at://other"))
        store.upsert_image(_image("blob_1", filename="a.jpg"))
        store.upsert_image(_image("blob_2", filename="b.jpg"))
        store.upsert_image(_image("blob_3", post_uri="at://other"))
        assert [i.blob_cid for i in store.images_for_post("at://did:plc:test/app.bsky.feed.post/1")] == [
            "blob_1",
            "blob_2",
        ]

    def test_image_requires_known_post(self, store):
        with pytest.raises(StorageError):
            store.upsert_image(_image(post_uri="at://unknown"))


class TestLifecycle:
    def test_stats_start_at_zero(self, store):
        assert store.stats() == (0, 0)

    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "archive.db"
        with ArchiveStore.open(path) as s:
            s.upsert_post(_post())
            s.upsert_image(_image())
        with ArchiveStore.open(path) as s:
            assert s.has_image("test_blob_cid_123")
            assert s.stats() == (1, 1)

    def test_indexes_exist(self, tmp_path):
        path = tmp_path / "archive.db"
        ArchiveStore.open(path).close()
        conn = sqlite3.connect(path)
        names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
        conn.close()
        assert {"idx_post_uri", "idx_blob_cid"} <= names

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        with pytest.raises(StorageError):
            ArchiveStore.open(tmp_path / "missing" / "archive.db")


class TestReadFailures:
    @pytest.mark.parametrize(
        "read",
        [
            lambda s: s.has_post("at://x"),
            lambda s: s.get_post("at://x"),
            lambda s: s.has_image("blob"),
            lambda s: s.get_image("blob"),
            lambda s: s.images_for_post("at://x"),
            lambda s: s.stats(),
        ],
        ids=["has_post", "get_post", "has_image", "get_image", "images_for_post", "stats"],
    )
    def test_database_errors_become_storage_errors(self, store, read):
        store._conn.execute("DROP TABLE archived_images")
        store._conn.execute("DROP TABLE archived_posts")
        with pytest.raises(StorageError, match="Archive query failed"):
            read(store)
