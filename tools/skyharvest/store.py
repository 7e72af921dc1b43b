"""Archive database – which posts and blobs have already been harvested."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger("skyharvest.store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS archived_posts (
    uri                 TEXT PRIMARY KEY,
    cid                 TEXT NOT NULL,
    author_did          TEXT NOT NULL,
    author_handle       TEXT NOT NULL,
    post_text           TEXT,
    image_count         INTEGER NOT NULL,
    archived_at         TEXT NOT NULL,
    post_created_at     TEXT NOT NULL,
    has_content_warning INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS archived_images (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    post_uri      TEXT NOT NULL,
    blob_cid      TEXT NOT NULL UNIQUE,
    filename      TEXT NOT NULL,
    mime_type     TEXT NOT NULL,
    size          INTEGER NOT NULL,
    alt_text      TEXT,
    width         INTEGER,
    height        INTEGER,
    downloaded_at TEXT NOT NULL,
    FOREIGN KEY (post_uri) REFERENCES archived_posts(uri)
);

CREATE INDEX IF NOT EXISTS idx_post_uri ON archived_images(post_uri);
CREATE INDEX IF NOT EXISTS idx_blob_cid ON archived_images(blob_cid);
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArchivedPostRecord:
    uri: str
    cid: str
    author_did: str
    author_handle: str
    post_text: str | None
    image_count: int
    post_created_at: str
    has_content_warning: bool = False
    archived_at: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class ArchivedImageRecord:
    post_uri: str
    blob_cid: str
    filename: str
    mime_type: str
    size: int
    alt_text: str | None = None
    width: int | None = None
    height: int | None = None
    downloaded_at: datetime = field(default_factory=_utc_now)


class ArchiveStore:
    """SQLite interface for the archive.  Single writer; every write commits."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> ArchiveStore:
        db_path = str(path)
        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"Failed to open archive database {db_path}: {exc}") from exc
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.executescript(SCHEMA)
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise StorageError(f"Failed to initialize archive schema: {exc}") from exc
        logger.debug("Opened archive database %s", db_path)
        return cls(conn)

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"Archive query failed: {exc}") from exc

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"Archive query failed: {exc}") from exc

    # ── posts ────────────────────────────────────────────────────

    def has_post(self, uri: str) -> bool:
        row = self._fetchone("SELECT 1 FROM archived_posts WHERE uri = ?", (uri,))
        return row is not None

    def upsert_post(self, record: ArchivedPostRecord) -> None:
        """Insert a post, or refresh every column of an existing one."""
        try:
            with self._conn:
                self._conn.execute(
                    """INSERT INTO archived_posts (
                           uri, cid, author_did, author_handle, post_text,
                           image_count, archived_at, post_created_at, has_content_warning
                       ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT (uri) DO UPDATE SET
                           cid                 = excluded.cid,
                           author_did          = excluded.author_did,
                           author_handle       = excluded.author_handle,
                           post_text           = excluded.post_text,
                           image_count         = excluded.image_count,
                           archived_at         = excluded.archived_at,
                           post_created_at     = excluded.post_created_at,
                           has_content_warning = excluded.has_content_warning""",
                    (
                        record.uri, record.cid, record.author_did, record.author_handle,
                        record.post_text, record.image_count, record.archived_at.isoformat(),
                        record.post_created_at, int(record.has_content_warning),
                    ),
                )
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"Failed to save post {record.uri}: {exc}") from exc

    def get_post(self, uri: str) -> ArchivedPostRecord | None:
        row = self._fetchone("SELECT * FROM archived_posts WHERE uri = ?", (uri,))
        if row is None:
            return None
        return ArchivedPostRecord(
            uri=row["uri"],
            cid=row["cid"],
            author_did=row["author_did"],
            author_handle=row["author_handle"],
            post_text=row["post_text"],
            image_count=int(row["image_count"]),
            post_created_at=row["post_created_at"],
            has_content_warning=bool(row["has_content_warning"]),
            archived_at=datetime.fromisoformat(row["archived_at"]),
        )

    # ── images ───────────────────────────────────────────────────

    def has_image(self, blob_cid: str) -> bool:
        row = self._fetchone("SELECT 1 FROM archived_images WHERE blob_cid = ?", (blob_cid,))
        return row is not None

    def upsert_image(self, record: ArchivedImageRecord) -> bool:
        """Record a downloaded blob.  Returns False if the blob was already known."""
        try:
            with self._conn:
                cur = self._conn.execute(
                    """INSERT INTO archived_images
                           (post_uri, blob_cid, filename, mime_type, size,
                            alt_text, width, height, downloaded_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT (blob_cid) DO NOTHING""",
                    (
                        record.post_uri, record.blob_cid, record.filename, record.mime_type,
                        record.size, record.alt_text, record.width, record.height,
                        record.downloaded_at.isoformat(),
                    ),
                )
        except sqlite3.DatabaseError as exc:
            raise StorageError(f"Failed to save image {record.blob_cid}: {exc}") from exc
        if cur.rowcount == 0:
            logger.debug("Image %s already recorded, insert ignored", record.blob_cid)
            return False
        return True

    def get_image(self, blob_cid: str) -> ArchivedImageRecord | None:
        row = self._fetchone("SELECT * FROM archived_images WHERE blob_cid = ?", (blob_cid,))
        return self._image_from_row(row) if row is not None else None

    def images_for_post(self, post_uri: str) -> list[ArchivedImageRecord]:
        rows = self._fetchall(
            "SELECT * FROM archived_images WHERE post_uri = ? ORDER BY id", (post_uri,)
        )
        return [self._image_from_row(r) for r in rows]

    @staticmethod
    def _image_from_row(row: sqlite3.Row) -> ArchivedImageRecord:
        return ArchivedImageRecord(
            post_uri=row["post_uri"],
            blob_cid=row["blob_cid"],
            filename=row["filename"],
            mime_type=row["mime_type"],
            size=int(row["size"]),
            alt_text=row["alt_text"],
            width=row["width"],
            height=row["height"],
            downloaded_at=datetime.fromisoformat(row["downloaded_at"]),
        )

    # ── stats / lifecycle ────────────────────────────────────────

    def stats(self) -> tuple[int, int]:
        """Return ``(post_count, image_count)``."""
        posts = self._fetchone("SELECT COUNT(*) AS n FROM archived_posts")["n"]
        images = self._fetchone("SELECT COUNT(*) AS n FROM archived_images")["n"]
        return int(posts), int(images)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> ArchiveStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
