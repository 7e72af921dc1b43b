"""Archive step – filter posts, download unseen blobs, record everything."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, Protocol

from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .api import Session
from .errors import DownloadError
from .models import ImageAttachment, Post
from .storage import DiskStorage, build_filename
from .store import ArchivedImageRecord, ArchivedPostRecord, ArchiveStore

logger = logging.getLogger("skyharvest.archiver")


class BlobSource(Protocol):
    def download_blob(self, session: Session, did: str, cid: str) -> bytes: ...


@dataclass
class ArchiveStats:
    downloaded: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class Archiver:
    """Persist the images of a batch of posts, one post at a time.

    The archive store has a single writer, so posts and images are never
    processed concurrently.
    """

    def __init__(
        self,
        store: ArchiveStore,
        storage: DiskStorage,
        blobs: BlobSource,
        session: Session,
        *,
        show_progress: bool = True,
    ) -> None:
        self.store = store
        self.storage = storage
        self.blobs = blobs
        self.session = session
        self.show_progress = show_progress

    def archive(self, posts: Iterable[Post], nsfw_only: bool = False) -> ArchiveStats:
        """Archive every image in ``posts`` that is not already recorded.

        Per-image failures are counted, never raised.  Only an output
        directory that cannot be created aborts the batch.
        """
        stats = ArchiveStats()
        selected = [p for p in posts if not nsfw_only or p.has_restricted_label()]
        if not selected:
            logger.info("No posts to process after filtering")
            return stats

        total_images = sum(len(p.image_attachments) for p in selected)
        logger.info("Processing %d posts with %d total images", len(selected), total_images)
        self.storage.ensure_root()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total} images"),
            TimeElapsedColumn(),
            disable=not self.show_progress,
        ) as progress:
            task = progress.add_task("images", total=total_images)
            for post in selected:
                progress.update(task, description=f"@{post.author.handle}")
                self._archive_post(post, stats, lambda: progress.advance(task))

        logger.info(
            "Archive complete. Downloaded: %d, Skipped: %d, Failed: %d",
            stats.downloaded, stats.skipped, stats.failed,
        )
        return stats

    # ── per post ─────────────────────────────────────────────────

    def _archive_post(self, post: Post, stats: ArchiveStats, advance: Callable[[], None]) -> None:
        is_nsfw = post.has_restricted_label()
        images = post.image_attachments

        self.store.upsert_post(
            ArchivedPostRecord(
                uri=post.uri,
                cid=post.cid,
                author_did=post.author.did,
                author_handle=post.author.handle,
                post_text=post.text,
                image_count=len(images),
                post_created_at=post.created_at,
                has_content_warning=is_nsfw,
            )
        )

        if not images:
            logger.debug("No images found in post %s", post.uri)
            return

        author_dir = self.storage.author_dir(post.author.handle, nsfw=is_nsfw)
        for idx, image in enumerate(images):
            self._archive_image(post, idx, image, author_dir, stats)
            advance()

    # ── per image ────────────────────────────────────────────────

    def _archive_image(
        self,
        post: Post,
        idx: int,
        image: ImageAttachment,
        author_dir: Path,
        stats: ArchiveStats,
    ) -> None:
        blob_id = image.blob_id
        if self.store.has_image(blob_id):
            logger.debug("Image %s already downloaded", blob_id)
            stats.skipped += 1
            return

        filename = build_filename(post.author.handle, post.created_at, post.cid, idx, image.mime_type)
        try:
            data = self.blobs.download_blob(self.session, post.author.did, blob_id)
            size = self.storage.write(author_dir / filename, data)
        except (DownloadError, OSError) as exc:
            logger.warning("Failed to download image %s: %s", blob_id, exc)
            stats.failed += 1
            return

        dims = self.storage.get_dimensions(data)
        self.store.upsert_image(
            ArchivedImageRecord(
                post_uri=post.uri,
                blob_cid=blob_id,
                filename=filename,
                mime_type=image.mime_type,
                size=size,
                alt_text=image.alt_text,
                width=dims[0] if dims else None,
                height=dims[1] if dims else None,
            )
        )
        logger.info("Downloaded: %s", filename)
        stats.downloaded += 1
