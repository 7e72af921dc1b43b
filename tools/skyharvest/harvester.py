"""Core harvesting logic – orchestrates login → fetch → archive."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .api import BlueskyAPI
from .archiver import ArchiveStats, Archiver
from .backoff import BackoffPolicy
from .checkpoint import CheckpointStore
from .config import HarvesterConfig
from .fetcher import FetchResult, PaginatedFetcher
from .storage import DiskStorage
from .store import ArchiveStore

logger = logging.getLogger("skyharvest.core")


@dataclass
class HarvestResult:
    fetch: FetchResult
    stats: ArchiveStats

    def summary(self) -> dict[str, int]:
        return {
            "posts": len(self.fetch.posts),
            "pages": self.fetch.pages,
            **self.stats.as_dict(),
        }


class Harvester:
    """Orchestrates one Bluesky → local archive run."""

    def __init__(
        self,
        cfg: HarvesterConfig,
        *,
        api: BlueskyAPI | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.cfg = cfg
        self.api = api or BlueskyAPI(cfg.bluesky)
        self.storage = DiskStorage(cfg.output_dir)
        self.checkpoint = CheckpointStore.for_target(cfg.output_dir, cfg.mode, cfg.actor)
        self._sleep_fn = sleep_fn
        self._store: ArchiveStore | None = None

    @property
    def store(self) -> ArchiveStore:
        if self._store is None:
            self.storage.ensure_root()
            self._store = ArchiveStore.open(self.cfg.db_path)
        return self._store

    def run(self) -> HarvestResult:
        """Fetch the configured feed and archive its images.

        The output directory and database are prepared before logging in, so
        a bad destination fails before any network traffic.
        """
        store = self.store
        session = self.api.login(self.cfg.username, self.cfg.password)

        start_cursor = self.checkpoint.load() if self.cfg.resume else None
        if self.cfg.resume and start_cursor is None:
            logger.info("No saved cursor for %s, starting from the top", self.cfg.actor)

        fetcher = PaginatedFetcher(
            self.api,
            session,
            backoff=BackoffPolicy(
                base_delay=self.cfg.bluesky.backoff_base,
                max_retries=self.cfg.bluesky.max_retries,
            ),
            checkpoint=self.checkpoint,
            delay=self.cfg.delay,
            page_size=self.cfg.bluesky.page_size,
            sleep_fn=self._sleep_fn,
        )

        if self.cfg.mode == "feed":
            logger.info("Archiving all image posts from user: %s", self.cfg.actor)
            fetched = fetcher.fetch_author_feed(self.cfg.actor, limit=self.cfg.limit, start_cursor=start_cursor)
        else:
            logger.info("Archiving liked posts of: %s", self.cfg.actor)
            fetched = fetcher.fetch_likes(self.cfg.actor, limit=self.cfg.limit, start_cursor=start_cursor)

        archiver = Archiver(
            store,
            self.storage,
            self.api,
            session,
            show_progress=self.cfg.show_progress,
        )
        stats = archiver.archive(fetched.posts, nsfw_only=self.cfg.nsfw_only)
        return HarvestResult(fetch=fetched, stats=stats)

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self.api.close()
        if self._store is not None:
            self._store.close()

    def __enter__(self) -> Harvester:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
