"""Cursor-based feed walker with rate-limit backoff and checkpointing."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from .api import Session
from .backoff import BackoffPolicy
from .errors import APIError, DecodeError, RateLimitExhaustedError
from .models import IMAGES_EMBED, FeedItem, FeedPage, Post, decode_feed_page

logger = logging.getLogger("skyharvest.fetcher")

DEFAULT_PAGE_SIZE = 100


class Endpoint(str, Enum):
    LIKES = "app.bsky.feed.getActorLikes"
    AUTHOR_FEED = "app.bsky.feed.getAuthorFeed"


class FetchState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    PAGE_ACCEPTED = "page_accepted"
    RATE_LIMITED = "rate_limited"
    FATAL_ERROR = "fatal_error"
    EXHAUSTED = "exhausted"
    COMPLETE = "complete"


class FeedRequester(Protocol):
    def request(
        self,
        session: Session,
        method: str,
        path: str,
        params: dict | None = None,
        json: object = None,
    ) -> tuple[int, str]: ...


class CursorSink(Protocol):
    def save(self, cursor: str) -> None: ...

    def clear(self) -> None: ...


@dataclass
class FetchResult:
    """Outcome of one fetch run.

    reason is one of ``end_of_data`` (empty page), ``no_cursor`` (last page)
    or ``limit_reached``.  resume_cursor is where a resumed run would start;
    None means from the beginning.
    """

    posts: list[Post] = field(default_factory=list)
    pages: int = 0
    reason: str = ""
    resume_cursor: str | None = None


def accept_any(item: FeedItem) -> bool:
    return True


def accept_original_image_post(item: FeedItem) -> bool:
    """Keep only original posts that carry an images embed."""
    if item.is_repost:
        return False
    embed = item.post.embed
    if embed is None or embed.is_quote:
        return False
    return embed.type == IMAGES_EMBED and bool(embed.attachments)


class PaginatedFetcher:
    """Walk a paginated feed until it ends or the caller's limit is met.

    Resume point when the limit is met part-way through a page: the cursor
    that requested that page, so a resumed run re-reads the page instead of
    skipping its unread items.  When the limit is met on the page's last
    item the page counts as consumed and its own cursor is the resume point.
    """

    def __init__(
        self,
        api: FeedRequester,
        session: Session,
        *,
        backoff: BackoffPolicy | None = None,
        checkpoint: CursorSink | None = None,
        delay: float = 0.0,
        page_size: int = DEFAULT_PAGE_SIZE,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.api = api
        self.session = session
        self.backoff = backoff or BackoffPolicy()
        self.checkpoint = checkpoint
        self.delay = max(0.0, float(delay))
        self.page_size = page_size
        self._sleep = sleep_fn or time.sleep
        self.state = FetchState.IDLE
        self._requests = 0

    # ── public API ───────────────────────────────────────────────

    def fetch_likes(self, actor: str, *, limit: int = 0, start_cursor: str | None = None) -> FetchResult:
        """Fetch posts liked by ``actor``."""
        return self._run(Endpoint.LIKES, actor, limit, start_cursor, accept_any, {})

    def fetch_author_feed(self, actor: str, *, limit: int = 0, start_cursor: str | None = None) -> FetchResult:
        """Fetch original image posts authored by ``actor``."""
        return self._run(
            Endpoint.AUTHOR_FEED,
            actor,
            limit,
            start_cursor,
            accept_original_image_post,
            {"filter": "posts_with_media"},
        )

    # ── pagination loop ──────────────────────────────────────────

    def _run(
        self,
        endpoint: Endpoint,
        actor: str,
        limit: int,
        start_cursor: str | None,
        accept: Callable[[FeedItem], bool],
        extra_params: dict[str, str],
    ) -> FetchResult:
        limit = max(0, int(limit))
        result = FetchResult()
        cursor = start_cursor
        self.state = FetchState.IDLE
        self._requests = 0

        if cursor:
            logger.info("Resuming %s for %s from saved cursor", endpoint.value, actor)

        while True:
            remaining = limit - len(result.posts) if limit else self.page_size
            params: dict[str, str | int] = {
                "actor": actor,
                "limit": min(self.page_size, remaining),
                **extra_params,
            }
            if cursor:
                params["cursor"] = cursor

            page = self._request_page(endpoint, params)
            result.pages += 1

            if not page.items:
                logger.info("No more posts returned, reached end of %s", endpoint.value)
                return self._finish(result, "end_of_data", None)

            for idx, item in enumerate(page.items):
                if not accept(item):
                    continue
                result.posts.append(item.post)
                if limit and len(result.posts) >= limit:
                    page_consumed = idx == len(page.items) - 1
                    resume = page.cursor if page_consumed else cursor
                    logger.info("Reached limit of %d posts", limit)
                    return self._finish(result, "limit_reached", resume)

            logger.debug(
                "Page %d accepted: %d items, %d posts so far",
                result.pages, len(page.items), len(result.posts),
            )

            cursor = page.cursor
            if cursor is None:
                logger.info("No cursor returned, reached end of %s", endpoint.value)
                return self._finish(result, "no_cursor", None)

            if self.checkpoint is not None:
                self.checkpoint.save(cursor)

    def _finish(self, result: FetchResult, reason: str, resume: str | None) -> FetchResult:
        result.reason = reason
        result.resume_cursor = resume
        self.state = FetchState.COMPLETE
        if self.checkpoint is not None:
            if resume is None:
                self.checkpoint.clear()
            else:
                self.checkpoint.save(resume)
        logger.info("Fetched %d posts in %d pages (%s)", len(result.posts), result.pages, reason)
        return result

    # ── single page with backoff ─────────────────────────────────

    def _request_page(self, endpoint: Endpoint, params: dict[str, str | int]) -> FeedPage:
        attempt = 0
        while True:
            if self.delay > 0 and self._requests > 0:
                self._sleep(self.delay)

            self.state = FetchState.REQUESTING
            status, body = self.api.request(self.session, "GET", endpoint.value, params=params)
            self._requests += 1

            if status == 429:
                attempt += 1
                self.state = FetchState.RATE_LIMITED
                if self.backoff.should_give_up(attempt):
                    self.state = FetchState.EXHAUSTED
                    raise RateLimitExhaustedError(
                        f"Rate limited after {self.backoff.max_retries} retries. "
                        "Try again later or use --delay",
                        attempts=attempt,
                    )
                wait = self.backoff.next_wait(attempt)
                logger.warning(
                    "Rate limited! Waiting %.0fs before retry %d/%d",
                    wait, attempt, self.backoff.max_retries,
                )
                self._sleep(wait)
                continue

            if not 200 <= status < 300:
                self.state = FetchState.FATAL_ERROR
                raise APIError(
                    f"Failed to fetch {endpoint.value}: {status} - {body}",
                    status=status,
                    body=body,
                )

            try:
                page = decode_feed_page(body)
            except DecodeError as exc:
                self.state = FetchState.FATAL_ERROR
                logger.warning("Failed to parse %s response: %s", endpoint.value, exc)
                logger.warning("Response text: %s", exc.raw)
                raise

            self.state = FetchState.PAGE_ACCEPTED
            return page
