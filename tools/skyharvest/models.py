"""Typed view of the Bluesky feed payloads the harvester consumes.

Only the fields the pipeline needs are modelled; everything else in a post
record is kept verbatim in ``Post.record``.  Embeds are dispatched on their
declared ``$type`` and anything unrecognized becomes :class:`UnknownEmbed`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

from .errors import DecodeError

logger = logging.getLogger("skyharvest.models")

IMAGES_EMBED = "app.bsky.embed.images"
EXTERNAL_EMBED = "app.bsky.embed.external"
RECORD_EMBED = "app.bsky.embed.record"
RECORD_WITH_MEDIA_EMBED = "app.bsky.embed.recordWithMedia"

# Moderation labels that mark a post as sensitive.
RESTRICTED_LABELS: frozenset[str] = frozenset({
    "porn",
    "sexual",
    "nudity",
    "graphic-media",
    "self-harm",
    "sensitive",
    "content-warning",
})

RAW_PREVIEW_CHARS = 2000


def raw_preview(value: Any, limit: int = RAW_PREVIEW_CHARS) -> str:
    """Render a payload for error messages, truncated to ``limit`` characters."""
    if isinstance(value, (bytes, bytearray)):
        text = value.decode("utf-8", errors="replace")
    elif isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, ensure_ascii=False, default=str)
    if len(text) > limit:
        return text[:limit] + f"... [{len(text) - limit} more chars]"
    return text


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── blobs & images ───────────────────────────────────────────────


class BlobRef(_Model):
    link: str = Field(alias="$link")


class Blob(_Model):
    """A content-addressed binary reference.

    Two encodings exist in the wild: the current one carries ``ref.$link``,
    the legacy one a bare ``cid`` string.
    """

    type: str | None = Field(default=None, alias="$type")
    ref: BlobRef | None = None
    cid: str | None = None
    mime_type: str = Field(alias="mimeType")
    size: int = 0

    @model_validator(mode="after")
    def _require_identifier(self) -> Blob:
        if self.ref is None and not self.cid:
            raise ValueError("blob has neither ref.$link nor cid")
        return self

    @property
    def blob_id(self) -> str:
        if self.ref is not None:
            return self.ref.link
        return str(self.cid)


class AspectRatio(_Model):
    width: int
    height: int


class ImageAttachment(_Model):
    image: Blob
    alt: str | None = None
    aspect_ratio: AspectRatio | None = Field(default=None, alias="aspectRatio")

    @property
    def blob_id(self) -> str:
        return self.image.blob_id

    @property
    def mime_type(self) -> str:
        return self.image.mime_type

    @property
    def alt_text(self) -> str | None:
        return self.alt or None


# ── embeds ───────────────────────────────────────────────────────


class _Embed(_Model):
    type: str = Field(alias="$type")

    @property
    def attachments(self) -> list[ImageAttachment]:
        return []

    @property
    def is_quote(self) -> bool:
        return False


class ImagesEmbed(_Embed):
    images: list[ImageAttachment]

    @property
    def attachments(self) -> list[ImageAttachment]:
        return list(self.images)


class ExternalEmbed(_Embed):
    external: dict[str, Any]

    @property
    def uri(self) -> str:
        return str(self.external.get("uri", ""))


class RecordEmbed(_Embed):
    """A quote of another record."""

    record: dict[str, Any]

    @property
    def is_quote(self) -> bool:
        return True


class RecordWithMediaEmbed(_Embed):
    """A quote of another record with media attached alongside it."""

    record: dict[str, Any]
    media: Any = None

    @field_validator("media", mode="before")
    @classmethod
    def _decode_media(cls, value: Any) -> Any:
        return decode_embed(value)

    @property
    def attachments(self) -> list[ImageAttachment]:
        if isinstance(self.media, _Embed):
            return self.media.attachments
        return []

    @property
    def is_quote(self) -> bool:
        return True


class UnknownEmbed(_Embed):
    raw: dict[str, Any] = Field(default_factory=dict)


Embed = Union[ImagesEmbed, ExternalEmbed, RecordEmbed, RecordWithMediaEmbed, UnknownEmbed]

_EMBED_TYPES: dict[str, type[_Embed]] = {
    IMAGES_EMBED: ImagesEmbed,
    EXTERNAL_EMBED: ExternalEmbed,
    RECORD_EMBED: RecordEmbed,
    RECORD_WITH_MEDIA_EMBED: RecordWithMediaEmbed,
}


def decode_embed(data: Any) -> Embed | None:
    """Decode a record's ``embed`` object according to its ``$type``."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise DecodeError("Embed is not an object", raw=raw_preview(data))

    kind = data.get("$type")
    model = _EMBED_TYPES.get(kind) if isinstance(kind, str) else None
    if model is None:
        logger.debug("Unrecognized embed type %r", kind)
        return UnknownEmbed(type=str(kind or ""), raw=data)

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise DecodeError(f"Malformed {kind} embed: {exc}", raw=raw_preview(data)) from exc


# ── posts ────────────────────────────────────────────────────────


class Author(_Model):
    did: str
    handle: str
    display_name: str | None = Field(default=None, alias="displayName")


class Label(_Model):
    val: str
    src: str = ""
    uri: str = ""
    cts: str | None = None


class Post(_Model):
    uri: str
    cid: str
    author: Author
    record: dict[str, Any]
    indexed_at: str = Field(default="", alias="indexedAt")
    labels: list[Label] = Field(default_factory=list)

    _embed: Embed | None = PrivateAttr(default=None)

    @field_validator("labels", mode="before")
    @classmethod
    def _null_labels(cls, value: Any) -> Any:
        return value or []

    @property
    def embed(self) -> Embed | None:
        return self._embed

    @property
    def text(self) -> str | None:
        value = self.record.get("text")
        return value if isinstance(value, str) else None

    @property
    def created_at(self) -> str:
        value = self.record.get("createdAt")
        return value if isinstance(value, str) else ""

    @property
    def label_values(self) -> list[str]:
        """Values of moderation labels and the author's own self-labels."""
        values = [label.val for label in self.labels]
        self_labels = self.record.get("labels")
        if isinstance(self_labels, dict):
            for entry in self_labels.get("values") or []:
                if isinstance(entry, dict) and isinstance(entry.get("val"), str):
                    values.append(entry["val"])
        return values

    def has_restricted_label(self) -> bool:
        return any(val in RESTRICTED_LABELS for val in self.label_values)

    @property
    def image_attachments(self) -> list[ImageAttachment]:
        return self._embed.attachments if self._embed is not None else []


def decode_post(data: Any) -> Post:
    """Decode a post view, including the embed inside its record."""
    if not isinstance(data, dict):
        raise DecodeError("Post is not an object", raw=raw_preview(data))
    try:
        post = Post.model_validate(data)
    except ValidationError as exc:
        raise DecodeError(f"Malformed post: {exc}", raw=raw_preview(data)) from exc
    post._embed = decode_embed(post.record.get("embed"))
    return post


# ── feed pages ───────────────────────────────────────────────────


@dataclass(frozen=True)
class FeedItem:
    post: Post
    reason: dict[str, Any] | None = None

    @property
    def is_repost(self) -> bool:
        return self.reason is not None


@dataclass(frozen=True)
class FeedPage:
    items: list[FeedItem]
    cursor: str | None = None


def decode_feed_page(text: str) -> FeedPage:
    """Decode a ``getActorLikes`` / ``getAuthorFeed`` response body."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise DecodeError(f"Response is not valid JSON: {exc}", raw=raw_preview(text)) from exc

    if not isinstance(data, dict) or not isinstance(data.get("feed"), list):
        raise DecodeError("Response has no 'feed' array", raw=raw_preview(text))

    items: list[FeedItem] = []
    for idx, entry in enumerate(data["feed"]):
        if not isinstance(entry, dict) or "post" not in entry:
            raise DecodeError(f"Feed item {idx} has no 'post'", raw=raw_preview(text))
        try:
            post = decode_post(entry["post"])
        except DecodeError as exc:
            raise DecodeError(f"Feed item {idx}: {exc}", raw=raw_preview(text)) from exc
        reason = entry.get("reason")
        items.append(FeedItem(post=post, reason=reason if isinstance(reason, dict) else None))

    cursor = data.get("cursor")
    return FeedPage(items=items, cursor=cursor if isinstance(cursor, str) and cursor else None)
