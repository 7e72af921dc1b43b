"""Disk storage layer – archive layout, filenames and atomic image writes."""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .errors import ArchiveSetupError

logger = logging.getLogger("skyharvest.storage")

# Map declared MIME type → file extension
EXTENSION_MAP: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

NSFW_DIR = "nsfw"
CID_PREFIX_LEN = 8
PART_SUFFIX = ".part"


def extension_for(mime_type: str) -> str:
    return EXTENSION_MAP.get(mime_type.lower(), "bin")


def sanitize_timestamp(value: str) -> str:
    """Replace characters some filesystems reject (``:``) or mangle (``.``)."""
    return value.replace(":", "-").replace(".", "-")


def build_filename(handle: str, created_at: str, post_cid: str, index: int, mime_type: str) -> str:
    """``<handle>_<timestamp>_<cid prefix>_<index>.<ext>`` – stable for a given post image."""
    return (
        f"{handle}_{sanitize_timestamp(created_at)}_{post_cid[:CID_PREFIX_LEN]}_{index}"
        f".{extension_for(mime_type)}"
    )


class DiskStorage:
    """Write harvested images under ``root/[nsfw/]<handle>/``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._swept: set[Path] = set()

    def ensure_root(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArchiveSetupError(f"Cannot create output directory {self.root}: {exc}") from exc
        return self.root

    def author_dir(self, handle: str, *, nsfw: bool = False) -> Path:
        """Return (creating if needed) the directory for an author's images."""
        base = self.root / NSFW_DIR if nsfw else self.root
        path = base / handle
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArchiveSetupError(f"Cannot create directory {path}: {exc}") from exc
        if path not in self._swept:
            self._sweep_partials(path)
            self._swept.add(path)
        return path

    @staticmethod
    def _sweep_partials(directory: Path) -> None:
        """Remove temp files left behind by an interrupted ``write``."""
        for stale in directory.glob(f".*{PART_SUFFIX}"):
            try:
                stale.unlink()
            except OSError as exc:
                logger.warning("Could not remove stale partial file %s: %s", stale, exc)
            else:
                logger.debug("Removed stale partial file %s", stale)

    # ── writing ──────────────────────────────────────────────────

    @staticmethod
    def write(path: Path, data: bytes) -> int:
        """Write bytes atomically: the target either appears complete or not at all."""
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=PART_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return len(data)

    # ── image dimensions ────────────────────────────────────────

    @staticmethod
    def get_dimensions(data: bytes) -> tuple[int, int] | None:
        try:
            with Image.open(io.BytesIO(data)) as img:
                return img.width, img.height
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            logger.debug("Could not read image dimensions: %s", exc)
            return None
