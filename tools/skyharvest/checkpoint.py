"""Pagination checkpoints – one small cursor file per harvest target."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import safe_component

logger = logging.getLogger("skyharvest.checkpoint")


class CheckpointStore:
    """Persist the last accepted pagination cursor as plain text.

    Losing a checkpoint only costs resumability, so write and delete failures
    are logged rather than raised.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @classmethod
    def for_target(cls, output_dir: str | Path, mode: str, actor: str) -> CheckpointStore:
        return cls(Path(output_dir) / f".cursor_{mode}_{safe_component(actor)}")

    def load(self) -> str | None:
        """Return the saved cursor exactly as it was passed to ``save``."""
        if not self.path.exists():
            return None
        try:
            data = self.path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read cursor file %s: %s", self.path, exc)
            return None
        cursor = data[:-1] if data.endswith("\n") else data
        return cursor or None

    def save(self, cursor: str) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_bytes((cursor + "\n").encode("utf-8"))
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("Failed to save cursor to %s: %s", self.path, exc)
            tmp.unlink(missing_ok=True)
            return
        logger.debug("Checkpoint saved: %s", cursor)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove cursor file %s: %s", self.path, exc)
