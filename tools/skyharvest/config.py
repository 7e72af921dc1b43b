"""Configuration and environment settings for the harvester."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class BlueskyConfig:
    """XRPC endpoint configuration.  Page size 100 is the API maximum."""
    api_base: str = "https://bsky.social/xrpc"
    timeout: float = 30.0
    page_size: int = 100
    max_retries: int = 5
    backoff_base: float = 1.0  # seconds, doubled per rate-limited attempt
    user_agent: str = "skyharvest/1.0"

    @classmethod
    def from_env(cls) -> BlueskyConfig:
        return cls(
            api_base=os.getenv("BLUESKY_API_BASE", "https://bsky.social/xrpc").rstrip("/"),
            timeout=float(os.getenv("BLUESKY_TIMEOUT", "30")),
        )


@dataclass
class HarvesterConfig:
    username: str
    password: str
    output_dir: Path = Path("./archive")
    limit: int = 100  # 0 = unbounded
    nsfw_only: bool = False
    delay: float = 0.0  # seconds between API requests
    resume: bool = False
    target_actor: str | None = None
    show_progress: bool = True
    bluesky: BlueskyConfig = field(default_factory=BlueskyConfig.from_env)

    @property
    def mode(self) -> str:
        """``feed`` when archiving another author's posts, ``likes`` otherwise."""
        return "feed" if self.target_actor else "likes"

    @property
    def actor(self) -> str:
        return (self.target_actor or self.username).lstrip("@")

    @property
    def db_path(self) -> Path:
        return Path(self.output_dir) / "archive.db"


def safe_component(value: str) -> str:
    """Make an actor identifier usable as part of a filename."""
    return re.sub(r"[^A-Za-z0-9._-]", "_", value.strip().lstrip("@")) or "_"
