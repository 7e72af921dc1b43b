"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from skyharvest.storage import DiskStorage
from skyharvest.store import ArchiveStore


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "archive"
    path.mkdir()
    return path


@pytest.fixture
def store(output_dir):
    with ArchiveStore.open(output_dir / "archive.db") as s:
        yield s


@pytest.fixture
def storage(output_dir):
    return DiskStorage(output_dir)


@pytest.fixture
def no_sleep():
    """A sleep function that records requested waits instead of sleeping."""
    waits: list[float] = []

    def _sleep(seconds: float) -> None:
        waits.append(seconds)

    _sleep.waits = waits  # type: ignore[attr-defined]
    return _sleep
