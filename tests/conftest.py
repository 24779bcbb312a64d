"""Shared pytest fixtures for the cleanup engine test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from cleanup.blobs import FileBlobStore
from cleanup.engine import CleanupEngine
from cleanup.flags import FlagGate
from cleanup.provider import NullProvider
from cleanup.revisions import RevisionManager
from cleanup.store import CleanupStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ── Profile Fixtures ──────────────────────────────────────────────


@pytest.fixture
def valid_profile_path() -> Path:
    return FIXTURES_DIR / "valid_profile.yaml"


@pytest.fixture
def invalid_profile_path() -> Path:
    return FIXTURES_DIR / "invalid_profile.yaml"


@pytest.fixture
def list_profile_path() -> Path:
    return FIXTURES_DIR / "list_profile.yaml"


@pytest.fixture
def nonexistent_profile_path(tmp_path: Path) -> Path:
    return tmp_path / "does_not_exist.yaml"


# ── Sample Text Fixtures ─────────────────────────────────────────


@pytest.fixture
def gutenberg_text() -> str:
    """A small Project Gutenberg style book with licence header and footer."""
    return """\
The Project Gutenberg eBook of Sample Tales

This eBook is for the use of anyone anywhere at no cost.

*** START OF THE PROJECT GUTENBERG EBOOK SAMPLE TALES ***

PREFACE

These tales were written in the
autumn of the year.

CHAPTER I. The Arrival

It was a dark and stormy night; the rain fell in
torrents, except at occasional intervals.

'Tis said the old house o'er the hill
was empty.

* * *

Morning came at last.

CHAPTER II. The Departure

She left the village at dawn.

*** END OF THE PROJECT GUTENBERG EBOOK SAMPLE TALES ***

Updated editions will replace the previous one.
"""


@pytest.fixture
def cleaned_text() -> str:
    """What the deterministic pass makes of ``gutenberg_text`` with archaic forms preserved."""
    return """\
PREFACE

These tales were written in the autumn of the year.

CHAPTER I. The Arrival

It was a dark and stormy night; the rain fell in torrents, except at occasional intervals.

'Tis said the old house o'er the hill was empty.

* * *

Morning came at last.

CHAPTER II. The Departure

She left the village at dawn."""


# ── Workspace Fixtures ───────────────────────────────────────────


@pytest.fixture
def store(tmp_path: Path):
    store = CleanupStore(tmp_path / "cleanup.db")
    yield store
    store.close()


@pytest.fixture
def blobs(tmp_path: Path) -> FileBlobStore:
    return FileBlobStore(tmp_path / "blobs")


@pytest.fixture
def revisions(store: CleanupStore, blobs: FileBlobStore) -> RevisionManager:
    return RevisionManager(store, blobs)


@pytest.fixture
def gate(store: CleanupStore, revisions: RevisionManager) -> FlagGate:
    return FlagGate(store, revisions)


@pytest.fixture
def engine(store: CleanupStore, blobs: FileBlobStore) -> CleanupEngine:
    """Engine with no provider configured."""
    return CleanupEngine(store, blobs, provider=NullProvider(), sleep=lambda seconds: None)
