"""Content-addressed storage for revision text."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Protocol

from .errors import NotFoundError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Anything that can store bytes and hand them back by id."""

    def put(self, data: bytes) -> str: ...

    def get(self, blob_id: str) -> bytes: ...


class FileBlobStore:
    """Blobs stored as files named by their SHA-256 digest.

    Identical content is written once; ``put`` of existing content is a no-op
    that returns the same id.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_id: str) -> Path:
        return self.root / blob_id[:2] / blob_id

    def put(self, data: bytes) -> str:
        blob_id = hashlib.sha256(data).hexdigest()
        path = self._path(blob_id)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
            logger.debug("Stored blob %s (%d bytes)", blob_id, len(data))
        return blob_id

    def get(self, blob_id: str) -> bytes:
        path = self._path(blob_id)
        if not path.exists():
            raise NotFoundError(f"Blob not found: {blob_id}")
        return path.read_bytes()
