"""
Document Storage

Object storage for uploaded case documents and generated exports, kept on
the local filesystem under a single root directory. Objects are addressed by
a slash-separated key such as `{user_id}/{case_id}/complaint.pdf`.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from urllib.parse import quote

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised for invalid keys and failed storage operations."""


@dataclass
class StorageConfig:
    root: Optional[str] = None
    public_base_url: Optional[str] = None

    def __post_init__(self):
        self.root = self.root or os.getenv("STORAGE_DIR", "document_files")
        self.public_base_url = (
            self.public_base_url or os.getenv("STORAGE_PUBLIC_BASE_URL", "/api/v1/storage")
        ).rstrip("/")


class DocumentStorage:
    """
    Filesystem-backed object store.

    Usage:
        storage = DocumentStorage()
        storage.upload(f"{user_id}/{case_id}/complaint.pdf", data)
        url = storage.public_url(key)
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self.root = Path(self.config.root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "\\" in key:
            raise StorageError(f"Invalid storage key: {key!r}")
        # Owner checks compare the first segment, so keys must be literal paths
        if any(part in ("", ".", "..") for part in key.split("/")):
            raise StorageError(f"Invalid storage key: {key!r}")
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key!r}")
        return path

    def upload(self, key: str, data: bytes, upsert: bool = False) -> str:
        """Store bytes under key. Returns the key."""
        path = self._path(key)
        if path.exists() and not upsert:
            raise StorageError(f"Object already exists: {key}")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Storage upload failed for {key}: {e}")
            raise StorageError(f"Failed to store {key}") from e
        logger.debug(f"Stored {len(data)} bytes at {key}")
        return key

    def download(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def public_url(self, key: str) -> str:
        return f"{self.config.public_base_url}/{quote(key)}"


    def owner(self, key: str) -> str:
        """User id that namespaces a key (its first path segment under the root)."""
        return self._path(key).relative_to(self.root).parts[0]
