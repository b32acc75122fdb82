"""
Blob store contract and the local-disk adapter.

The compliance engine only needs three operations:

    get(path) -> bytes                       BlobNotFoundError | StorageUnavailableError
    put(path, data, content_type) -> path    StorageUnavailableError
    delete(path) -> None                     (missing path is not an error)

Object-storage backends implement the same three methods; the app picks the
adapter through ``get_blob_store()``.  Tests swap in their own instance with
``set_blob_store()``.

Usage:
    from docops.services.storage import get_blob_store

    store = get_blob_store()
    data = store.get("documents/12/act.pdf")
"""

from __future__ import annotations

import logging
import os

from flask import current_app

from docops.core.exceptions import BlobNotFoundError, StorageUnavailableError

logger = logging.getLogger(__name__)


class BlobStore:
    """Narrow interface consumed by the archive assembler."""

    def get(self, path: str) -> bytes:
        raise NotImplementedError

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores blobs as files below *root*; object paths use forward slashes."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _resolve(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, *path.strip("/").split("/")))
        if full != self.root and not full.startswith(self.root + os.sep):
            raise StorageUnavailableError(f"Path escapes storage root: {path}")
        return full

    def get(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            with open(full, "rb") as fh:
                return fh.read()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(path) from exc
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {path}: {exc}") from exc

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        full = self._resolve(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Stored blob %s (%d bytes, %s)", path, len(data), content_type)
        return path

    def delete(self, path: str) -> None:
        full = self._resolve(path)
        try:
            os.remove(full)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot delete {path}: {exc}") from exc


# ── Registry ─────────────────────────────────────────────────────────────────

_override: BlobStore | None = None


def set_blob_store(store: BlobStore | None) -> None:
    """Install *store* as the process-wide blob store (None restores the default)."""
    global _override
    _override = store


def get_blob_store() -> BlobStore:
    """Return the active blob store for the current app."""
    if _override is not None:
        return _override
    return LocalBlobStore(current_app.config["BLOB_STORAGE_ROOT"])
