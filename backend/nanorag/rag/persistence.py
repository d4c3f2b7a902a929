"""Namespaced key → bytes persistence for the RAG engine.

The vector store keeps two documents (``metadata.json`` and
``vectors.json``) under a namespace named after the store; the RAG config is
kept under the ``settings`` namespace.  ``read`` returns ``None`` for a
missing key, so "nothing persisted yet" is never an error.
"""
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_name(kind: str, value: str) -> None:
    if not value or value in (".", "..") or not _SAFE_NAME_RE.match(value):
        raise ValueError(f"Invalid {kind}: {value!r}")


class PersistenceStore(ABC):
    """Durable key → bytes storage partitioned by namespace."""

    @abstractmethod
    def read(self, namespace: str, key: str) -> Optional[bytes]:
        """Return the stored bytes, or ``None`` if the key does not exist."""

    @abstractmethod
    def write(self, namespace: str, key: str, data: bytes) -> None:
        """Store *data*, replacing any previous value."""

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool:
        """Remove the key.  Returns True if something was deleted."""


class FilePersistenceStore(PersistenceStore):
    """One directory per namespace under *root*, one file per key.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so a crash mid-write never leaves a truncated document.
    Filesystem failures surface as ``PersistenceError``.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, namespace: str, key: str) -> Path:
        _check_name("namespace", namespace)
        _check_name("key", key)
        return self._root / namespace / key

    def read(self, namespace: str, key: str) -> Optional[bytes]:
        path = self._path(namespace, key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}") from exc

    def write(self, namespace: str, key: str, data: bytes) -> None:
        path = self._path(namespace, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key}.", suffix=".tmp")
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("[FilePersistenceStore] Wrote %d bytes to %s", len(data), path)

    def delete(self, namespace: str, key: str) -> bool:
        path = self._path(namespace, key)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceError(f"Failed to delete {path}: {exc}") from exc
        return True


class MemoryPersistenceStore(PersistenceStore):
    """In-process store; contents vanish with the object."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def read(self, namespace: str, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get((namespace, key))

    def write(self, namespace: str, key: str, data: bytes) -> None:
        with self._lock:
            self._data[(namespace, key)] = bytes(data)

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            return self._data.pop((namespace, key), None) is not None
