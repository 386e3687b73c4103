"""Object store for built frontend assets.

Every build is published under a ``{version}/`` prefix and never
modified afterwards.  Staging distributions point their origin path at
that prefix, so Deploy must publish before it asks the edge provider to
create staging.

Layout of ``LocalObjectStore``: ``{base_path}/{version}/{relative path}``
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from edgeswap.errors import ObjectNotFoundError

logger = logging.getLogger(__name__)


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol every object store backend must satisfy."""

    def put(self, path: str, data: bytes) -> None: ...

    def get(self, path: str) -> bytes: ...

    def exists_prefix(self, prefix: str) -> bool: ...

    def list(self, prefix: str = "") -> list[str]: ...


def _normalise(path: str) -> str:
    """Strip leading slashes and reject traversal outside the store."""
    clean = PurePosixPath(path.lstrip("/"))
    if ".." in clean.parts:
        raise ValueError(f"Object path must not contain '..': {path!r}")
    return str(clean)


def version_prefix(version: str) -> str:
    """Object-store prefix that holds one version's assets."""
    return f"{version.strip('/')}/"


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class InMemoryObjectStore:
    """Dict-backed object store for tests."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes) -> None:
        with self._lock:
            self._objects[_normalise(path)] = bytes(data)

    def get(self, path: str) -> bytes:
        key = _normalise(path)
        with self._lock:
            if key not in self._objects:
                raise ObjectNotFoundError(f"Object not found: {path}")
            return self._objects[key]

    def exists_prefix(self, prefix: str) -> bool:
        return bool(self.list(prefix))

    def list(self, prefix: str = "") -> list[str]:
        prefix = prefix.lstrip("/")
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))


class LocalObjectStore:
    """Filesystem-backed object store.

    Parameters
    ----------
    base_path:
        Root directory (the "bucket").  Created if it does not exist.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    def _object_path(self, path: str) -> Path:
        return self._base / _normalise(path)

    def put(self, path: str, data: bytes) -> None:
        target = self._object_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def get(self, path: str) -> bytes:
        target = self._object_path(path)
        if not target.is_file():
            raise ObjectNotFoundError(f"Object not found: {path}")
        return target.read_bytes()

    def exists_prefix(self, prefix: str) -> bool:
        return bool(self.list(prefix))

    def list(self, prefix: str = "") -> list[str]:
        prefix = prefix.lstrip("/")
        keys = (
            p.relative_to(self._base).as_posix()
            for p in self._base.rglob("*")
            if p.is_file()
        )
        return sorted(k for k in keys if k.startswith(prefix))


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


def publish_directory(store: ObjectStore, version: str, directory: Path) -> int:
    """Upload every file under *directory* to ``{version}/`` in *store*.

    Returns the number of objects written.  An empty directory publishes
    nothing, which leaves the prefix absent and makes staging creation
    fail with ``ProvisioningError``.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ObjectNotFoundError(f"Build output directory not found: {directory}")

    prefix = version_prefix(version)
    count = 0
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        store.put(prefix + path.relative_to(directory).as_posix(), path.read_bytes())
        count += 1

    logger.info("Published %d object(s) under %s", count, prefix)
    return count
