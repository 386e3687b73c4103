"""Versioned key/value config store for deployment-critical facts.

The store is the single source of truth for facts that cross stage
boundaries.  It is an injectable ``ConfigStore`` protocol, never a
module-level singleton, so tests substitute ``InMemoryConfigStore``.

Consistency
-----------
Both bundled stores are strongly consistent: a ``get`` after a ``put``
in the same process always observes the new value.  There are no
multi-key transactions.  A crash between two related ``put`` calls can
leave keys transiently inconsistent; stages re-read the whole record
through ``ParameterRepository.load()`` at the start of every stage.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from edgeswap.errors import ParameterNotFoundError
from edgeswap.models.deployment import SingleHeaderPredicate
from edgeswap.models.parameters import (
    STAGING_NONE,
    DeploymentParameters,
    ParameterPaths,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigStore(Protocol):
    """Protocol every config store backend must satisfy."""

    def get(self, key: str) -> str:
        """Return the latest value of *key*; raise ``ParameterNotFoundError``."""
        ...

    def put(self, key: str, value: str) -> int:
        """Write a new version of *key* and return its version number."""
        ...

    def get_version(self, key: str) -> int:
        """Return the latest version number of *key* (0 if absent)."""
        ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryConfigStore:
    """Dict-backed store that keeps every version of every key."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._history: dict[str, list[str]] = {}
        self._lock = threading.Lock()
        for key, value in (initial or {}).items():
            self.put(key, value)

    def get(self, key: str) -> str:
        with self._lock:
            versions = self._history.get(key)
            if not versions:
                raise ParameterNotFoundError(f"Parameter not found: {key}")
            return versions[-1]

    def put(self, key: str, value: str) -> int:
        with self._lock:
            versions = self._history.setdefault(key, [])
            versions.append(value)
            return len(versions)

    def get_version(self, key: str) -> int:
        with self._lock:
            return len(self._history.get(key, []))

    def history(self, key: str) -> list[str]:
        """Every value ever written to *key*, oldest first."""
        with self._lock:
            return list(self._history.get(key, []))


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_CREATE_PARAMETERS = """
CREATE TABLE IF NOT EXISTS parameters (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    key         TEXT NOT NULL,
    version     INTEGER NOT NULL,
    value       TEXT NOT NULL,
    written_at  TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (key, version)
);
"""

_CREATE_IDX_KEY = """
CREATE INDEX IF NOT EXISTS idx_parameters_key ON parameters(key, version);
"""


class SqliteConfigStore:
    """Append-only, versioned parameter table backed by SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_PARAMETERS)
            conn.execute(_CREATE_IDX_KEY)
            conn.commit()

    def get(self, key: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM parameters WHERE key = ? "
                "ORDER BY version DESC LIMIT 1",
                (key,),
            ).fetchone()
        if row is None:
            raise ParameterNotFoundError(f"Parameter not found: {key}")
        return row[0]

    def put(self, key: str, value: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(version), 0) FROM parameters WHERE key = ?",
                (key,),
            ).fetchone()
            version = row[0] + 1
            conn.execute(
                "INSERT INTO parameters (key, version, value) VALUES (?, ?, ?)",
                (key, version, value),
            )
            conn.commit()
        logger.debug("SqliteConfigStore: %s -> v%d", key, version)
        return version

    def get_version(self, key: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(version), 0) FROM parameters WHERE key = ?",
                (key,),
            ).fetchone()
        return row[0]

    def list_keys(self, prefix: str = "") -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT key FROM parameters WHERE key LIKE ? ORDER BY key",
                (f"{prefix}%",),
            ).fetchall()
        return [row[0] for row in rows]


# ---------------------------------------------------------------------------
# Typed accessor
# ---------------------------------------------------------------------------


def _encode_bool(value: bool) -> str:
    return "true" if value else "false"


def _decode_bool(raw: str) -> bool:
    return raw.strip().lower() == "true"


class ParameterRepository:
    """Typed view of one service's parameters in a ``ConfigStore``.

    Parameters
    ----------
    store:
        The backing config store.
    service:
        Service namespace; every key is prefixed with ``/{service}/``.
    """

    def __init__(self, store: ConfigStore, service: str) -> None:
        self._store = store
        self.paths = ParameterPaths(service=service)

    @property
    def service(self) -> str:
        return self.paths.service

    def load(self) -> DeploymentParameters:
        """Re-read every parameter from the store.

        Optional parameters fall back to their defaults; the version and
        the production distribution id are required.
        """
        p = self.paths
        values: dict[str, object] = {
            "frontend_version": self._store.get(p.frontend_version),
            "production_distribution_id": self._store.get(
                p.production_distribution_id
            ),
        }
        staging = self._get_optional(p.staging_distribution_id)
        if staging is not None:
            values["staging_distribution_id"] = staging
        cleanup = self._get_optional(p.staging_cleanup_enabled)
        if cleanup is not None:
            values["staging_cleanup_enabled"] = _decode_bool(cleanup)
        predicate = self._get_optional(p.single_header_predicate)
        if predicate is not None:
            values["single_header_predicate"] = SingleHeaderPredicate.parse(predicate)
        bucket = self._get_optional(p.hosting_bucket)
        if bucket is not None:
            values["hosting_bucket"] = bucket
        last_built = self._get_optional(p.last_built_version)
        if last_built:
            values["last_built_version"] = last_built
        return DeploymentParameters.model_validate(values)

    def save(self, params: DeploymentParameters) -> None:
        """Write every field.  Not atomic across keys."""
        p = self.paths
        self._store.put(p.frontend_version, params.frontend_version)
        self._store.put(p.production_distribution_id, params.production_distribution_id)
        self._store.put(p.staging_distribution_id, params.staging_distribution_id)
        self._store.put(
            p.staging_cleanup_enabled, _encode_bool(params.staging_cleanup_enabled)
        )
        self._store.put(
            p.single_header_predicate, params.single_header_predicate.serialize()
        )
        self._store.put(p.hosting_bucket, params.hosting_bucket)
        if params.last_built_version:
            self._store.put(p.last_built_version, params.last_built_version)

    def initialize(
        self,
        *,
        production_distribution_id: str,
        frontend_version: str,
        staging_cleanup_enabled: bool = True,
        single_header_predicate: SingleHeaderPredicate | None = None,
        hosting_bucket: str = "",
    ) -> DeploymentParameters:
        """Seed the fixed infrastructure facts for a new service.

        Re-seeding keeps the last-built version, so a version id handed
        out by an earlier build is never handed out again.
        """
        params = DeploymentParameters(
            frontend_version=frontend_version,
            production_distribution_id=production_distribution_id,
            staging_distribution_id=STAGING_NONE,
            staging_cleanup_enabled=staging_cleanup_enabled,
            single_header_predicate=single_header_predicate or SingleHeaderPredicate(),
            hosting_bucket=hosting_bucket,
            last_built_version=self._get_optional(self.paths.last_built_version) or "",
        )
        self.save(params)
        logger.info(
            "Initialized parameters for %s (production=%s, version=%s)",
            self.service,
            production_distribution_id,
            frontend_version,
        )
        return params

    def set_frontend_version(self, version: str) -> int:
        return self._store.put(self.paths.frontend_version, version)

    def set_last_built_version(self, version: str) -> int:
        return self._store.put(self.paths.last_built_version, version)

    def set_staging_cleanup_enabled(self, enabled: bool) -> int:
        return self._store.put(self.paths.staging_cleanup_enabled, _encode_bool(enabled))

    def set_staging_distribution_id(self, distribution_id: str | None) -> int:
        return self._store.put(
            self.paths.staging_distribution_id, distribution_id or STAGING_NONE
        )

    def _get_optional(self, key: str) -> str | None:
        try:
            return self._store.get(key)
        except ParameterNotFoundError:
            return None
