"""Append-only, hash-chained run ledger backed by SQLite.

Every run transition is appended here as it happens.  The monitor is a
projection of this ledger; it never computes state of its own.

- Append-only: ``append()`` is the only write; no update, no delete.
- Hash-chained per run: each entry seals the hash of the previous one.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from edgeswap.core.hasher import compute_entry_hash
from edgeswap.models.ledger import LedgerEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    service               TEXT NOT NULL,
    stage                 TEXT NOT NULL,
    transition            TEXT NOT NULL,
    outcome               TEXT NOT NULL DEFAULT '',
    status                TEXT NOT NULL DEFAULT '',
    artifact_ref          TEXT NOT NULL DEFAULT '',
    detail                TEXT NOT NULL DEFAULT '',
    timestamp_utc         TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_CREATE_IDX_SERVICE = """
CREATE INDEX IF NOT EXISTS idx_service ON run_ledger(service, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained run ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
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
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_SERVICE)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* into the run's hash chain and persist it.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        """
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )
        self._insert(sealed)
        logger.debug("Ledger: %s %s", sealed.run_id, sealed.transition)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, service, stage, transition, outcome,
                     status, artifact_ref, detail, timestamp_utc,
                     previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.service,
                    entry.stage,
                    entry.transition,
                    entry.outcome,
                    entry.status,
                    entry.artifact_ref,
                    entry.detail,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self, service: str | None = None) -> list[str]:
        """Return distinct run ids, most recently started first."""
        query = (
            "SELECT run_id, MIN(id) AS first_id FROM run_ledger "
            "{where} GROUP BY run_id ORDER BY first_id DESC"
        )
        with self._connect() as conn:
            if service is None:
                rows = conn.execute(query.format(where="")).fetchall()
            else:
                rows = conn.execute(
                    query.format(where="WHERE service = ?"), (service,)
                ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every entry hash of a run and check the links.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            service,
            stage,
            transition,
            outcome,
            status,
            artifact_ref,
            detail,
            timestamp_utc,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            service=service,
            stage=stage,
            transition=transition,
            outcome=outcome,
            status=status,
            artifact_ref=artifact_ref,
            detail=detail,
            timestamp_utc=timestamp_utc,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
