"""Event bus: validated, at-least-once event delivery.

``publish()`` serializes an event to canonical JSON and enqueues it;
``deliver()`` drains the queue in FIFO order, re-validates each payload
against its model and calls every handler subscribed to its kind.

A handler that raises gets the message redelivered (appended to the
back of the queue) until ``max_deliveries`` attempts have been made;
after that the message is dead-lettered.  Handlers must therefore be
idempotent.

Two queue backends, chosen at construction:

1. **SQLite queue** (``queue_db_path`` provided): persistent across
   process restarts.
2. **In-memory deque** (``queue_db_path`` is None): volatile, for tests
   and the local simulator.
"""

from __future__ import annotations

import collections
import json
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from edgeswap.core.hasher import canonical_json_bytes
from edgeswap.errors import EventValidationError
from edgeswap.models.events import EVENT_TYPE_MAP, EventBase, EventKind

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventBase], None]


class EventBus:
    """FIFO event channel with redelivery and a dead-letter list.

    Parameters
    ----------
    max_deliveries:
        Attempts per message before it is dead-lettered.
    queue_db_path:
        SQLite file for a persistent queue.  ``None`` keeps the queue in
        memory.
    max_queue:
        Maximum queue depth; publishing beyond it raises ``OverflowError``.
    """

    def __init__(
        self,
        *,
        max_deliveries: int = 5,
        queue_db_path: Path | None = None,
        max_queue: int = 1024,
    ) -> None:
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be at least 1")
        self._max_deliveries = max_deliveries
        self._max_queue = max_queue
        self._handlers: dict[EventKind, list[EventHandler]] = {
            kind: [] for kind in EventKind
        }
        self._dead_letters: list[tuple[bytes, str]] = []

        self._db: sqlite3.Connection | None = None
        if queue_db_path is not None:
            Path(queue_db_path).parent.mkdir(parents=True, exist_ok=True)
            self._db = sqlite3.connect(str(queue_db_path))
            self._db.execute(
                "CREATE TABLE IF NOT EXISTS queue ("
                "  id INTEGER PRIMARY KEY AUTOINCREMENT,"
                "  payload BLOB NOT NULL,"
                "  attempts INTEGER NOT NULL DEFAULT 0,"
                "  created_at TEXT DEFAULT (datetime('now'))"
                ")"
            )
            self._db.commit()
            logger.info("EventBus: using SQLite queue at %s", queue_db_path)

        self._memory: collections.deque[tuple[bytes, int]] = collections.deque()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        """Register *handler* for every event of *kind*."""
        self._handlers[kind].append(handler)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, event: EventBase) -> str:
        """Enqueue *event* and return its ``event_id``."""
        self._enqueue(self.serialize(event), 0)
        logger.debug(
            "EventBus: queued %s %s (depth=%d)",
            event.event_kind.value,
            event.event_id,
            self.pending_count,
        )
        return event.event_id

    def publish_raw(self, raw: bytes | str) -> str:
        """Validate an externally produced payload, then enqueue it.

        Raises ``EventValidationError`` without enqueueing anything if
        the payload is malformed.
        """
        return self.publish(self.decode(raw))

    # ------------------------------------------------------------------
    # Deliver
    # ------------------------------------------------------------------

    def deliver(self, *, max_messages: int = 1000) -> int:
        """Drain the queue, including events published by handlers.

        A message stays at the head of the queue until its handlers have
        all returned; only then is it acknowledged and removed.  A process
        that dies mid-handler therefore sees the message again on restart.

        Returns the number of messages whose handlers all succeeded.
        Stops after *max_messages* dequeues so a permanently failing
        handler cannot spin forever.
        """
        delivered = 0
        for _ in range(max_messages):
            item = self._peek()
            if item is None:
                break
            token, payload, attempts = item

            try:
                event = self.decode(payload)
            except EventValidationError as exc:
                logger.error("EventBus: dropping malformed message: %s", exc)
                self._dead_letters.append((payload, str(exc)))
                self._ack(token)
                continue

            try:
                for handler in self._handlers[event.event_kind]:
                    handler(event)
            except Exception as exc:
                attempts += 1
                if attempts >= self._max_deliveries:
                    logger.error(
                        "EventBus: %s %s dead-lettered after %d attempt(s): %s",
                        event.event_kind.value,
                        event.event_id,
                        attempts,
                        exc,
                    )
                    self._dead_letters.append((payload, str(exc)))
                    self._ack(token)
                else:
                    logger.warning(
                        "EventBus: handler failed for %s %s (attempt %d/%d): %s",
                        event.event_kind.value,
                        event.event_id,
                        attempts,
                        self._max_deliveries,
                        exc,
                    )
                    self._requeue(token, payload, attempts)
                continue

            self._ack(token)
            delivered += 1
        return delivered

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def serialize(event: EventBase) -> bytes:
        """Serialize an event to canonical JSON bytes."""
        return canonical_json_bytes(event.model_dump(mode="json"))

    @staticmethod
    def decode(raw: bytes | str) -> EventBase:
        """Deserialize and validate a raw JSON event."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EventValidationError(f"Invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise EventValidationError(
                f"Event must be a JSON object, got {type(data).__name__}"
            )

        kind_str = data.get("event_kind")
        if not kind_str:
            raise EventValidationError("Missing event_kind field")

        try:
            kind = EventKind(kind_str)
        except ValueError as exc:
            raise EventValidationError(f"Unknown event_kind: {kind_str!r}") from exc

        try:
            return EVENT_TYPE_MAP[kind].model_validate(data)
        except ValidationError as exc:
            raise EventValidationError(f"Event validation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        if self._db is not None:
            row = self._db.execute("SELECT COUNT(*) FROM queue").fetchone()
            return row[0] if row else 0
        return len(self._memory)

    @property
    def dead_letters(self) -> list[tuple[bytes, str]]:
        """``(payload, reason)`` pairs that will not be delivered again."""
        return list(self._dead_letters)

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None
        self._memory.clear()

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal: queue operations
    # ------------------------------------------------------------------

    def _enqueue(self, payload: bytes, attempts: int) -> None:
        if self.pending_count >= self._max_queue:
            raise OverflowError(f"Event queue is full (depth={self._max_queue})")
        if self._db is not None:
            self._db.execute(
                "INSERT INTO queue (payload, attempts) VALUES (?, ?)",
                (payload, attempts),
            )
            self._db.commit()
            return
        self._memory.append((payload, attempts))

    def _peek(self) -> tuple[int | None, bytes, int] | None:
        """Return ``(token, payload, attempts)`` for the head, leaving it queued."""
        if self._db is not None:
            row = self._db.execute(
                "SELECT id, payload, attempts FROM queue ORDER BY id LIMIT 1"
            ).fetchone()
            if row is None:
                return None
            row_id, payload, attempts = row
            return row_id, bytes(payload), attempts
        if self._memory:
            payload, attempts = self._memory[0]
            return None, payload, attempts
        return None

    def _ack(self, token: int | None) -> None:
        """Remove the message at the head, which ``_peek`` returned."""
        if self._db is not None:
            self._db.execute("DELETE FROM queue WHERE id = ?", (token,))
            self._db.commit()
            return
        self._memory.popleft()

    def _requeue(self, token: int | None, payload: bytes, attempts: int) -> None:
        """Move the head message to the back with its new attempt count."""
        if self._db is not None:
            # One transaction: the message is never absent from the table.
            with self._db:
                self._db.execute("DELETE FROM queue WHERE id = ?", (token,))
                self._db.execute(
                    "INSERT INTO queue (payload, attempts) VALUES (?, ?)",
                    (payload, attempts),
                )
            return
        self._memory.popleft()
        self._memory.append((payload, attempts))
