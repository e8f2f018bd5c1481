"""In-memory correlation store for bridged messages."""

from __future__ import annotations

import threading
import time
from typing import Callable

from loguru import logger

from .types import BridgeRecord, ReplyEntry


class CorrelationStore:
    """Map bridge id -> BridgeRecord.

    The only mutable state shared by the inbound relay, the reply relay and the
    sweeper. Every operation holds one store-wide lock and works on whole
    records, so a reply list is never observed half-written. Records are kept
    in insertion order. Nothing survives a restart.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._records: dict[str, BridgeRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, bridge_id: str) -> bool:
        with self._lock:
            return bridge_id in self._records

    def now(self) -> float:
        return self._clock()

    def put(self, record: BridgeRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise KeyError(f"Duplicate bridge id: {record.id}")
            self._records[record.id] = record
        logger.debug(f"Stored bridge record {record.id} ({record.label})")

    def get(self, bridge_id: str) -> BridgeRecord | None:
        with self._lock:
            return self._records.get(bridge_id)

    def delete(self, bridge_id: str) -> BridgeRecord | None:
        """Remove a record. Only the first caller gets it back."""
        with self._lock:
            record = self._records.pop(bridge_id, None)
        if record:
            logger.debug(f"Deleted bridge record {bridge_id}")
        return record

    def for_each_active(self, fn: Callable[[BridgeRecord], bool | None]) -> None:
        """Call fn for each record still inside its window, oldest first.

        Iteration stops as soon as fn returns True.
        """
        with self._lock:
            now = self._clock()
            active = [r for r in self._records.values() if r.is_active(now)]
        for record in active:
            if fn(record):
                break

    def first_active(self) -> BridgeRecord | None:
        """The record a reply is attributed to (first active record wins)."""
        found: list[BridgeRecord] = []

        def _take(record: BridgeRecord) -> bool:
            found.append(record)
            return True

        self.for_each_active(_take)
        return found[0] if found else None

    def append_reply(self, bridge_id: str, entry: ReplyEntry) -> bool:
        """Append a reply if the record still exists and is inside its window."""
        with self._lock:
            record = self._records.get(bridge_id)
            if record is None or not record.is_active(self._clock()):
                return False
            record.replies.append(entry)
            return True

    def sweep_expired(self, max_age: float | None = None) -> list[BridgeRecord]:
        """Delete and return records older than max_age, or than their own window."""
        with self._lock:
            now = self._clock()
            expired = [
                record
                for record in self._records.values()
                if record.age(now) > (record.window if max_age is None else max_age)
            ]
            for record in expired:
                del self._records[record.id]
        return expired
