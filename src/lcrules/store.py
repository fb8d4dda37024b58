"""Filter rule persistence with change notification.

A store keeps the durable set of FilterRecords and tells subscribers about
it. Every subscriber receives the full, id-ordered snapshot of its partition
once on subscription and again after each change to that partition.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Iterable, Protocol

from .models import FilterRecord, FilterType, Partition

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[list[FilterRecord]], None]


class FilterStoreError(Exception):
    """A store operation failed (database unavailable, I/O error...)."""


class Subscription:
    """Handle returned by FilterStore.subscribe()."""

    def __init__(self, store: "_ObservableStore", partition: Partition,
                 listener: SnapshotListener):
        self.partition = partition
        self.listener = listener
        self._store = store
        self.cancelled = False

    def cancel(self) -> None:
        """Stop receiving snapshots. Safe to call more than once."""
        if self.cancelled:
            return
        self.cancelled = True
        self._store._unsubscribe(self)


class FilterStore(Protocol):
    """Contract between filter persistence and its consumers."""

    def subscribe(self, partition: Partition,
                  listener: SnapshotListener) -> Subscription: ...

    def insert(self, records: Iterable[FilterRecord]) -> list[FilterRecord]: ...

    def delete(self, record: FilterRecord) -> bool: ...

    def snapshot(self, partition: Partition) -> list[FilterRecord]: ...

    def clear(self, partition: Partition) -> int: ...


class _ObservableStore:
    """Subscription bookkeeping shared by the concrete stores.

    Subclasses implement _insert/_delete/_list/_clear and hold self._lock
    while touching their state. Listeners run outside that lock but under
    self._delivery_lock, which covers reading a snapshot and handing it out,
    so listeners never see an older snapshot after a newer one.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._delivery_lock = threading.RLock()
        self._subscriptions: list[Subscription] = []

    def subscribe(self, partition: Partition,
                  listener: SnapshotListener) -> Subscription:
        subscription = Subscription(self, partition, listener)
        with self._delivery_lock:
            with self._lock:
                self._subscriptions.append(subscription)
            listener(self.snapshot(partition))
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def insert(self, records: Iterable[FilterRecord]) -> list[FilterRecord]:
        records = list(records)
        if not records:
            return []
        with self._lock:
            stored = self._insert(records)
        logger.debug("Inserted %d filter record(s)", len(stored))
        self._notify({record.partition for record in stored})
        return stored

    def delete(self, record: FilterRecord) -> bool:
        if record.id is None:
            return False
        with self._lock:
            deleted = self._delete(record.id)
        if deleted:
            logger.debug("Deleted filter record %d", record.id)
            self._notify({record.partition})
        return deleted

    def snapshot(self, partition: Partition) -> list[FilterRecord]:
        with self._lock:
            return self._list(partition)

    def clear(self, partition: Partition) -> int:
        """Delete every record of a partition; returns how many were removed."""
        with self._lock:
            count = self._clear(partition)
        if count:
            self._notify({partition})
        return count

    def _notify(self, partitions: set[Partition]) -> None:
        with self._delivery_lock:
            with self._lock:
                targets = [s for s in self._subscriptions if s.partition in partitions]
            snapshots: dict[Partition, list[FilterRecord]] = {}
            for subscription in targets:
                if subscription.cancelled:
                    continue
                if subscription.partition not in snapshots:
                    snapshots[subscription.partition] = self.snapshot(subscription.partition)
                try:
                    subscription.listener(list(snapshots[subscription.partition]))
                except Exception:
                    logger.exception(
                        "Filter listener failed on %s snapshot", subscription.partition.value
                    )

    def _insert(self, records: list[FilterRecord]) -> list[FilterRecord]:
        raise NotImplementedError

    def _delete(self, record_id: int) -> bool:
        raise NotImplementedError

    def _list(self, partition: Partition) -> list[FilterRecord]:
        raise NotImplementedError

    def _clear(self, partition: Partition) -> int:
        raise NotImplementedError


class MemoryFilterStore(_ObservableStore):
    """In-process store. Nothing survives the process."""

    def __init__(self, records: Iterable[FilterRecord] = ()) -> None:
        super().__init__()
        self._records: dict[int, FilterRecord] = {}
        self._next_id = 1
        self._insert(list(records))

    def _insert(self, records: list[FilterRecord]) -> list[FilterRecord]:
        stored = []
        for record in records:
            record = FilterRecord(
                kind=record.kind,
                content=record.content,
                is_exclusion=record.is_exclusion,
                id=self._next_id,
            )
            self._records[record.id] = record
            self._next_id += 1
            stored.append(record)
        return stored

    def _delete(self, record_id: int) -> bool:
        return self._records.pop(record_id, None) is not None

    def _list(self, partition: Partition) -> list[FilterRecord]:
        return [
            record for _, record in sorted(self._records.items())
            if record.is_exclusion == partition.exclude
        ]

    def _clear(self, partition: Partition) -> int:
        doomed = [r.id for r in self._list(partition)]
        for record_id in doomed:
            del self._records[record_id]
        return len(doomed)


SCHEMA = """\
CREATE TABLE IF NOT EXISTS filters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    exclude INTEGER NOT NULL DEFAULT 0
)
"""


def _kind_from_db(value: str) -> FilterType | str:
    """Decode a stored type; unknown values are passed through as-is."""
    try:
        return FilterType(value)
    except ValueError:
        logger.warning("Unrecognized filter type in database: %r", value)
        return value


def _kind_to_db(kind: FilterType | str) -> str:
    return kind.value if isinstance(kind, FilterType) else str(kind)


class SqliteFilterStore(_ObservableStore):
    """Durable store backed by a SQLite database file.

    Usage:
        with SqliteFilterStore(Path(".lcrules.db")) as store:
            store.insert([FilterRecord(FilterType.TAG, "MyApp")])
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = path
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            with self._conn:
                self._conn.execute(SCHEMA)
        except sqlite3.Error as e:
            raise FilterStoreError(f"Cannot open filter database {path}: {e}") from e

    def __enter__(self) -> "SqliteFilterStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _insert(self, records: list[FilterRecord]) -> list[FilterRecord]:
        stored = []
        try:
            with self._conn:
                for record in records:
                    cursor = self._conn.execute(
                        "INSERT INTO filters (type, content, exclude) VALUES (?, ?, ?)",
                        (_kind_to_db(record.kind), record.content, int(record.is_exclusion)),
                    )
                    stored.append(FilterRecord(
                        kind=record.kind,
                        content=record.content,
                        is_exclusion=record.is_exclusion,
                        id=cursor.lastrowid,
                    ))
        except sqlite3.Error as e:
            raise FilterStoreError(f"Insert failed: {e}") from e
        return stored

    def _delete(self, record_id: int) -> bool:
        try:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM filters WHERE id = ?", (record_id,))
        except sqlite3.Error as e:
            raise FilterStoreError(f"Delete failed: {e}") from e
        return cursor.rowcount > 0

    def _list(self, partition: Partition) -> list[FilterRecord]:
        try:
            rows = self._conn.execute(
                "SELECT id, type, content, exclude FROM filters WHERE exclude = ? ORDER BY id",
                (int(partition.exclude),),
            ).fetchall()
        except sqlite3.Error as e:
            raise FilterStoreError(f"Query failed: {e}") from e
        return [
            FilterRecord(
                kind=_kind_from_db(kind),
                content=content,
                is_exclusion=bool(exclude),
                id=record_id,
            )
            for record_id, kind, content, exclude in rows
        ]

    def _clear(self, partition: Partition) -> int:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM filters WHERE exclude = ?", (int(partition.exclude),)
                )
        except sqlite3.Error as e:
            raise FilterStoreError(f"Clear failed: {e}") from e
        return cursor.rowcount
