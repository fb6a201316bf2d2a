"""
Client-side record cache.

One ``RecordStore`` per record kind holds the single cached copy of every
record the client has seen. ``IndexView`` objects are the lists the UI
renders (profile, teacher dashboard, university dashboard); each is a
predicate over a store plus a loader that fetches the authoritative list from
the server, so a record changed in the store changes in every view at once.
"""

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional


logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]
Loader = Callable[[], List[Record]]


class RecordStore:
    """Thread-safe map of record id to the cached record."""

    def __init__(self, kind: str):
        self._kind = kind
        self._records: Dict[str, Record] = {}
        self._listeners: Dict[str, Callable[[str], None]] = {}
        self._lock = threading.RLock()

    @property
    def kind(self) -> str:
        return self._kind

    def __contains__(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def records(self) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values()]

    def put(self, record: Record) -> None:
        with self._lock:
            self._records[record['id']] = copy.deepcopy(record)
        self._changed(record['id'])

    def put_many(self, records: Iterable[Record]) -> None:
        for record in records:
            self.put(record)

    def merge(self, record: Record) -> None:
        """Overlay ``record`` on the cached copy.

        Keys only some endpoints send (e.g. ``canValidate``) survive a fetch
        from an endpoint that omits them.
        """
        with self._lock:
            merged = dict(self._records.get(record['id'], {}))
            merged.update(copy.deepcopy(record))
            self._records[record['id']] = merged
        self._changed(record['id'])

    def merge_many(self, records: Iterable[Record]) -> None:
        for record in records:
            self.merge(record)

    def remove(self, record_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(record_id, None) is not None
        if removed:
            self._changed(record_id)
        return removed

    def apply(self, record_id: str, transform: Callable[[Record], Record]) -> Optional[Record]:
        """Replace a cached record with ``transform(record)``; returns the new copy."""
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            updated = transform(copy.deepcopy(current))
            self._records[record_id] = updated
        self._changed(record_id)
        return copy.deepcopy(updated)

    # Snapshots are deep copies, restored exactly as taken.

    def snapshot(self, record_id: str) -> Optional[Record]:
        return self.get(record_id)

    def restore(self, record_id: str, snapshot: Optional[Record]) -> None:
        if snapshot is None:
            self.remove(record_id)
        else:
            self.put(snapshot)

    def subscribe(self, listener_id: str, callback: Callable[[str], None]) -> None:
        with self._lock:
            self._listeners[listener_id] = callback

    def unsubscribe(self, listener_id: str) -> None:
        with self._lock:
            self._listeners.pop(listener_id, None)

    def _changed(self, record_id: str) -> None:
        with self._lock:
            listeners = list(self._listeners.items())
        for listener_id, callback in listeners:
            try:
                callback(record_id)
            except Exception:
                logger.exception("Error notifying cache listener %s", listener_id)


class IndexView:
    """A cached list defined by a predicate over a store and refreshed by a loader."""

    def __init__(self, name: str, store: RecordStore, predicate: Predicate, loader: Loader,
                 sort_key: Optional[Callable[[Record], Any]] = None):
        self._name = name
        self._store = store
        self._predicate = predicate
        self._loader = loader
        self._sort_key = sort_key or (lambda r: r.get('createdAt') or '')
        self._loaded_at: Optional[float] = None
        self._stale = True
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def loaded_at(self) -> Optional[float]:
        return self._loaded_at

    def matches(self, record: Optional[Record]) -> bool:
        return record is not None and bool(self._predicate(record))

    def records(self) -> List[Record]:
        """Current contents, including any speculative changes."""
        return sorted((r for r in self._store.records() if self.matches(r)), key=self._sort_key)

    def ids(self) -> List[str]:
        return [r['id'] for r in self.records()]

    def invalidate(self) -> None:
        self._stale = True

    def refresh(self) -> List[Record]:
        """Replace this view's records with the server's list."""
        with self._lock:
            fresh = self._loader()
            fresh_ids = {r['id'] for r in fresh}
            # records the server no longer lists here are gone from this view
            for record in self._store.records():
                if self.matches(record) and record['id'] not in fresh_ids:
                    self._store.remove(record['id'])
            self._store.merge_many(fresh)
            self._loaded_at = time.time()
            self._stale = False
        logger.debug("View %s refreshed with %d records", self._name, len(fresh))
        return self.records()
