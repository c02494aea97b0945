"""Bounded, most-recent-first history of analysis records."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable

from pydantic import TypeAdapter, ValidationError

from pipecount.errors import RecordNotFound, StorageUnavailable
from pipecount.models import AnalysisRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50

_records_adapter = TypeAdapter(list[AnalysisRecord])


class HistoryStore:
    """Ordered list of analysis records backed by a JSON file.

    Insertion order is the ordering key: new records go to the front and
    the list is truncated to ``capacity`` after every mutation.

    All mutations go through one asyncio lock, so a sync reconciliation and
    a user edit never clobber each other. Each mutation computes the new
    list, persists it, and only then swaps it in; a failed write leaves
    both the file and the in-memory list untouched. Records that leave
    the list (evicted past capacity, reconciled away or cleared) are
    reported to ``on_evict`` callbacks after the write.

    Example:
        history = HistoryStore(Path("history.json"))
        await history.load()
        await history.append(record)
    """

    def __init__(self, path: Path, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.path = path
        self.capacity = capacity
        self._records: list[AnalysisRecord] = []
        self._lock = asyncio.Lock()
        self._evict_callbacks: list[Callable[[list[AnalysisRecord]], None]] = []

    @property
    def records(self) -> tuple[AnalysisRecord, ...]:
        """Snapshot of the history, most recent first."""
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    def get(self, record_id: str) -> AnalysisRecord | None:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def require(self, record_id: str) -> AnalysisRecord:
        record = self.get(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def pending_ids(self) -> set[str]:
        return {r.id for r in self._records if r.is_pending}

    def on_evict(self, callback: Callable[[list[AnalysisRecord]], None]) -> Callable[[], None]:
        """Register callback for records dropped from the history.

        Returns:
            A function that unregisters the callback
        """
        self._evict_callbacks.append(callback)
        return lambda: self._evict_callbacks.remove(callback)

    # --- persistence ---

    async def load(self) -> tuple[AnalysisRecord, ...]:
        """Load history from disk.

        Missing or corrupt data degrades to an empty history; history is
        convenience state, not a system of record.
        """
        async with self._lock:
            try:
                raw = await asyncio.to_thread(self.path.read_bytes)
                records = _records_adapter.validate_json(raw)
            except FileNotFoundError:
                records = []
            except (OSError, ValidationError, ValueError) as e:
                logger.warning("History load failed, starting empty: path=%s, error=%s", self.path, e)
                records = []
            self._records = records[: self.capacity]
        return self.records

    async def persist(self) -> None:
        """Write the current history to disk."""
        async with self._lock:
            await self._write(self._records)

    async def _write(self, records: list[AnalysisRecord]) -> None:
        data = _records_adapter.dump_json(records)
        try:
            await asyncio.to_thread(_atomic_write, self.path, data)
        except OSError as e:
            raise StorageUnavailable(f"Cannot save history to {self.path}: {e}") from e

    async def _commit(self, records: list[AnalysisRecord]) -> None:
        """Truncate, persist, then swap in. Caller holds the lock."""
        records = records[: self.capacity]
        await self._write(records)
        kept = {r.id for r in records}
        dropped = [r for r in self._records if r.id not in kept]
        self._records = records
        if dropped:
            self._notify_evicted(dropped)

    def _notify_evicted(self, dropped: list[AnalysisRecord]) -> None:
        for callback in self._evict_callbacks:
            try:
                callback(dropped)
            except Exception:
                logger.exception("Eviction callback failed")

    # --- mutations ---

    async def append(self, record: AnalysisRecord) -> None:
        """Insert a record at the front, evicting past capacity."""
        async with self._lock:
            await self._commit([record, *self._records])

    async def replace(self, record_id: str, record: AnalysisRecord) -> None:
        """Replace the record with ``record_id`` in place.

        Raises:
            RecordNotFound: If no record has that id
        """
        async with self._lock:
            index = self._index_of(record_id)
            records = list(self._records)
            records[index] = record
            await self._commit(records)

    async def update(
        self,
        record_id: str,
        change: Callable[[AnalysisRecord], AnalysisRecord],
    ) -> AnalysisRecord:
        """Apply ``change`` to the current version of a record.

        The read and the write happen under the same lock, so the change
        always sees the latest record.

        Returns:
            The updated record
        """
        async with self._lock:
            index = self._index_of(record_id)
            records = list(self._records)
            records[index] = change(records[index])
            await self._commit(records)
            return records[index]

    async def upsert(self, record: AnalysisRecord) -> None:
        """Replace the record if present, otherwise insert it at the front."""
        async with self._lock:
            records = list(self._records)
            for index, existing in enumerate(records):
                if existing.id == record.id:
                    records[index] = record
                    break
            else:
                records.insert(0, record)
            await self._commit(records)

    async def reconcile(
        self,
        stale_ids: Iterable[str],
        fresh: Iterable[AnalysisRecord],
    ) -> None:
        """Drop stale records and prepend fresh ones in a single write."""
        stale = set(stale_ids)
        async with self._lock:
            kept = [r for r in self._records if r.id not in stale]
            await self._commit([*fresh, *kept])

    async def remove_all(self) -> None:
        """Clear the history."""
        async with self._lock:
            await self._commit([])

    def _index_of(self, record_id: str) -> int:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        raise RecordNotFound(record_id)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
