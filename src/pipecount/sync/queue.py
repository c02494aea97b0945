"""SQLite-backed persistent queue for captures taken while offline."""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from pipecount.errors import StorageUnavailable
from pipecount.models import Location, QueuedCapture


class CaptureQueue:
    """SQLite-backed keyed queue of captures awaiting analysis.

    Captures are queued locally when the client is offline and replayed
    when connectivity is restored. The queue persists across restarts.
    Every mutation is a single transaction, and a lock keeps concurrent
    writers from interleaving.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the queue database.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            StorageUnavailable: If the database cannot be opened
        """
        self.db_path = db_path
        self._lock = threading.Lock()

        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._create_table()
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailable(f"Cannot open capture queue at {db_path}: {e}") from e

    def _create_table(self) -> None:
        """Create the queue table if it doesn't exist."""
        with self._conn:
            # seq preserves insertion order independently of clock skew
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS capture_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    image TEXT NOT NULL,
                    location_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

    def enqueue(self, capture: QueuedCapture) -> str:
        """Persist a capture keyed by its id.

        Args:
            capture: The capture to queue

        Returns:
            The capture id

        Raises:
            StorageUnavailable: If the write fails (disk full, duplicate id,
                closed database). Nothing is committed in that case.
        """
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO capture_queue (id, image, location_json, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        capture.id,
                        capture.image,
                        capture.location.model_dump_json(),
                        capture.timestamp.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Capture {capture.id} was not queued: {e}") from e
        return capture.id

    def list_all(self) -> list[QueuedCapture]:
        """Return every queued capture in insertion order."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT id, image, location_json, created_at
                    FROM capture_queue
                    ORDER BY seq ASC
                    """
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot read capture queue: {e}") from e
        return [self._row_to_capture(row) for row in rows]

    def get(self, capture_id: str) -> QueuedCapture | None:
        """Return one queued capture, or None if absent."""
        try:
            with self._lock:
                row = self._conn.execute(
                    """
                    SELECT id, image, location_json, created_at
                    FROM capture_queue WHERE id = ?
                    """,
                    (capture_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot read capture queue: {e}") from e
        return self._row_to_capture(row) if row else None

    def remove(self, capture_id: str) -> None:
        """Delete one capture. Removing an absent id is a no-op."""
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM capture_queue WHERE id = ?", (capture_id,))
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot remove capture {capture_id}: {e}") from e

    def clear(self) -> int:
        """Delete every queued capture.

        Returns:
            Number of captures removed
        """
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM capture_queue")
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot clear capture queue: {e}") from e
        return cursor.rowcount

    def count(self) -> int:
        """Number of captures waiting for analysis."""
        try:
            with self._lock:
                row = self._conn.execute("SELECT COUNT(*) AS n FROM capture_queue").fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot read capture queue: {e}") from e
        return row["n"]

    def __contains__(self, capture_id: str) -> bool:
        return self.get(capture_id) is not None

    @staticmethod
    def _row_to_capture(row: sqlite3.Row) -> QueuedCapture:
        return QueuedCapture(
            id=row["id"],
            image=row["image"],
            location=Location.model_validate_json(row["location_json"]),
            timestamp=datetime.fromisoformat(row["created_at"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
