"""History module for the bounded record list."""

from pipecount.history.store import DEFAULT_CAPACITY, HistoryStore

__all__ = ["DEFAULT_CAPACITY", "HistoryStore"]
