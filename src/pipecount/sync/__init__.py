"""Sync module for the offline capture queue."""

from pipecount.sync.queue import CaptureQueue

__all__ = ["CaptureQueue"]
