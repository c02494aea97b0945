"""Pipecount - offline-resilient pipe counting client."""

__version__ = "0.1.0"
