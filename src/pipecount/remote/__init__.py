"""Remote collaborators: analyzer, inventory and feedback services."""

from pipecount.remote.base import Analyzer, FeedbackClient, InventoryClient, RemoteResult
from pipecount.remote.http import HttpAnalyzer, HttpFeedbackClient, HttpInventoryClient
from pipecount.remote.mock import MockAnalyzer, MockFeedbackClient, MockInventoryClient

__all__ = [
    "Analyzer",
    "FeedbackClient",
    "HttpAnalyzer",
    "HttpFeedbackClient",
    "HttpInventoryClient",
    "InventoryClient",
    "MockAnalyzer",
    "MockFeedbackClient",
    "MockInventoryClient",
    "RemoteResult",
]
