"""Monitor module for network reachability."""

from pipecount.monitor.connectivity import ConnectivityMonitor

__all__ = ["ConnectivityMonitor"]
