"""
Network reachability and offline-mode tracking
"""

from .monitor import ConnectivityEvent, ConnectivityMonitor, TcpReachabilityProbe

__all__ = [
    "ConnectivityEvent",
    "ConnectivityMonitor",
    "TcpReachabilityProbe"
]
