"""Optimistic local-first synchronization with the remote store."""

from finledger.sync.clock import Clock, SystemClock
from finledger.sync.coordinator import OptimisticSyncCoordinator
from finledger.sync.notifier import LogNotifier, Notifier

__all__ = [
    "Clock",
    "LogNotifier",
    "Notifier",
    "OptimisticSyncCoordinator",
    "SystemClock",
]
